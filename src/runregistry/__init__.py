"""
run-registry - the persisted record of workflow runs.

Tracks every run a workflow server has created: stores run snapshots
transactionally, checks per-principal access, sends a completion message
once when a run finishes, and deletes runs whose lifetime has expired.
"""

__version__ = "0.1.0"

from runregistry.core.errors import (  # noqa: E402
    BadStateChangeError,
    ConflictError,
    NoCreateError,
    PermissionDeniedError,
    RegistryError,
    StorageError,
    UnknownRunError,
)
from runregistry.management import ManagementState  # noqa: E402
from runregistry.models import Permission, RunSnapshot, RunStatus  # noqa: E402
from runregistry.policy import AccessPolicy, OwnerPermissionPolicy, PermitAllPolicy  # noqa: E402
from runregistry.registry import ReconcileReport, RunListing, RunRegistry, SweepReport  # noqa: E402
from runregistry.runs import LocalRun, LocalRunFactory, RunFactory, RunHandle  # noqa: E402
from runregistry.store import PersistentStore  # noqa: E402
from runregistry.submission import submit_run  # noqa: E402

__all__ = [
    "__version__",
    "RunRegistry",
    "RunListing",
    "ReconcileReport",
    "SweepReport",
    "PersistentStore",
    "RunHandle",
    "RunFactory",
    "LocalRun",
    "LocalRunFactory",
    "AccessPolicy",
    "OwnerPermissionPolicy",
    "PermitAllPolicy",
    "ManagementState",
    "RunStatus",
    "RunSnapshot",
    "Permission",
    "submit_run",
    "RegistryError",
    "UnknownRunError",
    "ConflictError",
    "StorageError",
    "NoCreateError",
    "PermissionDeniedError",
    "BadStateChangeError",
]
