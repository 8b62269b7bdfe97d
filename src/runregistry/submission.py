"""Creating and registering new runs.

``submit_run`` is the one place where the operator switches in
:class:`~runregistry.management.ManagementState` meet the registry: it
refuses new runs while ``allow_new_workflow_runs`` is off, asks the access
policy whether the principal may create, logs the workflow when
``log_incoming_workflows`` is on, and then builds and registers the run.
"""

from __future__ import annotations

from runregistry.core.errors import NoCreateError, RegistryError
from runregistry.core.logging import LogContext, get_logger
from runregistry.management import ManagementState
from runregistry.policy import AccessPolicy
from runregistry.registry import RunRegistry
from runregistry.runs import RunFactory, RunHandle

logger = get_logger(__name__)


def submit_run(
    principal: str,
    workflow: str,
    *,
    factory: RunFactory,
    registry: RunRegistry,
    management: ManagementState | None = None,
    policy: AccessPolicy | None = None,
) -> RunHandle:
    """Create a run for *principal* and register it.

    Raises:
        NoCreateError: New runs are disabled, or the policy refuses
        StorageError: The run could not be stored
    """
    management = management or ManagementState()
    checker = policy or registry.policy
    with LogContext(principal=principal, operation="submit_run"):
        try:
            if not management.allow_new_workflow_runs:
                raise NoCreateError("server is not currently accepting new runs")
            if not checker.permit_create(principal, workflow):
                raise NoCreateError("principal may not create runs").with_context(
                    principal=principal
                )
            if management.log_incoming_workflows:
                logger.info("incoming_workflow", workflow=workflow)

            run = factory.create(principal, workflow)
            registry.register(run)
        except RegistryError as exc:
            if management.log_outgoing_exceptions:
                logger.warning("run_submission_refused", **exc.to_dict())
            raise
    logger.info("run_submitted", run_id=run.id, principal=principal)
    return run


__all__ = ["submit_run"]
