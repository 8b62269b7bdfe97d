"""
Lazily assembled registry components.

:class:`RegistryServices` wires the engine, store, run factory, access
policy, notification engine, registry, management state and maintenance
scheduler from one :class:`~runregistry.core.settings.RegistrySettings`.
Each component is created on first property access.

Usage::

    from runregistry.services import build_services

    services = build_services()           # settings from the environment
    run = submit_run("alice", workflow, factory=services.factory,
                     registry=services.registry, management=services.management)

    # As a context manager for automatic cleanup:
    with build_services(RegistrySettings(database_url="sqlite:///runs.db")) as s:
        s.registry.count()
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError

from runregistry.core.errors import ConfigError
from runregistry.core.logging import get_logger
from runregistry.core.orm import create_registry_engine
from runregistry.core.settings import RegistrySettings, get_settings
from runregistry.management import ManagementState
from runregistry.notification import (
    EmailDispatcher,
    LogDispatcher,
    NotificationEngine,
    TemplateCompletionNotifier,
)
from runregistry.policy import OwnerPermissionPolicy
from runregistry.registry import RunRegistry
from runregistry.runs import LocalRunFactory
from runregistry.scheduling import MaintenanceScheduler
from runregistry.store import PersistentStore

logger = get_logger(__name__)


class RegistryServices:
    """Lazy-initialised component container.

    Components are created on first property access and released via
    :meth:`close` (or the context-manager protocol).
    """

    def __init__(self, settings: RegistrySettings | None = None) -> None:
        self._settings = settings
        self._engine: Engine | None = None
        self._store: PersistentStore | None = None
        self._factory: LocalRunFactory | None = None
        self._policy: OwnerPermissionPolicy | None = None
        self._notifications: NotificationEngine | None = None
        self._registry: RunRegistry | None = None
        self._management: ManagementState | None = None
        self._scheduler: MaintenanceScheduler | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> RegistrySettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            if not self.settings.database_url:
                self.settings.data_dir.mkdir(parents=True, exist_ok=True)
            url = self.settings.resolved_database_url
            try:
                self._engine = create_registry_engine(url)
            except ArgumentError as exc:
                raise ConfigError(f"invalid database URL: {url}", cause=exc) from exc
        return self._engine

    @property
    def store(self) -> PersistentStore:
        """Run store, with its schema created."""
        if self._store is None:
            store = PersistentStore(self.engine)
            store.create_schema()
            self._store = store
        return self._store

    @property
    def factory(self) -> LocalRunFactory:
        if self._factory is None:
            lifetime = timedelta(minutes=self.settings.default_lifetime_minutes)
            self._factory = LocalRunFactory(lifetime=lifetime)
        return self._factory

    @property
    def policy(self) -> OwnerPermissionPolicy:
        if self._policy is None:
            self._policy = OwnerPermissionPolicy(max_runs=self.settings.max_runs)
        return self._policy

    @property
    def notifications(self) -> NotificationEngine:
        """Routes ``mailto:`` destinations to SMTP (when configured) and logs everything else."""
        if self._notifications is None:
            engine = NotificationEngine()
            settings = self.settings
            if settings.smtp_host:
                engine.register(
                    EmailDispatcher(
                        settings.smtp_host,
                        settings.notification_from,
                        smtp_port=settings.smtp_port,
                        smtp_user=settings.smtp_user,
                        smtp_password=settings.smtp_password,
                        use_tls=settings.smtp_use_tls,
                    )
                )
            engine.register(LogDispatcher(), universal=True)
            self._notifications = engine
        return self._notifications

    @property
    def registry(self) -> RunRegistry:
        if self._registry is None:
            notifier = TemplateCompletionNotifier(
                self.settings.subject_template, self.settings.body_template
            )
            registry = RunRegistry(
                self.store,
                self.factory,
                policy=self.policy,
                dispatcher=self.notifications,
                notifiers=[notifier],
            )
            self.policy.set_run_counter(registry.count)
            self._registry = registry
        return self._registry

    @property
    def management(self) -> ManagementState:
        if self._management is None:
            self._management = ManagementState(self.store)
        return self._management

    @property
    def scheduler(self) -> MaintenanceScheduler:
        if self._scheduler is None:
            self._scheduler = MaintenanceScheduler(
                self.registry,
                reconcile_interval=self.settings.reconcile_interval_seconds,
                sweep_interval=self.settings.expiry_sweep_interval_seconds,
            )
        return self._scheduler

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Stop the scheduler and dispose of the engine."""
        if self._scheduler is not None:
            self._scheduler.stop()
        if self._engine is not None:
            self._engine.dispose()
            logger.debug("registry_engine_disposed")

    def __enter__(self) -> RegistryServices:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def build_services(settings: RegistrySettings | None = None) -> RegistryServices:
    """Container for *settings* (or the environment's settings)."""
    return RegistryServices(settings)


__all__ = ["RegistryServices", "build_services"]
