"""Tests for the lazily built service container."""

from __future__ import annotations

from datetime import timedelta

import pytest

from runregistry.core.errors import ConfigError
from runregistry.core.settings import RegistrySettings
from runregistry.notification import EmailDispatcher
from runregistry.services import RegistryServices, build_services
from runregistry.submission import submit_run


@pytest.fixture
def settings(database_url) -> RegistrySettings:
    return RegistrySettings(
        _env_file=None,
        database_url=database_url,
        default_lifetime_minutes=5,
        max_runs=2,
    )


class TestRegistryServices:
    def test_components_are_lazy_and_shared(self, settings):
        services = RegistryServices(settings)
        assert services._registry is None
        registry = services.registry
        assert services.registry is registry
        assert registry.store is services.store
        services.close()

    def test_factory_lifetime_from_settings(self, settings):
        with build_services(settings) as services:
            run = services.factory.create("alice", "<w/>")
        assert run.expiry - run.created_at == timedelta(minutes=5)

    def test_run_limit_wired_to_registry(self, settings):
        with build_services(settings) as services:
            for owner in ("alice", "bob"):
                submit_run(owner, "<w/>", factory=services.factory, registry=services.registry)
            assert services.policy.permit_create("carol", "<w/>") is False

    def test_log_dispatcher_is_universal(self, settings):
        with build_services(settings) as services:
            assert services.notifications.schemes() == []

    def test_email_dispatcher_when_smtp_configured(self, database_url):
        settings = RegistrySettings(_env_file=None, database_url=database_url, smtp_host="smtp.example.org")
        with build_services(settings) as services:
            engine = services.notifications
            assert engine.schemes() == ["mailto"]
            assert isinstance(engine._dispatchers["mailto"], EmailDispatcher)

    def test_management_persists(self, settings):
        with build_services(settings) as services:
            services.management.allow_new_workflow_runs = False
        with build_services(settings) as services:
            assert services.management.allow_new_workflow_runs is False

    def test_default_database_under_data_dir(self, tmp_path):
        settings = RegistrySettings(_env_file=None, data_dir=tmp_path / "data", database_url=None)
        with build_services(settings) as services:
            assert services.registry.count() == 0
        assert (tmp_path / "data" / "runregistry.db").exists()

    def test_close_stops_scheduler(self, settings):
        services = build_services(settings)
        scheduler = services.scheduler
        scheduler.start()
        services.close()
        assert not scheduler.is_running

    @pytest.mark.parametrize("url", ["not a database url", "nosuchdialect://host/db"])
    def test_invalid_database_url_is_config_error(self, url):
        settings = RegistrySettings(_env_file=None, database_url=url)
        with pytest.raises(ConfigError):
            RegistryServices(settings).engine
