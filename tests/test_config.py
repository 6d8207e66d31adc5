"""Tests for settings and wiring."""

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from wellsync.config import (
    Settings,
    build_coordinator,
    configure_logging,
    create_supabase_client,
    get_settings,
)
from wellsync.protocols import ConfigurationError
from wellsync.remote import StaticUserProvider, SupabaseSessionProvider, SupabaseTableService
from wellsync.sync import IntervalScheduler, ManualScheduler
from wellsync.types import EntityFamily


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "WELLSYNC_SUPABASE_URL",
        "WELLSYNC_SUPABASE_KEY",
        "WELLSYNC_DB_PATH",
        "WELLSYNC_SYNC_INTERVAL_SECONDS",
        "WELLSYNC_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.supabase_url is None
        assert settings.sync_interval_seconds == 300.0
        assert settings.sync_on_start is True
        assert settings.legacy_page_size == 1000
        assert settings.db_path.name == "wellsync.db"

    def test_reads_prefixed_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WELLSYNC_SUPABASE_URL", "https://abc.supabase.co")
        monkeypatch.setenv("WELLSYNC_SUPABASE_KEY", "anon-key")
        monkeypatch.setenv("WELLSYNC_DB_PATH", str(tmp_path / "env.db"))
        monkeypatch.setenv("WELLSYNC_SYNC_INTERVAL_SECONDS", "60")

        settings = Settings(_env_file=None)

        assert settings.supabase_url == "https://abc.supabase.co"
        assert settings.supabase_key == "anon-key"
        assert settings.db_path == Path(tmp_path / "env.db")
        assert settings.sync_interval_seconds == 60.0

    @pytest.mark.parametrize(
        "field,value",
        [("sync_interval_seconds", 0), ("sync_interval_seconds", -5), ("legacy_page_size", 0)],
    )
    def test_rejects_non_positive(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestSupabaseClient:
    def test_missing_url_or_key(self):
        with pytest.raises(ConfigurationError):
            create_supabase_client(Settings(_env_file=None, supabase_url="https://abc.supabase.co"))

    def test_creates_client(self):
        settings = Settings(
            _env_file=None, supabase_url="https://abc.supabase.co", supabase_key="anon-key"
        )
        with patch("wellsync.config.create_client") as create:
            client = create_supabase_client(settings)

        create.assert_called_once_with("https://abc.supabase.co", "anon-key")
        assert client is create.return_value


class TestBuildCoordinator:
    def test_wires_components(self, tmp_path):
        settings = Settings(
            _env_file=None,
            db_path=tmp_path / "wired.db",
            sync_interval_seconds=45,
            legacy_page_size=250,
        )
        gate = MagicMock()
        gate.can_sync.return_value = False

        coordinator = build_coordinator(gate, settings, client=MagicMock())

        assert coordinator.interval == 45
        assert isinstance(coordinator.scheduler, IntervalScheduler)
        assert isinstance(coordinator.engine.remote, SupabaseTableService)
        assert isinstance(coordinator.engine.user_provider, SupabaseSessionProvider)
        assert coordinator.engine.legacy_page_size == 250
        assert coordinator.engine.store.db_path == tmp_path / "wired.db"
        assert set(coordinator.families) == set(EntityFamily)
        gate.subscribe.assert_called_once_with(coordinator.handle_entitlement_change)

    def test_injected_collaborators(self, tmp_path):
        settings = Settings(_env_file=None, db_path=tmp_path / "wired.db", sync_on_start=False)
        provider = StaticUserProvider("u1")
        scheduler = ManualScheduler()

        coordinator = build_coordinator(
            MagicMock(), settings, client=MagicMock(), user_provider=provider, scheduler=scheduler
        )

        assert coordinator.engine.user_provider is provider
        assert coordinator.scheduler is scheduler
        assert coordinator.sync_on_start is False

    def test_requires_client_settings(self, tmp_path):
        settings = Settings(_env_file=None, db_path=tmp_path / "wired.db")
        with pytest.raises(ConfigurationError):
            build_coordinator(MagicMock(), settings)


class TestLogging:
    def test_configure_logging_level(self):
        with patch("wellsync.config.logging.basicConfig") as basic_config:
            configure_logging("debug")

        assert basic_config.call_args.kwargs["level"] == logging.DEBUG

    def test_unknown_level_falls_back_to_warning(self):
        with patch("wellsync.config.logging.basicConfig") as basic_config:
            configure_logging("chatty")

        assert basic_config.call_args.kwargs["level"] == logging.WARNING
