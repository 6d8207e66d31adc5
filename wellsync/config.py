"""Configuration settings and wiring for wellsync."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from supabase import Client, create_client

from wellsync.protocols import ConfigurationError, CurrentUserProvider, EntitlementGate, Scheduler
from wellsync.remote import SupabaseSessionProvider, SupabaseTableService
from wellsync.storage import SQLiteRecordStore
from wellsync.sync import DEFAULT_FAMILIES, SyncCoordinator, SyncEngine

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from ``WELLSYNC_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="WELLSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None  # publishable/anon key; RLS scopes rows to the user

    # Local store
    db_path: Path = Path.home() / ".wellsync" / "wellsync.db"

    # Sync
    sync_interval_seconds: float = 300.0
    sync_on_start: bool = True
    legacy_page_size: int = 1000

    log_level: str = "WARNING"

    @field_validator("sync_interval_seconds")
    @classmethod
    def _interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("sync_interval_seconds must be positive")
        return v

    @field_validator("legacy_page_size")
    @classmethod
    def _page_size_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("legacy_page_size must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Basic logging setup for hosts that do not configure their own."""
    name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_supabase_client(settings: Optional[Settings] = None) -> Client:
    """Build a Supabase client from settings."""
    if settings is None:
        settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise ConfigurationError("WELLSYNC_SUPABASE_URL and WELLSYNC_SUPABASE_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_key)


def build_coordinator(
    gate: EntitlementGate,
    settings: Optional[Settings] = None,
    *,
    client: Optional[Client] = None,
    user_provider: Optional[CurrentUserProvider] = None,
    scheduler: Optional[Scheduler] = None,
) -> SyncCoordinator:
    """Wire store, remote service, engine and coordinator together.

    The Supabase client is created here (or injected) and handed down
    explicitly; nothing below holds a global client.
    """
    if settings is None:
        settings = get_settings()
    if client is None:
        client = create_supabase_client(settings)

    store = SQLiteRecordStore(settings.db_path)
    engine = SyncEngine(
        store,
        SupabaseTableService(client),
        user_provider or SupabaseSessionProvider(client),
        DEFAULT_FAMILIES,
        legacy_page_size=settings.legacy_page_size,
    )
    logger.debug(f"Record store at {store.db_path}")
    return SyncCoordinator(
        engine,
        gate,
        scheduler,
        interval=settings.sync_interval_seconds,
        sync_on_start=settings.sync_on_start,
    )
