"""Sync engine, family configuration, scheduling and coordination."""

from wellsync.sync.coordinator import DEFAULT_SYNC_INTERVAL, SyncCoordinator
from wellsync.sync.engine import (
    EntitySpec,
    FamilySpec,
    NestedStep,
    Resolution,
    SyncEngine,
    resolve,
)
from wellsync.sync.families import (
    DEFAULT_FAMILIES,
    EXPOSURE_FAMILY,
    JOURNAL_FAMILY,
    JOURNEY_FAMILY,
)
from wellsync.sync.scheduler import IntervalScheduler, ManualScheduler

__all__ = [
    "SyncCoordinator",
    "SyncEngine",
    "EntitySpec",
    "FamilySpec",
    "NestedStep",
    "Resolution",
    "resolve",
    "IntervalScheduler",
    "ManualScheduler",
    "DEFAULT_FAMILIES",
    "DEFAULT_SYNC_INTERVAL",
    "JOURNAL_FAMILY",
    "JOURNEY_FAMILY",
    "EXPOSURE_FAMILY",
]
