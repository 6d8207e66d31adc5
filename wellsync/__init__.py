"""
wellsync - Offline-first sync for personal wellness records.

Journal entries, journeys and exposure plans live in a local SQLite store
and reconcile with Supabase whenever the user is entitled and online.
"""

from .entitlements import StaticEntitlementGate, SubscriptionTier, TierEntitlementGate
from .storage import SQLiteRecordStore
from .sync import IntervalScheduler, ManualScheduler, SyncCoordinator, SyncEngine
from .types import (
    EntityFamily,
    ExposurePlan,
    ExposureTarget,
    JournalEntry,
    Journey,
    JourneyTrackingData,
    SyncResult,
)

try:
    from importlib.metadata import version

    __version__ = version("wellsync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "SQLiteRecordStore",
    "SyncEngine",
    "SyncCoordinator",
    "IntervalScheduler",
    "ManualScheduler",
    "StaticEntitlementGate",
    "TierEntitlementGate",
    "SubscriptionTier",
    "EntityFamily",
    "JournalEntry",
    "Journey",
    "JourneyTrackingData",
    "ExposurePlan",
    "ExposureTarget",
    "SyncResult",
]
