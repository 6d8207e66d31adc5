"""Per-family sync configuration.

Each family is a ``FamilySpec`` value handed to the generic engine:
- journal: flat, one table
- journey: journeys plus their tracking data (shared id, pushed after
  the journey, resolved on its own timestamp, legacy point fallback)
- exposure: plans plus their ordered targets (owned, replaced with the
  plan on pull)
"""

import logging
from typing import Any, Callable, Dict, List

from wellsync.protocols import RemoteTableService, Row
from wellsync.storage.sqlite import SQLiteRecordStore
from wellsync.sync import mapping
from wellsync.sync.engine import EntitySpec, FamilySpec, NestedStep
from wellsync.types import (
    EntityFamily,
    Journey,
    JourneyTrackingData,
    JourneyType,
)

logger = logging.getLogger(__name__)

# Remote table names
JOURNAL_ENTRIES_TABLE = "journal_entries"
JOURNEYS_TABLE = "journeys"
JOURNEY_DATA_TABLE = "journey_data"
LEGACY_PATH_POINTS_TABLE = "path_points"
LEGACY_CHECKPOINTS_TABLE = "feeling_checkpoints"
EXPOSURE_PLANS_TABLE = "exposure_plans"
EXPOSURE_TARGETS_TABLE = "exposure_targets"


# =============================================================================
# Journeys
# =============================================================================


def repair_orphan_tracking_data(store: SQLiteRecordStore) -> int:
    """Give tracking data without a local journey a journey to hang from.

    The synthesized journey is completed, not current, and dirty so it is
    pushed ahead of its tracking data.
    """
    orphans = store.orphan_tracking_data()
    for data in orphans:
        journey = Journey(
            id=data.journey_id,
            created_at=data.created_at,
            updated_at=data.updated_at,
            journey_type=JourneyType.NONE,
            start_date=data.start_time,
            is_completed=True,
            current=False,
            is_deleted=data.is_deleted,
        )
        with store.write() as tx:
            # Re-check inside the transaction; a local save may have won
            if tx.get("journeys", journey.id) is None:
                tx.put(journey)
        logger.warning(f"Created journey {journey.id} for orphaned tracking data")
    return len(orphans)


async def _fetch_all_pages(
    remote: RemoteTableService,
    table: str,
    filters: Dict[str, Any],
    page_size: int,
    decode: Callable[[Row], Any],
) -> List[Any]:
    items: List[Any] = []
    offset = 0
    while True:
        page = await remote.select_page(table, filters, "timestamp", offset, page_size)
        items.extend(decode(r) for r in page)
        if len(page) < page_size:
            return items
        offset += page_size


async def hydrate_legacy_points(
    remote: RemoteTableService,
    row: Row,
    data: JourneyTrackingData,
    page_size: int,
) -> JourneyTrackingData:
    """Fill path points and checkpoints from the pre-JSON tables.

    Only columns that are null on the tracking row are fetched.
    """
    if not mapping.needs_legacy_points(row):
        return data
    filters = {"journey_data_id": data.id}
    if row.get("path_points_json") is None:
        data.path_points = await _fetch_all_pages(
            remote,
            LEGACY_PATH_POINTS_TABLE,
            filters,
            page_size,
            mapping.legacy_path_point_from_row,
        )
    if row.get("checkpoints_json") is None:
        data.checkpoints = await _fetch_all_pages(
            remote,
            LEGACY_CHECKPOINTS_TABLE,
            filters,
            page_size,
            mapping.legacy_checkpoint_from_row,
        )
    logger.debug(
        f"Loaded legacy points for journey {data.id}: "
        f"{len(data.path_points)} path points, {len(data.checkpoints)} checkpoints"
    )
    return data


# =============================================================================
# Family specs
# =============================================================================

JOURNAL_FAMILY = FamilySpec(
    family=EntityFamily.JOURNAL,
    root=EntitySpec(
        local_table="journal_entries",
        remote_table=JOURNAL_ENTRIES_TABLE,
        to_row=mapping.journal_entry_to_row,
        from_row=mapping.journal_entry_from_row,
    ),
)

JOURNEY_FAMILY = FamilySpec(
    family=EntityFamily.JOURNEY,
    root=EntitySpec(
        local_table="journeys",
        remote_table=JOURNEYS_TABLE,
        to_row=mapping.journey_to_row,
        from_row=mapping.journey_from_row,
    ),
    nested=(
        NestedStep(
            entity=EntitySpec(
                local_table="journey_tracking_data",
                remote_table=JOURNEY_DATA_TABLE,
                to_row=mapping.tracking_data_to_row,
                from_row=mapping.tracking_data_from_row,
            ),
            parent_column="journey_id",
            hydrate=hydrate_legacy_points,
        ),
    ),
    prepare_push=repair_orphan_tracking_data,
)

EXPOSURE_FAMILY = FamilySpec(
    family=EntityFamily.EXPOSURE,
    root=EntitySpec(
        local_table="exposure_plans",
        remote_table=EXPOSURE_PLANS_TABLE,
        to_row=mapping.exposure_plan_to_row,
        from_row=mapping.exposure_plan_from_row,
    ),
    nested=(
        NestedStep(
            entity=EntitySpec(
                local_table="exposure_targets",
                remote_table=EXPOSURE_TARGETS_TABLE,
                to_row=mapping.exposure_target_to_row,
                from_row=mapping.exposure_target_from_row,
                push_order="order_index",
            ),
            parent_column="plan_id",
            owned=True,
        ),
    ),
)

DEFAULT_FAMILIES = (JOURNAL_FAMILY, JOURNEY_FAMILY, EXPOSURE_FAMILY)
