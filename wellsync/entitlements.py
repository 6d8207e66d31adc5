"""Entitlement gates: may the current user sync a given family?

The engine only consumes the boolean. ``TierEntitlementGate`` maps a
subscription tier to the cloud-sync features it unlocks and notifies
subscribers when the tier changes (e.g. purchase, expiry, restore).
"""

import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from wellsync.protocols import EntitlementListener
from wellsync.types import EntityFamily

logger = logging.getLogger(__name__)


class SubscriptionTier(str, Enum):
    """Available subscription tiers."""

    free = "free"
    pro = "pro"


# Families each tier may sync to the cloud
TIER_SYNC_FAMILIES: Dict[SubscriptionTier, FrozenSet[EntityFamily]] = {
    SubscriptionTier.free: frozenset(),
    SubscriptionTier.pro: frozenset(EntityFamily),
}


class _ListenerRegistry:
    def __init__(self):
        self._listeners: List[EntitlementListener] = []

    def subscribe(self, listener: EntitlementListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, family: Optional[EntityFamily] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(family)
            except Exception as e:
                # One bad listener must not keep the others from hearing the change
                logger.error(f"Entitlement listener failed: {e}", exc_info=True)


class StaticEntitlementGate(_ListenerRegistry):
    """Per-family flags set directly by the host."""

    def __init__(self, allowed: Iterable[EntityFamily] = ()):
        super().__init__()
        self._allowed = set(allowed)

    def can_sync(self, family: EntityFamily) -> bool:
        return family in self._allowed

    def set_allowed(self, family: EntityFamily, allowed: bool) -> None:
        was_allowed = family in self._allowed
        if allowed:
            self._allowed.add(family)
        else:
            self._allowed.discard(family)
        if was_allowed != allowed:
            logger.info(f"Sync entitlement for {family.value} -> {allowed}")
            self.notify(family)


class TierEntitlementGate(_ListenerRegistry):
    """Entitlement derived from the user's subscription tier."""

    def __init__(
        self,
        tier: SubscriptionTier = SubscriptionTier.free,
        tier_families: Optional[Dict[SubscriptionTier, FrozenSet[EntityFamily]]] = None,
    ):
        super().__init__()
        self._tier = tier
        self._tier_families = tier_families or TIER_SYNC_FAMILIES

    @property
    def tier(self) -> SubscriptionTier:
        return self._tier

    def can_sync(self, family: EntityFamily) -> bool:
        return family in self._tier_families.get(self._tier, frozenset())

    def set_tier(self, tier: SubscriptionTier) -> None:
        if tier == self._tier:
            return
        logger.info(f"Subscription tier changed: {self._tier.value} -> {tier.value}")
        self._tier = tier
        self.notify(None)
