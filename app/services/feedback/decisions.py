"""
Crisis and recovery decisions.

Both decisions read the same extracted rating and are independent: a
response can raise a crisis alert, earn a reward, both, or neither.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.schemas.survey import AlertConfig, RecoveryConfig, DEFAULT_ALERT_THRESHOLD


class RecoveryTier(str, Enum):
    BAD = "bad"
    NEUTRAL = "neutral"
    GOOD = "good"


class OfferSource(str, Enum):
    TIER = "tier"
    LEGACY = "legacy"


@dataclass(frozen=True)
class RecoveryOffer:
    tier: RecoveryTier
    offer: str
    code: str
    source: OfferSource = OfferSource.TIER


def should_raise_crisis(rating: Optional[int], alert_config: Optional[AlertConfig] = None) -> bool:
    """True when a rating exists and is at or below the survey's threshold."""
    if rating is None:
        return False
    threshold = alert_config.threshold if alert_config else DEFAULT_ALERT_THRESHOLD
    return rating <= threshold


def tier_for_rating(rating: Optional[int]) -> Optional[RecoveryTier]:
    """Rating bucket; exactly one tier per rating."""
    if rating is None:
        return None
    if rating >= 4:
        return RecoveryTier.GOOD
    if rating == 3:
        return RecoveryTier.NEUTRAL
    return RecoveryTier.BAD


def select_recovery(rating: Optional[int], recovery_config: Optional[RecoveryConfig]) -> Optional[RecoveryOffer]:
    """
    Pick the reward to offer the customer.

    The legacy flat offer is only a fallback for the bad tier.
    """
    tier = tier_for_rating(rating)
    if tier is None or recovery_config is None:
        return None

    tier_config = getattr(recovery_config, tier.value)
    if tier_config.enabled:
        return RecoveryOffer(tier=tier, offer=tier_config.offer, code=tier_config.code)

    if tier is RecoveryTier.BAD and recovery_config.enabled:
        return RecoveryOffer(
            tier=tier,
            offer=recovery_config.offer,
            code=recovery_config.code,
            source=OfferSource.LEGACY,
        )

    return None
