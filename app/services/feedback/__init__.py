"""
Feedback signal processing services.

The pure signal modules are exported here. The repository-backed services
(MetricsAggregator, ResponseProcessor) are imported from their own modules.
"""

from app.services.feedback.signal_extractor import FeedbackSignal, extract_signal, extract_rating, parse_rating
from app.services.feedback.keyword_miner import mine_keywords, top_issues
from app.services.feedback.staff_attributor import StaffAttributor
from app.services.feedback.decisions import (
    RecoveryTier,
    RecoveryOffer,
    should_raise_crisis,
    select_recovery,
)

__all__ = [
    "FeedbackSignal",
    "extract_signal",
    "extract_rating",
    "parse_rating",
    "mine_keywords",
    "top_issues",
    "StaffAttributor",
    "RecoveryTier",
    "RecoveryOffer",
    "should_raise_crisis",
    "select_recovery",
]
