"""
Staff Attributor

Heuristically finds the staff member named in a "who served you?" answer and
accumulates per-person rating statistics for the staff leaderboard.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from app.services.feedback.signal_extractor import answer_value, question_text

STAFF_RANKING_LIMIT = 5
MIN_NAME_LENGTH = 2

STAFF_QUESTION_KEYWORDS = (
    "atendió", "atendio", "mesero", "camarero", "personal", "quién", "quien",
    "attended", "waiter", "staff", "who",
)

_YES_PREFIX = re.compile(r"^(sí|si|yes)\s*-\s*", re.IGNORECASE)


@dataclass
class StaffStats:
    count: int = 0
    total: int = 0

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0


def is_staff_question(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in STAFF_QUESTION_KEYWORDS)


def normalize_staff_name(raw: Optional[str]) -> Optional[str]:
    """
    "Sí - juan pérez" -> "Juan Pérez". Returns None when nothing usable is left.
    """
    if not raw:
        return None
    name = _YES_PREFIX.sub("", raw.strip()).strip()
    if len(name) <= MIN_NAME_LENGTH:
        return None
    return " ".join(word.capitalize() for word in name.lower().split())


def find_staff_name(answers: Iterable) -> Optional[str]:
    """Normalized name from the first staff-question answer long enough to be a name."""
    for answer in answers or []:
        value = answer_value(answer)
        if is_staff_question(question_text(answer)) and len(value) > MIN_NAME_LENGTH:
            return normalize_staff_name(value)
    return None


class StaffAttributor:
    """
    Accumulates ratings per staff member.

    Ranking ties keep insertion order: sorted() is stable and there is no
    secondary key.
    """

    def __init__(self):
        self._stats: dict[str, StaffStats] = {}

    def add(self, name: Optional[str], rating: Optional[int]) -> bool:
        if not name or rating is None or rating <= 0:
            return False
        stats = self._stats.setdefault(name, StaffStats())
        stats.count += 1
        stats.total += rating
        return True

    def add_response(self, answers: Iterable, rating: Optional[int]) -> bool:
        return self.add(find_staff_name(answers), rating)

    @property
    def stats(self) -> dict[str, StaffStats]:
        return dict(self._stats)

    def ranking(self, limit: int = STAFF_RANKING_LIMIT) -> list[dict]:
        ranked = sorted(self._stats.items(), key=lambda item: round(item[1].average, 1), reverse=True)
        return [
            {"name": name, "count": stats.count, "average": round(stats.average, 1)}
            for name, stats in ranked[:limit]
        ]
