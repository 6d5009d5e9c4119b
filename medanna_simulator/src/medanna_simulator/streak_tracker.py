"""
Streak and Leaderboard Arithmetic

Pure state transitions applied once per completed case: the consecutive-day
streak and the leaderboard running average. Persistence lives in
progress_updater.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional


def utc_today() -> date:
    """Today's date at UTC midnight, so streak days do not skew across timezones."""
    return datetime.now(timezone.utc).date()


def _parse_day(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if len(text) > 10:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed.astimezone(timezone.utc).date() if parsed.tzinfo else parsed.date()
    return date.fromisoformat(text)


@dataclass
class StreakState:
    """One streak record per user. max_streak >= current_streak always."""
    current_streak: int = 0
    max_streak: int = 0
    last_active_day: Optional[date] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StreakState":
        return cls(
            current_streak=int(row.get("current_streak") or 0),
            max_streak=int(row.get("max_streak") or 0),
            last_active_day=_parse_day(row.get("last_active_day")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "current_streak": self.current_streak,
            "max_streak": self.max_streak,
            "last_active_day": self.last_active_day.isoformat() if self.last_active_day else None,
        }


def compute_next_streak(previous: Optional[StreakState], today: Optional[date] = None) -> StreakState:
    """
    Streak after a completion on `today`.

    - No prior record: streak starts at 1
    - Last active today: unchanged
    - Last active yesterday: +1
    - Older gap: reset to 1

    last_active_day always becomes today; max_streak never decreases.
    """
    today = today or utc_today()

    if previous is None or previous.last_active_day is None:
        current = 1
        prior_max = previous.max_streak if previous else 0
    else:
        gap = (today - previous.last_active_day).days
        if gap <= 0:
            # Same day, or a clock that ran backwards: never double count
            current = previous.current_streak
        elif gap == 1:
            current = previous.current_streak + 1
        else:
            current = 1
        prior_max = previous.max_streak

    return StreakState(
        current_streak=current,
        max_streak=max(prior_max, current),
        last_active_day=today,
    )


def next_leaderboard_average(old_average: float, prior_completed: int, final_score: float) -> float:
    """
    Running average after one more completion.

    new_avg = (old_avg * prior + score) / (prior + 1)
    """
    if prior_completed < 0:
        raise ValueError(f"prior_completed must be >= 0, got {prior_completed}")
    return (old_average * prior_completed + final_score) / (prior_completed + 1)
