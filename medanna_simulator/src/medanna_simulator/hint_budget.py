"""
Hint Budget Tracker

Daily quota of AI-generated hints. The stored record is {"count", "date"};
any access on a new local calendar day resets the count to the maximum.
"""

import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from medanna_simulator.errors import BudgetExhausted
from medanna_simulator.storage import StoragePort

logger = logging.getLogger(__name__)

HINT_STORAGE_KEY = "medanna_hintUsage_v2"
DEFAULT_MAX_HINTS = 10


def max_hints_from_env() -> int:
    return int(os.getenv("MAX_DAILY_HINTS", str(DEFAULT_MAX_HINTS)))


@dataclass
class HintBudget:
    count: int
    date: str


class HintBudgetTracker:
    """
    Per-day hint counter over an injected storage port.

    Single actor: one user with one active case, last write wins.
    """

    def __init__(
        self,
        storage: StoragePort,
        max_hints: Optional[int] = None,
        storage_key: str = HINT_STORAGE_KEY,
        today: Optional[Callable[[], date]] = None,
    ):
        self.storage = storage
        self.max_hints = max_hints if max_hints is not None else max_hints_from_env()
        self.storage_key = storage_key
        # Local calendar day of the user
        self._today = today or date.today

    def _today_key(self) -> str:
        return self._today().isoformat()

    def _load(self) -> HintBudget:
        """Current budget, resetting and persisting it on a new day or bad record."""
        today = self._today_key()
        saved = self.storage.get(self.storage_key)

        if isinstance(saved, dict) and saved.get("date") == today:
            try:
                count = int(saved.get("count"))
            except (TypeError, ValueError):
                logger.warning(f"⚠️ [HintBudgetTracker] Corrupt hint record {saved!r}, resetting")
            else:
                return HintBudget(count=max(0, min(count, self.max_hints)), date=today)

        budget = HintBudget(count=self.max_hints, date=today)
        self._save(budget)
        return budget

    def _save(self, budget: HintBudget):
        self.storage.set(self.storage_key, {"count": budget.count, "date": budget.date})

    def get_remaining(self) -> int:
        return self._load().count

    def hints_used_today(self) -> int:
        return self.max_hints - self.get_remaining()

    def consume_one(self) -> int:
        """
        Use one hint.

        Returns:
            Remaining hints after this one

        Raises:
            BudgetExhausted: If no hints remain; the stored count stays 0
        """
        budget = self._load()
        if budget.count <= 0:
            raise BudgetExhausted()

        budget.count -= 1
        self._save(budget)
        logger.info(f"💡 [HintBudgetTracker] Hint used, {budget.count}/{self.max_hints} remaining")
        return budget.count
