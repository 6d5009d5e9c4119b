"""
Progress Updater

Persists a completed case: case log, lifetime progress, streak, leaderboard
average and a completion notification.

The five writes are issued concurrently as independent requests and awaited
together. There is no cross-table transaction: if any write fails the whole
operation is reported as failed, but writes that already landed are not
rolled back. Callers must treat a PersistenceFailure as "state may be
partially updated".
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from medanna_simulator.case_models import DiagnosticCase
from medanna_simulator.errors import PersistenceFailure
from medanna_simulator.notification_manager import notification_row
from medanna_simulator.score_aggregator import CaseResult
from medanna_simulator.streak_tracker import (
    StreakState,
    compute_next_streak,
    next_leaderboard_average,
    utc_today,
)

logger = logging.getLogger(__name__)

CASE_LOG_TABLE = "case_completions"
PROGRESS_TABLE = "user_progress"
STREAK_TABLE = "user_streaks"
LEADERBOARD_TABLE = "leaderboard"


@dataclass
class PriorProgress:
    """Persisted state read before a completion is applied."""
    completed: int = 0
    streak: Optional[StreakState] = None
    leaderboard_average: Optional[float] = None


@dataclass
class ProgressUpdate:
    """New state written by a completion."""
    completed: int
    streak: StreakState
    leaderboard_average: float
    notification: Dict[str, Any]

    def as_dict(self) -> dict:
        return {
            "completed": self.completed,
            "streak": self.streak.to_row(),
            "leaderboardAverage": self.leaderboard_average,
        }


def plan_update(prior: PriorProgress, final_score: float, today: date) -> Tuple[int, StreakState, float]:
    """
    New (completed, streak, average) from prior state.

    A user without a leaderboard row starts a fresh average, whatever the
    progress counter says.
    """
    streak = compute_next_streak(prior.streak, today)
    if prior.leaderboard_average is None:
        average = final_score
    else:
        average = next_leaderboard_average(prior.leaderboard_average, prior.completed, final_score)
    return prior.completed + 1, streak, average


def completion_notification(case: DiagnosticCase, result: CaseResult, streak: StreakState, previous_max: int) -> Dict[str, str]:
    title = f"Case completed: {case.title}"
    message = f"You scored {result.final_score:.1f}/10."
    if streak.current_streak > 1 and streak.current_streak > previous_max:
        title = f"New best streak: {streak.current_streak} days!"
        message += f" That's {streak.current_streak} days in a row."
    elif streak.current_streak > 1:
        message += f" Current streak: {streak.current_streak} days."
    return {"title": title, "message": message}


class ProgressUpdater:
    """Applies a case completion to the user's persisted progress."""

    def __init__(self, supabase_client):
        """
        Args:
            supabase_client: Supabase client instance
        """
        self.supabase = supabase_client

    def _select_one(self, table: str, user_id: str):
        return self.supabase.table(table).select('*').eq('user_id', user_id).limit(1)

    async def load_prior(self, user_id: str) -> PriorProgress:
        """
        Read progress, streak and leaderboard rows concurrently.

        Raises:
            PersistenceFailure: If any read fails
        """
        names = [PROGRESS_TABLE, STREAK_TABLE, LEADERBOARD_TABLE]
        results = await asyncio.gather(
            *(asyncio.to_thread(self._select_one(name, user_id).execute) for name in names),
            return_exceptions=True,
        )

        failed = [f"read {name}" for name, res in zip(names, results) if isinstance(res, BaseException)]
        if failed:
            errors = [res for res in results if isinstance(res, BaseException)]
            logger.error(f"❌ [ProgressUpdater] Failed to load prior progress for user {user_id[:20]}...: {failed}")
            raise PersistenceFailure(failed, errors)

        progress_rows, streak_rows, leaderboard_rows = (res.data or [] for res in results)
        return PriorProgress(
            completed=int(progress_rows[0].get("completed") or 0) if progress_rows else 0,
            streak=StreakState.from_row(streak_rows[0]) if streak_rows else None,
            leaderboard_average=float(leaderboard_rows[0].get("score") or 0.0) if leaderboard_rows else None,
        )

    async def record_completion(
        self,
        user_id: str,
        case: DiagnosticCase,
        result: CaseResult,
        full_name: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ProgressUpdate:
        """
        Persist one completed case.

        Raises:
            PersistenceFailure: If reading prior state or any write fails
        """
        today = today or utc_today()
        prior = await self.load_prior(user_id)
        completed, streak, average = plan_update(prior, result.final_score, today)
        previous_max = prior.streak.max_streak if prior.streak else 0

        now = datetime.now(timezone.utc).isoformat()
        notice = completion_notification(case, result, streak, previous_max)
        notification = notification_row(
            user_id,
            "achievement",
            notice["title"],
            notice["message"],
            link="#dashboard",
        )

        writes = [
            (CASE_LOG_TABLE, self.supabase.table(CASE_LOG_TABLE).insert({
                "user_id": user_id,
                "case_title": case.title,
                "specialty": case.tags.specialty,
                "training_phase": case.tags.training_phase,
                "diagnosis_correct": result.diagnosis_correct,
                "mcq_correct": result.mcq_correct_count,
                "mcq_total": result.mcq_total,
                "hints_used": result.hints_used,
                "history_score": result.epa_history,
                "physical_exam_score": result.epa_physical_exam,
                "final_score": result.final_score,
                "score_breakdown": result.score_breakdown.as_dict(),
                "completed_at": now,
            })),
            (PROGRESS_TABLE, self.supabase.table(PROGRESS_TABLE).upsert({
                "user_id": user_id,
                "completed": completed,
                "updated_at": now,
            }, on_conflict="user_id")),
            (STREAK_TABLE, self.supabase.table(STREAK_TABLE).upsert({
                "user_id": user_id,
                **streak.to_row(),
            }, on_conflict="user_id")),
            (LEADERBOARD_TABLE, self.supabase.table(LEADERBOARD_TABLE).upsert({
                "user_id": user_id,
                "score": average,
                "full_name": full_name,
                "updated_at": now,
            }, on_conflict="user_id")),
            ("notifications", self.supabase.table("notifications").insert(notification)),
        ]

        await self._execute_all(user_id, writes)

        logger.info(
            f"✅ [ProgressUpdater] Recorded completion for user {user_id[:20]}... "
            f"(completed={completed}, streak={streak.current_streak}, avg={average:.2f})"
        )
        return ProgressUpdate(
            completed=completed,
            streak=streak,
            leaderboard_average=average,
            notification=notification,
        )

    async def _execute_all(self, user_id: str, writes: List[Tuple[str, Any]]):
        results = await asyncio.gather(
            *(asyncio.to_thread(query.execute) for _, query in writes),
            return_exceptions=True,
        )

        failed: List[str] = []
        errors: List[BaseException] = []
        for (name, _), res in zip(writes, results):
            if isinstance(res, BaseException):
                failed.append(name)
                errors.append(res)

        if failed:
            logger.error(
                f"❌ [ProgressUpdater] {len(failed)}/{len(writes)} completion writes failed for user "
                f"{user_id[:20]}...: {failed}. Earlier writes are not rolled back."
            )
            raise PersistenceFailure(failed, errors)

    async def get_leaderboard(self, limit: int = 20) -> List[Dict[str, Any]]:
        query = self.supabase.table(LEADERBOARD_TABLE) \
            .select('user_id, full_name, score') \
            .order('score', desc=True) \
            .limit(limit)
        result = await asyncio.to_thread(query.execute)
        return result.data or []

    async def get_progress(self, user_id: str) -> Dict[str, Any]:
        """Lifetime completions, streak and average for a dashboard."""
        prior = await self.load_prior(user_id)
        streak = prior.streak or StreakState()
        return {
            "completed": prior.completed,
            "currentStreak": streak.current_streak,
            "maxStreak": streak.max_streak,
            "lastActiveDay": streak.last_active_day.isoformat() if streak.last_active_day else None,
            "averageScore": prior.leaderboard_average,
        }
