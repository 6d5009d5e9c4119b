"""
Case Completion

The "finish case" pipeline, run as one asynchronous sequence:

1. EPA evaluation of the transcript (one language model round-trip, never fails)
2. Score aggregation (pure)
3. Progress persistence (five concurrent writes)
4. Clearing the saved transcript, only once persistence succeeded
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from medanna_simulator.case_models import ChatMessage, DiagnosticCase
from medanna_simulator.epa_evaluator import CaseFacts, EPAEvaluation, EPAEvaluator
from medanna_simulator.local_state import AppState
from medanna_simulator.progress_updater import ProgressUpdate, ProgressUpdater
from medanna_simulator.score_aggregator import CaseResult, ScoreAggregator

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    result: CaseResult
    evaluation: EPAEvaluation
    progress: ProgressUpdate
    correct_diagnosis: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "result": self.result.as_dict(),
            "evaluation": self.evaluation.as_dict(),
            "progress": self.progress.as_dict(),
            "correctDiagnosis": self.correct_diagnosis,
        }


class CaseCompletionService:
    """Scores and records a finished case."""

    def __init__(
        self,
        evaluator: EPAEvaluator,
        progress_updater: ProgressUpdater,
        app_state: AppState,
        aggregator: Optional[ScoreAggregator] = None,
    ):
        self.evaluator = evaluator
        self.progress_updater = progress_updater
        self.app_state = app_state
        self.aggregator = aggregator or ScoreAggregator()

    async def finish_case(
        self,
        user_id: str,
        case: DiagnosticCase,
        chosen_diagnosis: Optional[str],
        mcq_answers: Dict,
        transcript: Optional[List[ChatMessage]] = None,
        full_name: Optional[str] = None,
    ) -> CompletionOutcome:
        """
        Evaluate, score and persist one case.

        Args:
            user_id: User UUID
            case: The case being finished
            chosen_diagnosis: Diagnosis picked by the student
            mcq_answers: MCQ index -> chosen option index
            transcript: Conversation; the saved transcript is used when omitted
            full_name: Name shown on the leaderboard

        Raises:
            PersistenceFailure: If any completion write failed. The saved
                transcript is kept so the user can retry.
        """
        start_time = time.time()

        if transcript is None:
            transcript = self.app_state.transcripts.load(case.title)

        evaluation = await self.evaluator.evaluate(CaseFacts.from_case(case), transcript)
        if evaluation.failed:
            logger.warning(f"⚠️ [CaseCompletion] EPA evaluation failed for '{case.title}': {evaluation.history_taking_justification}")

        hints_used = self.app_state.hints.hints_used_today()
        result = self.aggregator.aggregate(
            diagnosis_correct=case.is_correct_diagnosis(chosen_diagnosis),
            mcq_correct_count=case.count_correct_answers(mcq_answers),
            mcq_total=len(case.mcqs),
            epa_history=evaluation.history_taking_score,
            epa_physical_exam=evaluation.physical_exam_score,
            hints_used=hints_used,
        )

        progress = await self.progress_updater.record_completion(
            user_id, case, result, full_name=full_name
        )

        self.app_state.transcripts.clear(case.title)

        elapsed = time.time() - start_time
        logger.info(
            f"✅ [CaseCompletion] '{case.title}' scored {result.final_score:.2f}/10 "
            f"(hints={hints_used}) in {elapsed:.2f}s"
        )
        return CompletionOutcome(
            result=result,
            evaluation=evaluation,
            progress=progress,
            correct_diagnosis=case.correct_diagnosis,
        )
