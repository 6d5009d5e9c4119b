"""
Case Score Aggregation

Combines diagnosis correctness, MCQ accuracy, EPA competency scores and hint
usage into a single final score out of 10 with a reproducible breakdown.
"""

from dataclasses import dataclass, asdict
from typing import Dict


@dataclass
class ScoreBreakdown:
    """Weighted components before the hint penalty is subtracted."""
    diagnosis: float
    knowledge: float
    history_taking: float
    physical_exam: float

    @property
    def total(self) -> float:
        return self.diagnosis + self.knowledge + self.history_taking + self.physical_exam

    def as_dict(self) -> Dict[str, float]:
        return {
            "diagnosis": self.diagnosis,
            "knowledge": self.knowledge,
            "historyTaking": self.history_taking,
            "physicalExam": self.physical_exam,
        }


@dataclass
class CaseResult:
    """Outcome of one completed simulation session."""
    diagnosis_correct: bool
    mcq_correct_count: int
    mcq_total: int
    epa_history: float
    epa_physical_exam: float
    hints_used: int
    hint_penalty: float
    final_score: float
    score_breakdown: ScoreBreakdown

    def as_dict(self) -> dict:
        data = asdict(self)
        data["score_breakdown"] = self.score_breakdown.as_dict()
        return data


class ScoreAggregator:
    """
    Weighted rubric, 10 points total:

    - Diagnosis accuracy: 4.0 (6.0 when the case has no MCQs), all or nothing
    - MCQ knowledge: (correct / total) * 2.0, or 0 when the case has no MCQs
    - History-taking: (EPA score / 10) * 2.5
    - Physical exam: (EPA score / 10) * 1.5

    Each hint used subtracts 0.5 from the sum; the result is clamped to [0, 10].
    """

    MAX_SCORE = 10.0
    DIAGNOSIS_POINTS = 4.0
    KNOWLEDGE_POINTS = 2.0
    HISTORY_TAKING_POINTS = 2.5
    PHYSICAL_EXAM_POINTS = 1.5
    HINT_PENALTY = 0.5
    EPA_SCALE = 10.0

    def diagnosis_max(self, mcq_total: int) -> float:
        """Knowledge points move to the diagnosis line when a case has no MCQs."""
        if mcq_total == 0:
            return self.DIAGNOSIS_POINTS + self.KNOWLEDGE_POINTS
        return self.DIAGNOSIS_POINTS

    def breakdown(
        self,
        diagnosis_correct: bool,
        mcq_correct_count: int,
        mcq_total: int,
        epa_history: float,
        epa_physical_exam: float,
    ) -> ScoreBreakdown:
        self._validate(mcq_correct_count, mcq_total, epa_history, epa_physical_exam)

        diagnosis = self.diagnosis_max(mcq_total) if diagnosis_correct else 0.0
        knowledge = (mcq_correct_count / mcq_total) * self.KNOWLEDGE_POINTS if mcq_total > 0 else 0.0

        return ScoreBreakdown(
            diagnosis=diagnosis,
            knowledge=knowledge,
            history_taking=(epa_history / self.EPA_SCALE) * self.HISTORY_TAKING_POINTS,
            physical_exam=(epa_physical_exam / self.EPA_SCALE) * self.PHYSICAL_EXAM_POINTS,
        )

    def aggregate(
        self,
        diagnosis_correct: bool,
        mcq_correct_count: int,
        mcq_total: int,
        epa_history: float,
        epa_physical_exam: float,
        hints_used: int = 0,
    ) -> CaseResult:
        """
        Compute the final score and breakdown.

        Raises:
            ValueError: On negative counts, more correct answers than
                questions, or EPA scores outside 0-10
        """
        if hints_used < 0:
            raise ValueError(f"hints_used must be >= 0, got {hints_used}")

        breakdown = self.breakdown(
            diagnosis_correct, mcq_correct_count, mcq_total, epa_history, epa_physical_exam
        )
        penalty = hints_used * self.HINT_PENALTY
        final_score = max(0.0, min(self.MAX_SCORE, breakdown.total - penalty))

        return CaseResult(
            diagnosis_correct=diagnosis_correct,
            mcq_correct_count=mcq_correct_count,
            mcq_total=mcq_total,
            epa_history=epa_history,
            epa_physical_exam=epa_physical_exam,
            hints_used=hints_used,
            hint_penalty=penalty,
            final_score=final_score,
            score_breakdown=breakdown,
        )

    def _validate(
        self,
        mcq_correct_count: int,
        mcq_total: int,
        epa_history: float,
        epa_physical_exam: float,
    ):
        if mcq_total < 0 or mcq_correct_count < 0:
            raise ValueError("MCQ counts must be >= 0")
        # With no MCQs the correct count is ignored entirely
        if mcq_total > 0 and mcq_correct_count > mcq_total:
            raise ValueError(f"mcq_correct_count ({mcq_correct_count}) exceeds mcq_total ({mcq_total})")
        for name, value in (("epa_history", epa_history), ("epa_physical_exam", epa_physical_exam)):
            if not 0 <= value <= self.EPA_SCALE:
                raise ValueError(f"{name} must be within 0-10, got {value}")
