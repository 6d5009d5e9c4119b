"""
EPA Evaluator

Scores the student's interview against the case's authoritative history and
exam findings on two Entrustable Professional Activities: History-taking and
Physical Exam.

Failure policy: a malformed or missing evaluation never blocks case
completion. Any parse, validation or API failure degrades to zero for both
competencies with a justification noting the failure.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import List, Literal, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError, field_validator

from medanna_simulator.case_models import ChatMessage, DiagnosticCase
from medanna_simulator.errors import EvaluationFailure
from medanna_simulator.llm import complete, extract_json, get_llm_client
from medanna_simulator.patient_simulator import conversation_turns, format_transcript

logger = logging.getLogger(__name__)

HISTORY_TAKING = "History-taking"
PHYSICAL_EXAM = "Physical Exam"
EVALUATION_FAILED_NOTE = "Evaluation failed: the assessment could not be scored automatically."


@dataclass
class CaseFacts:
    """Authoritative case text the transcript is judged against."""
    history_of_present_illness: str
    physical_exam: str

    @classmethod
    def from_case(cls, case: DiagnosticCase) -> "CaseFacts":
        return cls(
            history_of_present_illness=case.history_of_present_illness,
            physical_exam=case.physical_exam,
        )


@dataclass
class EPAEvaluation:
    """Scores on the two fixed competencies, each 0-10."""
    history_taking_score: float
    physical_exam_score: float
    history_taking_justification: str = ""
    physical_exam_justification: str = ""
    failed: bool = False

    @classmethod
    def failure(cls, reason: str) -> "EPAEvaluation":
        note = f"{EVALUATION_FAILED_NOTE} ({reason})"
        return cls(
            history_taking_score=0.0,
            physical_exam_score=0.0,
            history_taking_justification=note,
            physical_exam_justification=note,
            failed=True,
        )

    def as_dict(self) -> dict:
        return {
            "history": self.history_taking_score,
            "physicalExam": self.physical_exam_score,
            "historyJustification": self.history_taking_justification,
            "physicalExamJustification": self.physical_exam_justification,
            "failed": self.failed,
        }


class EPAScore(BaseModel):
    epa: Literal["History-taking", "Physical Exam"]
    score: float = Field(ge=0, le=10)
    justification: str


class EPAResponse(BaseModel):
    evaluations: List[EPAScore]

    @field_validator("evaluations")
    @classmethod
    def _exactly_two_competencies(cls, value: List[EPAScore]) -> List[EPAScore]:
        names = sorted(item.epa for item in value)
        if names != sorted([HISTORY_TAKING, PHYSICAL_EXAM]):
            raise ValueError(f"Expected one History-taking and one Physical Exam entry, got {names}")
        return value


def parse_evaluation(content: str) -> EPAEvaluation:
    """
    Parse model output into an EPAEvaluation.

    Accepts either {"evaluations": [...]} or a bare two-item list.

    Raises:
        EvaluationFailure: If the output does not match the expected shape
    """
    try:
        data = extract_json(content)
        if isinstance(data, list):
            data = {"evaluations": data}
        response = EPAResponse.model_validate(data)
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        raise EvaluationFailure(f"Unparseable EPA evaluation: {e}") from e

    by_name = {item.epa: item for item in response.evaluations}
    history = by_name[HISTORY_TAKING]
    exam = by_name[PHYSICAL_EXAM]
    return EPAEvaluation(
        history_taking_score=history.score,
        physical_exam_score=exam.score,
        history_taking_justification=history.justification,
        physical_exam_justification=exam.justification,
    )


class EPAEvaluator:
    """Typed pass-through to the language model's EPA scoring capability."""

    def __init__(self, llm_client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.llm_client = llm_client or get_llm_client()
        self.model = model

    def build_prompt(self, facts: CaseFacts, transcript: List[ChatMessage]) -> str:
        return f"""You are an expert clinical examiner assessing a medical student's patient interview.

**Authoritative History of Present Illness:**
{facts.history_of_present_illness}

**Authoritative Physical Exam Findings:**
{facts.physical_exam}

**Interview Transcript:**
{format_transcript(transcript)}

Score the student on exactly two Entrustable Professional Activities, each from 0 to 10:
1. "History-taking": how completely and systematically the student elicited the history above.
2. "Physical Exam": how well the student asked about or requested the examinations that reveal the findings above.

Return ONLY a JSON object with this exact format:
{{"evaluations": [
  {{"epa": "History-taking", "score": 0-10, "justification": "one or two sentences"}},
  {{"epa": "Physical Exam", "score": 0-10, "justification": "one or two sentences"}}
]}}"""

    async def evaluate(self, facts: CaseFacts, transcript: List[ChatMessage]) -> EPAEvaluation:
        """
        Score the transcript. Never raises.

        Args:
            facts: Case history and exam findings
            transcript: Full ordered conversation; hints and placeholders are ignored

        Returns:
            EPAEvaluation; zero scores with failed=True when the evaluation
            could not be obtained or parsed
        """
        start_time = time.time()

        if not conversation_turns(transcript):
            logger.info("📝 [EPAEvaluator] Empty transcript, scoring zero")
            note = "No conversation with the patient took place."
            return EPAEvaluation(0.0, 0.0, note, note)

        try:
            content = await complete(
                self.llm_client,
                self.build_prompt(facts, transcript),
                system="You are a clinical competency assessor. Return only valid JSON.",
                json_mode=True,
                temperature=0.2,
                max_tokens=400,
                model=self.model,
            )
            evaluation = parse_evaluation(content)
        except EvaluationFailure as e:
            logger.warning(f"⚠️ [EPAEvaluator] {e}; degrading to zero scores")
            return EPAEvaluation.failure("malformed response")
        except OpenAIError as e:
            logger.warning(f"⚠️ [EPAEvaluator] Language model call failed: {e}; degrading to zero scores")
            return EPAEvaluation.failure("service unavailable")
        except Exception as e:
            logger.warning(f"⚠️ [EPAEvaluator] Unexpected evaluation error: {e}; degrading to zero scores")
            return EPAEvaluation.failure("malformed response")

        elapsed = time.time() - start_time
        logger.info(
            f"✅ [EPAEvaluator] History={evaluation.history_taking_score:.1f}, "
            f"Exam={evaluation.physical_exam_score:.1f} in {elapsed:.2f}s"
        )
        return evaluation
