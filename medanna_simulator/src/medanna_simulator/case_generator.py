"""
Case Generator

Asks the language model for a complete clinical case aligned with the CBME
curriculum, validates it at the boundary, and produces SOAP notes for
finished cases.
"""

import json
import logging
import time
from typing import Optional

from openai import AsyncOpenAI
from pydantic import ValidationError

from medanna_simulator.case_models import (
    ALL_SPECIALTIES,
    DiagnosticCase,
    GenerationFilters,
)
from medanna_simulator.errors import GenerationFailure
from medanna_simulator.llm import complete, extract_json, get_llm_client

logger = logging.getLogger(__name__)

RETRY_MESSAGE = "The AI returned an invalid data structure for the patient. Please try again."
FALLBACK_SPECIALTY = "Internal Medicine"

CASE_JSON_SHAPE = """{
  "title": "short descriptive title, e.g. 'An Elderly Man with Cough and Fever'",
  "patientProfile": {"name": "string", "age": 0, "gender": "Male|Female|Other"},
  "tags": {
    "trainingPhase": "Pre-clinical|Para-clinical|Clinical|Internship|NExT/FMGE Prep",
    "specialty": "string",
    "cognitiveSkill": "Recall|Application|Analysis",
    "epas": ["History-taking|Physical Exam|Diagnosis|Management"],
    "curriculum": {"framework": "CBME/NExT", "competency": "string"}
  },
  "chiefComplaint": "string",
  "historyOfPresentIllness": "string",
  "physicalExam": "string",
  "labResults": "string",
  "potentialDiagnoses": [{"diagnosis": "string", "isCorrect": true}],
  "mcqs": [{"question": "string", "options": ["string"], "correctAnswerIndex": 0, "explanation": "string"}],
  "correctDiagnosisExplanation": "string"
}"""


def validate_generated_case(data: dict) -> DiagnosticCase:
    """
    Validate a raw case document.

    Raises:
        ValueError: If the document is structurally invalid, does not mark
            exactly one diagnosis correct, or carries no MCQs
    """
    case = DiagnosticCase.model_validate(data)

    correct_count = sum(1 for d in case.potential_diagnoses if d.is_correct)
    if correct_count != 1:
        raise ValueError(f"Expected exactly one correct diagnosis, got {correct_count}")
    if not case.mcqs:
        raise ValueError("Case has no multiple-choice questions")

    return case


class CaseGenerator:
    """
    Generates clinical cases and SOAP notes.

    Any malformed model output surfaces as a retryable GenerationFailure;
    nothing is committed before a case validates.
    """

    def __init__(self, llm_client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.llm_client = llm_client or get_llm_client()
        self.model = model

    def build_case_prompt(self, filters: GenerationFilters) -> str:
        specialties = ", ".join(filters.specialties) if filters.specialties else "any common medical specialty"

        prompt = f"""You are an expert medical educator specializing in the Indian MBBS curriculum. Your task is to create a clinical case simulation that is strictly aligned with the CBME framework and prepares students for the NExT/FMGE exams.
Generate a realistic and educational patient case for a medical student.

**Case Constraints:**
- The case MUST be suitable for the **{filters.training_phase}** training phase.
- The case's primary specialty MUST be one of the following: {specialties}."""

        if filters.epas:
            prompt += f"\n- The case MUST primarily test these Entrustable Professional Activities (EPAs): {', '.join(filters.epas)}."
        if filters.challenge_mode:
            prompt += "\n- **Challenge Mode Active:** Create a complex, interdisciplinary case that may span multiple systems or present with atypical symptoms."

        prompt += f"""

**Curriculum Alignment Instructions:**
1. Map the case to a specific competency from the official NMC competency list for the Indian MBBS curriculum.
2. The 'framework' tag must be 'CBME/NExT'.
3. Assign 'cognitiveSkill' from the primary thinking process the case requires (Recall, Application, or Analysis).

**Final Instructions:**
- Ensure exactly one diagnosis in the potentialDiagnoses array is marked as correct.
- Generate 3 distinct and relevant multiple-choice questions (MCQs).
- Return ONLY a JSON object with this exact shape:
{CASE_JSON_SHAPE}"""
        return prompt

    async def generate_case(self, filters: GenerationFilters) -> DiagnosticCase:
        """
        Generate a validated case for the given filters.

        When no specialty is selected, one is picked for the training phase
        first so the case has a definite specialty.

        Raises:
            GenerationFailure: If the response is unparseable or invalid
        """
        start_time = time.time()

        if not filters.specialties:
            picked = await self.pick_specialty(filters.training_phase)
            filters = filters.model_copy(update={"specialties": [picked]})

        logger.info(
            f"🩺 [CaseGenerator] Generating case (phase={filters.training_phase}, "
            f"specialties={filters.specialties}, challenge={filters.challenge_mode})"
        )

        content = await complete(
            self.llm_client,
            self.build_case_prompt(filters),
            system="You are a medical case author. Return only valid JSON.",
            json_mode=True,
            model=self.model,
        )

        try:
            case = validate_generated_case(extract_json(content))
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            logger.error(f"❌ [CaseGenerator] Failed to parse or validate generated case: {e}")
            raise GenerationFailure(RETRY_MESSAGE, raw_response=content) from e

        elapsed = time.time() - start_time
        logger.info(f"✅ [CaseGenerator] Generated '{case.title}' in {elapsed:.2f}s")
        return case

    async def regenerate_case(self, current: DiagnosticCase) -> DiagnosticCase:
        """Generate a fresh case with the same training phase and specialty."""
        specialties = [current.tags.specialty] if current.tags.specialty in ALL_SPECIALTIES else []
        filters = GenerationFilters(
            training_phase=current.tags.training_phase,
            specialties=specialties,
        )
        return await self.generate_case(filters)

    async def pick_specialty(self, training_phase: str) -> str:
        """
        Ask the model for one specialty suitable for the training phase.

        Returns:
            A specialty from the fixed list; Internal Medicine if the answer
            is not recognised
        """
        prompt = f"""Pick ONE clinical specialty that suits a case for a medical student in the "{training_phase}" training phase.
Choose from exactly this list: {', '.join(ALL_SPECIALTIES)}.
Respond with the specialty name only."""

        answer = await complete(self.llm_client, prompt, temperature=1.0, max_tokens=20, model=self.model)
        answer = answer.strip().strip('."\'').strip()

        for specialty in ALL_SPECIALTIES:
            if specialty.lower() == answer.lower():
                logger.info(f"🎯 [CaseGenerator] Picked specialty: {specialty}")
                return specialty

        logger.warning(f"⚠️ [CaseGenerator] Unrecognised specialty '{answer}', using {FALLBACK_SPECIALTY}")
        return FALLBACK_SPECIALTY

    async def generate_soap_note(self, case: DiagnosticCase) -> str:
        """Generate a SOAP note with bold Subjective/Objective/Assessment/Plan headers."""
        case_json = json.dumps(case.model_dump(by_alias=True, exclude={"soap_note"}), indent=2)
        prompt = f"""Generate a detailed SOAP note for the following patient case.
Format it with clear section headers: Subjective, Objective, Assessment, and Plan.
Each section header should be on a new line and bolded (e.g., **Subjective:**).
Include physical exam findings, labs, vitals, and clinical reasoning.
Tailor the language to reflect real-world physician documentation used in clinical practice.
Case Data: {case_json}"""

        note = await complete(self.llm_client, prompt, model=self.model)
        if not note:
            raise GenerationFailure("The AI returned an empty SOAP note. Please try again.")
        return note
