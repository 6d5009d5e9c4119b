"""
Case Document Models

Pydantic schemas for generated clinical cases, generation filters and chat
turns. Field names are snake_case in Python and camelCase on the wire, which
is the shape the language model and the browser client exchange.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


Specialty = Literal[
    "Internal Medicine",
    "Pediatrics",
    "Surgery",
    "Obstetrics & Gynecology",
    "Psychiatry",
    "Cardiology",
    "Neurology",
    "Dermatology",
    "Emergency Medicine",
]
TrainingPhase = Literal["Pre-clinical", "Para-clinical", "Clinical", "Internship", "NExT/FMGE Prep"]
CognitiveSkill = Literal["Recall", "Application", "Analysis"]
EPA = Literal["History-taking", "Physical Exam", "Diagnosis", "Management"]
Sender = Literal["user", "patient", "system"]

ALL_SPECIALTIES: List[str] = list(get_args(Specialty))
ALL_TRAINING_PHASES: List[str] = list(get_args(TrainingPhase))
ALL_EPAS: List[str] = list(get_args(EPA))


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PatientProfile(CamelModel):
    name: str
    age: int = Field(ge=0)
    gender: Literal["Male", "Female", "Other"]


class CurriculumTags(CamelModel):
    framework: Literal["CBME/NExT"] = "CBME/NExT"
    competency: str


class CaseTags(CamelModel):
    training_phase: TrainingPhase
    # Free text: the model occasionally names a sub-specialty
    specialty: str
    cognitive_skill: CognitiveSkill
    epas: List[EPA] = Field(default_factory=list)
    curriculum: CurriculumTags


class Diagnosis(CamelModel):
    diagnosis: str
    is_correct: bool


class MCQ(CamelModel):
    question: str
    options: List[str] = Field(min_length=2)
    correct_answer_index: int
    explanation: str

    @model_validator(mode="after")
    def _answer_in_options(self) -> "MCQ":
        if not 0 <= self.correct_answer_index < len(self.options):
            raise ValueError(
                f"correctAnswerIndex {self.correct_answer_index} outside {len(self.options)} options"
            )
        return self


class DiagnosticCase(CamelModel):
    """A generated clinical scenario bundle."""
    title: str
    patient_profile: PatientProfile
    tags: CaseTags
    chief_complaint: str
    history_of_present_illness: str
    physical_exam: str
    lab_results: str
    potential_diagnoses: List[Diagnosis]
    mcqs: List[MCQ] = Field(default_factory=list)
    correct_diagnosis_explanation: str
    soap_note: Optional[str] = None

    @property
    def correct_diagnosis(self) -> Optional[str]:
        for option in self.potential_diagnoses:
            if option.is_correct:
                return option.diagnosis
        return None

    def is_correct_diagnosis(self, chosen: Optional[str]) -> bool:
        """Compare a chosen diagnosis against the marked-correct option."""
        if not chosen:
            return False
        correct = self.correct_diagnosis
        return correct is not None and chosen.strip().lower() == correct.strip().lower()

    def count_correct_answers(self, answers: dict) -> int:
        """
        Count correct MCQ answers.

        Args:
            answers: Mapping of MCQ index to chosen option index. Unanswered
                questions are simply absent.
        """
        correct = 0
        for index, mcq in enumerate(self.mcqs):
            chosen = answers.get(index, answers.get(str(index)))
            if chosen is not None and int(chosen) == mcq.correct_answer_index:
                correct += 1
        return correct


class GenerationFilters(CamelModel):
    training_phase: TrainingPhase
    specialties: List[Specialty] = Field(default_factory=list)
    epas: List[EPA] = Field(default_factory=list)
    challenge_mode: bool = False


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatMessage(CamelModel):
    """One turn of the patient conversation."""
    sender: Sender
    text: str
    timestamp: str = Field(default_factory=_now_iso)
