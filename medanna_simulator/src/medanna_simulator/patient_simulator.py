"""
Patient Simulator

Roleplays the virtual patient (or the parent of a young child) and produces
Socratic hints for the student.
"""

import json
import logging
from typing import List, Optional

from openai import AsyncOpenAI

from medanna_simulator.case_models import ChatMessage, DiagnosticCase
from medanna_simulator.errors import GenerationFailure
from medanna_simulator.llm import get_llm_client

logger = logging.getLogger(__name__)

CHILD_AGE_LIMIT = 7
THINKING_PLACEHOLDERS = {"Thinking...", "Thinking…"}
READY_ACK = "I understand. I am ready to begin the simulation."


def conversation_turns(history: List[ChatMessage]) -> List[ChatMessage]:
    """User and patient turns only; hints and placeholders are dropped."""
    return [
        msg for msg in history
        if msg.sender in ("user", "patient") and msg.text.strip() not in THINKING_PLACEHOLDERS
    ]


def format_transcript(history: List[ChatMessage]) -> str:
    return "\n".join(
        f"{'Doctor' if msg.sender == 'user' else 'Patient'}: {msg.text}"
        for msg in conversation_turns(history)
    )


class PatientSimulator:
    """Patient roleplay and hinting for one case at a time."""

    def __init__(self, llm_client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.llm_client = llm_client or get_llm_client()
        self.model = model

    def build_system_instruction(self, case: DiagnosticCase) -> str:
        name = case.patient_profile.name
        age = case.patient_profile.age

        if age < CHILD_AGE_LIMIT:
            return f"""You are a patient simulator for a medical training application.
You will roleplay as the mother of {name}, a {age}-year-old child. Do NOT act as a doctor or AI.
You are bringing your child to the doctor. All your answers should be from your perspective as a concerned parent.
Your personality should be that of a worried mother.
**RULES:**
1. Only answer questions about your child based on the provided 'chiefComplaint' and 'historyOfPresentIllness'.
2. You DO NOT know the 'physicalExam' results, 'labResults', or the 'finalDiagnosis' for your child. If asked, say you don't know or that's what you're here to find out.
3. Never volunteer information that was not asked for, and never name a diagnosis.
4. Answer concisely and naturally.
5. Do not break character. Always speak as the mother."""

        return f"""You are a patient simulator for a medical training application.
You will roleplay as {name}, a {age}-year-old patient. Do NOT act as a doctor or AI.
Your personality should be consistent with your condition.
**RULES:**
1. Only answer questions based on the 'chiefComplaint' and 'historyOfPresentIllness' sections.
2. You DO NOT know your 'physicalExam', 'labResults', or 'finalDiagnosis'. If asked, say you don't know.
3. Never volunteer information that was not asked for, and never name a diagnosis.
4. Answer concisely and naturally.
5. Do not break character."""

    def build_messages(
        self,
        case: DiagnosticCase,
        history: List[ChatMessage],
        new_message: str,
    ) -> List[dict]:
        """Chat messages for a roleplay turn: persona, case context, history, new question."""
        case_json = json.dumps(case.model_dump(by_alias=True, exclude={"soap_note"}))
        messages = [
            {"role": "system", "content": self.build_system_instruction(case)},
            {"role": "user", "content": f"Case Context: {case_json}"},
            {"role": "assistant", "content": READY_ACK},
        ]
        for msg in conversation_turns(history):
            role = "user" if msg.sender == "user" else "assistant"
            messages.append({"role": role, "content": msg.text})
        messages.append({"role": "user", "content": new_message})
        return messages

    async def roleplay_turn(
        self,
        case: DiagnosticCase,
        history: List[ChatMessage],
        new_message: str,
    ) -> str:
        """
        Get the patient's reply to the student's next message.

        Raises:
            GenerationFailure: If the model returns no text
        """
        completion = await self.llm_client.chat.completions.create(
            model=self.model,
            messages=self.build_messages(case, history, new_message),
            temperature=0.7,
        )
        reply = (completion.choices[0].message.content or "").strip()
        if not reply:
            raise GenerationFailure("The patient did not respond. Please try again.")

        logger.debug(f"🗣️ [PatientSimulator] Reply ({len(reply)} chars) to: {new_message[:50]}")
        return reply

    async def generate_hint(self, case: DiagnosticCase, history: List[ChatMessage]) -> str:
        """
        One short question the student should consider asking next.

        Raises:
            GenerationFailure: If the model returns no text
        """
        case_json = json.dumps(case.model_dump(by_alias=True, exclude={"soap_note"}), indent=2)
        prompt = f"""You are an expert clinical tutor. Your role is to provide a subtle hint to a medical student who is diagnosing a patient.
Based on the patient's case and the conversation history so far, provide one short, simple question the student should consider asking next.
**RULES:**
1. The hint MUST be a question.
2. Do NOT give away the diagnosis or explain why.
3. Keep the hint very short.
4. Base the hint on what's missing from the conversation.
**Patient Case:** {case_json}
**Conversation History:**
{format_transcript(history)}
Provide the next best question to ask as a hint."""

        completion = await self.llm_client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=80,
        )
        hint = (completion.choices[0].message.content or "").strip().replace('"', '')
        if not hint:
            raise GenerationFailure("Sorry, I couldn't generate a hint right now. Please try again.")
        return hint
