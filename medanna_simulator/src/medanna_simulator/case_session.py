"""
Case Session

Drives one active case for one user: patient conversation turns saved to the
local transcript, and hints drawn from the daily budget.
"""

import logging
from typing import List, Optional, Tuple

from medanna_simulator.case_models import ChatMessage, DiagnosticCase
from medanna_simulator.errors import BudgetExhausted
from medanna_simulator.local_state import AppState
from medanna_simulator.patient_simulator import PatientSimulator

logger = logging.getLogger(__name__)


class CaseSession:
    """Conversation and hinting for the user's active case."""

    def __init__(self, app_state: AppState, simulator: PatientSimulator):
        self.app_state = app_state
        self.simulator = simulator

    def transcript(self, case_title: str) -> List[ChatMessage]:
        return self.app_state.transcripts.load(case_title)

    async def send_message(
        self,
        case: DiagnosticCase,
        text: str,
        history: Optional[List[ChatMessage]] = None,
    ) -> Tuple[ChatMessage, List[ChatMessage]]:
        """
        Ask the patient a question.

        Args:
            case: Active case
            text: Student's message
            history: Client-side transcript; replaces the saved one when given

        Returns:
            (patient reply, updated transcript)
        """
        if history is None:
            history = self.transcript(case.title)

        question = ChatMessage(sender="user", text=text)
        reply_text = await self.simulator.roleplay_turn(case, history, text)
        reply = ChatMessage(sender="patient", text=reply_text)

        # Saved only after a reply, so a failed turn leaves the transcript as it was
        transcript = list(history) + [question, reply]
        self.app_state.transcripts.save(case.title, transcript)
        logger.debug(f"💬 [CaseSession] '{case.title}' now has {len(transcript)} turns")
        return reply, transcript

    async def request_hint(self, case: DiagnosticCase) -> Tuple[ChatMessage, int]:
        """
        Generate a hint and charge it to today's budget.

        Returns:
            (hint turn, hints remaining)

        Raises:
            BudgetExhausted: If no hints remain; no hint is generated
            GenerationFailure: If the hint could not be generated; nothing is charged
        """
        if self.app_state.hints.get_remaining() <= 0:
            raise BudgetExhausted()

        history = self.transcript(case.title)
        hint_text = await self.simulator.generate_hint(case, history)
        remaining = self.app_state.hints.consume_one()

        hint = ChatMessage(sender="system", text=f"Hint: {hint_text}")
        self.app_state.transcripts.save(case.title, history + [hint])
        return hint, remaining
