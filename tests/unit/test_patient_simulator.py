"""
Unit Tests for Patient Simulator

Tests persona selection, message assembly and hint clean-up.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "medanna_simulator", "src"))

from medanna_simulator.case_models import ChatMessage
from medanna_simulator.errors import GenerationFailure
from medanna_simulator.llm import extract_json
from medanna_simulator.patient_simulator import (
    READY_ACK,
    PatientSimulator,
    conversation_turns,
    format_transcript,
)


@pytest.fixture
def history():
    return [
        ChatMessage(sender="user", text="What brings you in today?"),
        ChatMessage(sender="patient", text="My chest hurts."),
        ChatMessage(sender="system", text="Hint: Ask about onset."),
        ChatMessage(sender="patient", text="Thinking…"),
    ]


class TestTranscriptHelpers:

    def test_conversation_turns_drop_system_and_placeholders(self, history):
        turns = conversation_turns(history)
        assert [t.sender for t in turns] == ["user", "patient"]

    def test_format_transcript(self, history):
        assert format_transcript(history) == "Doctor: What brings you in today?\nPatient: My chest hurts."


class TestPatientSimulator:
    """Test suite for PatientSimulator."""

    def test_adult_persona(self, llm_client_factory, sample_case):
        instruction = PatientSimulator(llm_client=llm_client_factory()).build_system_instruction(sample_case)
        assert "roleplay as Rahul Verma, a 45-year-old patient" in instruction
        assert "mother" not in instruction

    def test_young_child_is_voiced_by_mother(self, llm_client_factory, case_data):
        from medanna_simulator.case_models import DiagnosticCase

        case_data["patientProfile"]["age"] = 4
        case = DiagnosticCase.model_validate(case_data)
        instruction = PatientSimulator(llm_client=llm_client_factory()).build_system_instruction(case)
        assert "the mother of Rahul Verma, a 4-year-old child" in instruction

    def test_build_messages_orders_context_history_and_question(self, llm_client_factory, sample_case, history):
        simulator = PatientSimulator(llm_client=llm_client_factory())
        messages = simulator.build_messages(sample_case, history, "Does it radiate?")

        assert messages[0]["role"] == "system"
        assert messages[1]["content"].startswith("Case Context: ")
        assert messages[2] == {"role": "assistant", "content": READY_ACK}
        assert messages[3] == {"role": "user", "content": "What brings you in today?"}
        assert messages[4] == {"role": "assistant", "content": "My chest hurts."}
        assert messages[-1] == {"role": "user", "content": "Does it radiate?"}
        assert len(messages) == 6

    @pytest.mark.asyncio
    async def test_roleplay_turn(self, llm_client_factory, sample_case, history):
        client = llm_client_factory("  It started two hours ago.  ")
        reply = await PatientSimulator(llm_client=client, model="m").roleplay_turn(sample_case, history, "When?")

        assert reply == "It started two hours ago."
        assert client.calls[0]["model"] == "m"
        assert client.calls[0]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_model_read_from_env_per_call(self, llm_client_factory, sample_case, history, monkeypatch):
        client = llm_client_factory("Yes.", "No.")
        simulator = PatientSimulator(llm_client=client)

        monkeypatch.setenv("OPENAI_MODEL", "first-model")
        await simulator.roleplay_turn(sample_case, history, "Any fever?")
        monkeypatch.setenv("OPENAI_MODEL", "second-model")
        await simulator.roleplay_turn(sample_case, history, "Any cough?")

        assert [call["model"] for call in client.calls] == ["first-model", "second-model"]

    @pytest.mark.asyncio
    async def test_empty_reply_raises(self, llm_client_factory, sample_case):
        with pytest.raises(GenerationFailure):
            await PatientSimulator(llm_client=llm_client_factory("")).roleplay_turn(sample_case, [], "Hello")

    @pytest.mark.asyncio
    async def test_hint_strips_quotes(self, llm_client_factory, sample_case, history):
        client = llm_client_factory('"Have you asked about risk factors?"')
        hint = await PatientSimulator(llm_client=client).generate_hint(sample_case, history)

        assert hint == "Have you asked about risk factors?"
        assert "Doctor: What brings you in today?" in client.calls[0]["messages"][0]["content"]


class TestExtractJson:

    def test_plain_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert extract_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_prose_around_object(self):
        assert extract_json('Here is the case: {"a": 1} Hope it helps!') == {"a": 1}

    def test_no_json_raises(self):
        with pytest.raises(ValueError):
            extract_json("no braces here")
