"""
Unit Tests for EPA Evaluator

Tests parsing of the two-competency evaluation and the fail-soft policy.
"""

import json
import pytest
import sys
import os

from types import SimpleNamespace

from openai import OpenAIError

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "medanna_simulator", "src"))

from medanna_simulator.case_models import ChatMessage
from medanna_simulator.epa_evaluator import (
    EVALUATION_FAILED_NOTE,
    CaseFacts,
    EPAEvaluator,
    parse_evaluation,
)
from medanna_simulator.errors import EvaluationFailure

VALID_EVALUATION = json.dumps({"evaluations": [
    {"epa": "History-taking", "score": 8, "justification": "Asked about onset, radiation and risk factors."},
    {"epa": "Physical Exam", "score": 4, "justification": "Did not ask for vitals or auscultation."},
]})


@pytest.fixture
def transcript():
    return [
        ChatMessage(sender="user", text="When did the pain start?"),
        ChatMessage(sender="patient", text="About two hours ago."),
        ChatMessage(sender="system", text="Hint: Ask about radiation."),
        ChatMessage(sender="patient", text="Thinking..."),
        ChatMessage(sender="user", text="Does it spread anywhere?"),
        ChatMessage(sender="patient", text="Down my left arm."),
    ]


@pytest.fixture
def facts(sample_case):
    return CaseFacts.from_case(sample_case)


class TestParseEvaluation:
    """Test suite for parse_evaluation."""

    def test_parses_object_form(self):
        evaluation = parse_evaluation(VALID_EVALUATION)
        assert evaluation.history_taking_score == 8
        assert evaluation.physical_exam_score == 4
        assert not evaluation.failed

    def test_parses_bare_list_in_fences(self):
        content = "```json\n" + json.dumps(json.loads(VALID_EVALUATION)["evaluations"]) + "\n```"
        evaluation = parse_evaluation(content)
        assert evaluation.history_taking_score == 8

    @pytest.mark.parametrize("content", [
        "not json at all",
        json.dumps({"evaluations": []}),
        json.dumps({"evaluations": [{"epa": "History-taking", "score": 8, "justification": "x"}]}),
        json.dumps({"evaluations": [
            {"epa": "History-taking", "score": 8, "justification": "x"},
            {"epa": "History-taking", "score": 6, "justification": "y"},
        ]}),
        json.dumps({"evaluations": [
            {"epa": "History-taking", "score": 14, "justification": "x"},
            {"epa": "Physical Exam", "score": 6, "justification": "y"},
        ]}),
        json.dumps({"scores": [1, 2]}),
    ])
    def test_malformed_shapes_raise(self, content):
        with pytest.raises(EvaluationFailure):
            parse_evaluation(content)


class TestEPAEvaluator:
    """Test suite for EPAEvaluator.evaluate."""

    @pytest.mark.asyncio
    async def test_valid_response(self, llm_client_factory, facts, transcript):
        client = llm_client_factory(VALID_EVALUATION)
        evaluator = EPAEvaluator(llm_client=client, model="test-model")

        evaluation = await evaluator.evaluate(facts, transcript)

        assert evaluation.history_taking_score == 8
        assert evaluation.physical_exam_score == 4
        assert evaluation.as_dict()["history"] == 8
        assert client.calls[0]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_prompt_excludes_hints_and_placeholders(self, llm_client_factory, facts, transcript):
        client = llm_client_factory(VALID_EVALUATION)
        await EPAEvaluator(llm_client=client).evaluate(facts, transcript)

        prompt = client.calls[0]["messages"][-1]["content"]
        assert "Doctor: Does it spread anywhere?" in prompt
        assert "Patient: Down my left arm." in prompt
        assert "Thinking..." not in prompt
        assert "Ask about radiation" not in prompt
        assert facts.physical_exam in prompt

    @pytest.mark.asyncio
    async def test_malformed_response_degrades_to_zero(self, llm_client_factory, facts, transcript):
        client = llm_client_factory('{"evaluations": "sorry"}')
        evaluation = await EPAEvaluator(llm_client=client).evaluate(facts, transcript)

        assert evaluation.as_dict()["history"] == 0
        assert evaluation.as_dict()["physicalExam"] == 0
        assert evaluation.failed
        assert EVALUATION_FAILED_NOTE in evaluation.history_taking_justification

    @pytest.mark.asyncio
    async def test_api_error_degrades_to_zero(self, llm_client_factory, facts, transcript):
        client = llm_client_factory(OpenAIError("rate limited"))
        evaluation = await EPAEvaluator(llm_client=client).evaluate(facts, transcript)

        assert evaluation.failed
        assert evaluation.history_taking_score == 0
        assert evaluation.physical_exam_score == 0

    @pytest.mark.asyncio
    async def test_empty_transcript_skips_model(self, llm_client_factory, facts):
        client = llm_client_factory()
        evaluation = await EPAEvaluator(llm_client=client).evaluate(
            facts, [ChatMessage(sender="patient", text="Thinking...")]
        )

        assert client.calls == []
        assert evaluation.history_taking_score == 0
        assert not evaluation.failed

    @pytest.mark.asyncio
    async def test_completion_without_choices_degrades_to_zero(self, facts, transcript):
        async def create(**kwargs):
            return SimpleNamespace(choices=[])

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        evaluation = await EPAEvaluator(llm_client=client).evaluate(facts, transcript)

        assert evaluation.failed
        assert evaluation.history_taking_score == 0
        assert evaluation.physical_exam_score == 0

    @pytest.mark.asyncio
    async def test_unexpected_client_error_degrades_to_zero(self, llm_client_factory, facts, transcript):
        client = llm_client_factory(RuntimeError("connection reset"))
        evaluation = await EPAEvaluator(llm_client=client).evaluate(facts, transcript)

        assert evaluation.failed
        assert evaluation.as_dict()["history"] == 0
