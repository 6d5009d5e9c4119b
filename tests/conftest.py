"""
Shared fixtures: in-process fakes for the language model and Supabase
clients, and a sample case document.
"""

import copy
import itertools
import os
import sys
import threading
from types import SimpleNamespace

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "medanna_simulator", "src"))

from medanna_simulator.case_models import DiagnosticCase


SAMPLE_CASE = {
    "title": "A Young Man with Crushing Chest Pain",
    "patientProfile": {"name": "Rahul Verma", "age": 45, "gender": "Male"},
    "tags": {
        "trainingPhase": "Clinical",
        "specialty": "Cardiology",
        "cognitiveSkill": "Application",
        "epas": ["History-taking", "Physical Exam"],
        "curriculum": {"framework": "CBME/NExT", "competency": "IM2.6"},
    },
    "chiefComplaint": "Chest pain for 2 hours",
    "historyOfPresentIllness": "Sudden retrosternal pain radiating to the left arm, with sweating. Smoker for 20 years.",
    "physicalExam": "Diaphoretic, HR 110, BP 150/90, S4 gallop.",
    "labResults": "ECG: ST elevation in V1-V4. Troponin I elevated.",
    "potentialDiagnoses": [
        {"diagnosis": "Acute anterior STEMI", "isCorrect": True},
        {"diagnosis": "Aortic dissection", "isCorrect": False},
        {"diagnosis": "Pericarditis", "isCorrect": False},
    ],
    "mcqs": [
        {
            "question": "Which artery is most likely occluded?",
            "options": ["LAD", "RCA", "LCx", "Left main"],
            "correctAnswerIndex": 0,
            "explanation": "V1-V4 changes localise to the LAD territory.",
        },
        {
            "question": "First-line reperfusion if available within 120 minutes?",
            "options": ["Thrombolysis", "Primary PCI", "CABG"],
            "correctAnswerIndex": 1,
            "explanation": "Primary PCI is preferred when timely.",
        },
        {
            "question": "Which marker rises earliest?",
            "options": ["Troponin", "CK-MB", "Myoglobin", "LDH"],
            "correctAnswerIndex": 2,
            "explanation": "Myoglobin rises within 1-2 hours.",
        },
    ],
    "correctDiagnosisExplanation": "ST elevation in anterior leads with raised troponin.",
}


# ==================== Language model fake ====================

class FakeCompletions:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.responses:
            raise AssertionError("FakeLLMClient ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=response))])


class FakeLLMClient:
    """Mimics AsyncOpenAI.chat.completions.create with queued replies or errors."""

    def __init__(self, *responses):
        self.chat = SimpleNamespace(completions=FakeCompletions(responses))

    @property
    def calls(self):
        return self.chat.completions.calls


# ==================== Supabase fake ====================

class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.order_by = None
        self.limit_n = None

    def select(self, columns="*"):
        self.op = "select"
        return self

    def insert(self, row):
        self.op, self.payload = "insert", row
        return self

    def upsert(self, row, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", row, on_conflict
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _matches(self, row):
        return all(row.get(col) == val for col, val in self.filters)

    def execute(self):
        with self.db.lock:
            self.db.executed.append((self.op, self.table_name))
            if self.op == "select" and self.table_name in self.db.fail_reads:
                raise RuntimeError(f"read of {self.table_name} failed")
            if self.op != "select" and self.table_name in self.db.fail_writes:
                raise RuntimeError(f"write to {self.table_name} failed")

            rows = self.db.tables.setdefault(self.table_name, [])

            if self.op == "select":
                data = [copy.deepcopy(r) for r in rows if self._matches(r)]
                if self.order_by:
                    column, desc = self.order_by
                    data.sort(key=lambda r: r.get(column), reverse=desc)
                if self.limit_n is not None:
                    data = data[:self.limit_n]
                return SimpleNamespace(data=data)

            if self.op == "insert":
                row = dict(self.payload)
                row.setdefault("id", str(next(self.db.ids)))
                rows.append(row)
                return SimpleNamespace(data=[copy.deepcopy(row)])

            if self.op == "upsert":
                key = self.on_conflict or "id"
                for existing in rows:
                    if existing.get(key) == self.payload.get(key):
                        existing.update(self.payload)
                        return SimpleNamespace(data=[copy.deepcopy(existing)])
                rows.append(dict(self.payload))
                return SimpleNamespace(data=[dict(self.payload)])

            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(copy.deepcopy(row))
            return SimpleNamespace(data=updated)


class FakeAdmin:
    def __init__(self):
        self.metadata_updates = []

    def update_user_by_id(self, user_id, attributes):
        self.metadata_updates.append((user_id, attributes))
        return SimpleNamespace(user=SimpleNamespace(id=user_id, user_metadata=attributes.get("user_metadata")))


class FakeSupabase:
    """Table-level fake of the sync Supabase client."""

    def __init__(self, tables=None):
        self.tables = copy.deepcopy(tables or {})
        self.fail_reads = set()
        self.fail_writes = set()
        self.executed = []
        self.ids = itertools.count(1)
        self.lock = threading.Lock()
        self.auth = SimpleNamespace(admin=FakeAdmin())

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.get(name, [])


# ==================== Fixtures ====================

@pytest.fixture
def case_data():
    return copy.deepcopy(SAMPLE_CASE)


@pytest.fixture
def sample_case(case_data):
    return DiagnosticCase.model_validate(case_data)


@pytest.fixture
def llm_client_factory():
    return FakeLLMClient


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def supabase_factory():
    return FakeSupabase
