"""
Unit Tests for Local State

Tests storage adapters, transcript persistence and the theme preference.
"""

import json
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "medanna_simulator", "src"))

from medanna_simulator.case_models import ChatMessage
from medanna_simulator.local_state import AppState, TranscriptStore
from medanna_simulator.storage import InMemoryStorage, JsonFileStorage, storage_from_env


class TestJsonFileStorage:
    """Test suite for JsonFileStorage."""

    def test_set_get_remove(self, tmp_path):
        storage = JsonFileStorage(str(tmp_path / "state" / "local.json"))
        storage.set("theme", "dark")
        storage.set("medanna_hintUsage_v2", {"count": 3, "date": "2024-05-01"})

        reopened = JsonFileStorage(str(tmp_path / "state" / "local.json"))
        assert reopened.get("theme") == "dark"
        assert reopened.get("medanna_hintUsage_v2")["count"] == 3

        reopened.remove("theme")
        assert JsonFileStorage(str(tmp_path / "state" / "local.json")).get("theme") is None

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "local.json"
        path.write_text("{not json")
        storage = JsonFileStorage(str(path))

        assert storage.get("theme") is None
        storage.set("theme", "light")
        assert json.loads(path.read_text()) == {"theme": "light"}

    def test_storage_from_env(self, monkeypatch, tmp_path):
        monkeypatch.delenv("LOCAL_STATE_PATH", raising=False)
        assert isinstance(storage_from_env(), InMemoryStorage)

        monkeypatch.setenv("LOCAL_STATE_PATH", str(tmp_path / "local.json"))
        assert isinstance(storage_from_env(), JsonFileStorage)


class TestTranscriptStore:
    """Test suite for TranscriptStore."""

    @pytest.fixture
    def storage(self):
        return InMemoryStorage()

    def test_append_and_load(self, storage):
        store = TranscriptStore(storage)
        store.append("Chest Pain", ChatMessage(sender="user", text="Hi"))
        store.append("Chest Pain", ChatMessage(sender="patient", text="Hello doctor"))

        loaded = store.load("Chest Pain")
        assert [m.text for m in loaded] == ["Hi", "Hello doctor"]
        assert "chatHistory_Chest Pain" in storage._data

    def test_saving_empty_transcript_clears(self, storage):
        store = TranscriptStore(storage)
        store.append("Case", ChatMessage(sender="user", text="Hi"))
        store.save("Case", [])
        assert store.load("Case") == []
        assert storage.get("chatHistory_Case") is None

    def test_corrupt_transcript_is_dropped(self, storage):
        storage.set("chatHistory_Case", [{"sender": "robot", "text": 1}])
        store = TranscriptStore(storage)

        assert store.load("Case") == []
        assert storage.get("chatHistory_Case") is None

    def test_namespaces_are_isolated(self, storage):
        TranscriptStore(storage, namespace="u1").append("Case", ChatMessage(sender="user", text="mine"))
        assert TranscriptStore(storage, namespace="u2").load("Case") == []
        assert TranscriptStore(storage, namespace="u1").load("Case")[0].text == "mine"


class TestAppState:
    """Test suite for AppState."""

    def test_theme_defaults_to_light_and_toggles(self):
        state = AppState(storage=InMemoryStorage(), user_id="u1", max_hints=5)
        assert state.theme == "light"
        assert state.toggle_theme() == "dark"
        assert state.toggle_theme() == "light"

    def test_unknown_theme_rejected(self):
        state = AppState(max_hints=5)
        with pytest.raises(ValueError):
            state.theme = "sepia"

    def test_users_share_storage_without_sharing_state(self):
        storage = InMemoryStorage()
        alice = AppState(storage=storage, user_id="alice", max_hints=5)
        bob = AppState(storage=storage, user_id="bob", max_hints=5)

        alice.hints.consume_one()
        alice.theme = "dark"

        assert alice.hints.get_remaining() == 4
        assert bob.hints.get_remaining() == 5
        assert bob.theme == "light"
