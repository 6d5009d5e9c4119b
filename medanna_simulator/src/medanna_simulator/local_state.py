"""
Application State

Explicit state struct for single-device, best-effort state: theme preference,
hint budget and in-progress transcripts. Passed to whoever needs it rather
than living in module globals.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import ValidationError

from medanna_simulator.case_models import ChatMessage
from medanna_simulator.hint_budget import HINT_STORAGE_KEY, HintBudgetTracker
from medanna_simulator.storage import InMemoryStorage, StoragePort

logger = logging.getLogger(__name__)

THEME_KEY = "theme"
THEMES = ("light", "dark")


class TranscriptStore:
    """In-progress chat transcripts keyed by case title."""

    def __init__(self, storage: StoragePort, namespace: str = ""):
        self.storage = storage
        self.namespace = namespace

    def _key(self, case_title: str) -> str:
        key = f"chatHistory_{case_title}"
        return f"{key}:{self.namespace}" if self.namespace else key

    def load(self, case_title: str) -> List[ChatMessage]:
        """Saved transcript, or empty. A corrupt transcript is dropped."""
        raw = self.storage.get(self._key(case_title))
        if not raw:
            return []
        try:
            return [ChatMessage.model_validate(item) for item in raw]
        except (ValidationError, TypeError) as e:
            logger.error(f"❌ [TranscriptStore] Failed to parse chat history for '{case_title}', clearing it: {e}")
            self.storage.remove(self._key(case_title))
            return []

    def save(self, case_title: str, messages: List[ChatMessage]):
        if not messages:
            self.clear(case_title)
            return
        self.storage.set(
            self._key(case_title),
            [msg.model_dump(by_alias=True) for msg in messages],
        )

    def append(self, case_title: str, *messages: ChatMessage) -> List[ChatMessage]:
        transcript = self.load(case_title)
        transcript.extend(messages)
        self.save(case_title, transcript)
        return transcript

    def clear(self, case_title: str):
        self.storage.remove(self._key(case_title))


@dataclass
class AppState:
    """Per-user local state over one storage port."""
    storage: StoragePort = field(default_factory=InMemoryStorage)
    user_id: Optional[str] = None
    max_hints: Optional[int] = None
    hints: HintBudgetTracker = field(init=False)
    transcripts: TranscriptStore = field(init=False)

    def __post_init__(self):
        hint_key = f"{HINT_STORAGE_KEY}:{self.user_id}" if self.user_id else HINT_STORAGE_KEY
        self.hints = HintBudgetTracker(self.storage, max_hints=self.max_hints, storage_key=hint_key)
        self.transcripts = TranscriptStore(self.storage, namespace=self.user_id or "")

    def _theme_key(self) -> str:
        return f"{THEME_KEY}:{self.user_id}" if self.user_id else THEME_KEY

    @property
    def theme(self) -> str:
        saved = self.storage.get(self._theme_key())
        return saved if saved in THEMES else "light"

    @theme.setter
    def theme(self, value: str):
        if value not in THEMES:
            raise ValueError(f"Unknown theme '{value}', expected one of {THEMES}")
        self.storage.set(self._theme_key(), value)

    def toggle_theme(self) -> str:
        self.theme = "dark" if self.theme == "light" else "light"
        return self.theme
