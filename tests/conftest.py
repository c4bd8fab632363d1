from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import pytest

from adaptive_models import Choice, GeneratedQuestion
from engine.cache import TTLCache
from engine.controller import SessionManager
from engine.errors import UpstreamGenerationError
from engine.events import RecordingPublisher
from engine.issuer import GenerationGateway, QuestionIssuer
from engine.storage.sqlite_store import SqliteStore

SOURCE_TEXT = (
    "Photosynthesis converts light energy into chemical energy inside chloroplasts. "
    "Chlorophyll absorbs light most strongly in the blue and red wavelengths. "
    "The Calvin cycle uses carbon dioxide to build glucose molecules. "
    "Chloroplasts contain stacks of thylakoids where the light reactions happen."
)


class FakeGenerator:
    """Deterministic stand-in for the remote question generator."""

    def __init__(self, qtype: str = "multiple_choice", fail_times: int = 0, retryable: bool = True):
        self.qtype = qtype
        self.fail_times = fail_times
        self.retryable = retryable
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def generate(
        self,
        source_text: str,
        difficulty: str,
        allowed_types: Sequence[str],
        avoid: Sequence[str] = (),
    ) -> GeneratedQuestion:
        with self._lock:
            self.calls.append((difficulty, tuple(allowed_types), tuple(avoid)))
            n = len(self.calls)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise UpstreamGenerationError("boom", retryable=self.retryable)
        return make_generated(self.qtype, difficulty, f"Question number {n} about photosynthesis?")


def make_generated(qtype: str, difficulty: str = "medium", stem: str = "What do chloroplasts do?") -> GeneratedQuestion:
    if qtype == "multiple_choice":
        return GeneratedQuestion(
            type=qtype,
            stem=stem,
            choices=[Choice(id=i, text=t) for i, t in zip("abcd", ["Respire", "Photosynthesize", "Divide", "Digest"])],
            correct_answer=["b"],
            explanation="Chloroplasts host photosynthesis.",
            topic="photosynthesis",
            difficulty=difficulty,
        )
    if qtype == "true_false":
        return GeneratedQuestion(
            type=qtype,
            stem=stem,
            choices=[Choice(id="a", text="True"), Choice(id="b", text="False")],
            correct_answer=["a"],
            difficulty=difficulty,
        )
    if qtype == "enumeration":
        return GeneratedQuestion(
            type=qtype,
            stem=stem,
            correct_answer=["Red", "Blue", "Yellow"],
            difficulty=difficulty,
        )
    return GeneratedQuestion(type=qtype, stem=stem, correct_answer="Paris", difficulty=difficulty)


@pytest.fixture
def store(tmp_path) -> SqliteStore:
    return SqliteStore(str(tmp_path / "quiz.db"))


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def gateway(generator) -> GenerationGateway:
    return GenerationGateway(generator, TTLCache(ttl_seconds=30), sleep=lambda _s: None)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def manager(store, gateway, publisher) -> SessionManager:
    return SessionManager(store, QuestionIssuer(store, gateway), publisher)


def correct_choice(question) -> Optional[str]:
    return question.correct_answer[0] if isinstance(question.correct_answer, list) else question.correct_answer


def wrong_choice(question) -> str:
    right = correct_choice(question)
    return next(c.id for c in question.choices if c.id != right)
