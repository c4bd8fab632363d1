from types import SimpleNamespace

import httpx
import pytest

from engine.errors import UpstreamGenerationError
from generators.question_writer import (
    MistralQuestionWriter,
    build_question_prompt,
    parse_question,
)

ALL = ["multiple_choice", "true_false", "identification", "enumeration"]


class FakeChat:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    def complete(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def writer_with(chat: FakeChat) -> MistralQuestionWriter:
    return MistralQuestionWriter(SimpleNamespace(chat=chat), model="test-model", timeout_ms=1234)


def test_multiple_choice_maps_answer_text_to_letter() -> None:
    content = """Here you go:
    {"type": "multiple_choice", "question": "Where does photosynthesis happen?",
     "choices": ["Mitochondria", "Chloroplasts", "Nucleus", "Ribosome"],
     "answer": "Chloroplasts", "explanation": "Stated in the text.", "topic": "cells"}"""
    q = parse_question(content, "easy", ALL)
    assert q.type == "multiple_choice"
    assert [c.id for c in q.choices] == ["a", "b", "c", "d"]
    assert q.correct_answer == ["b"]
    assert q.difficulty == "easy"
    assert q.topic == "cells"


def test_enumeration_and_identification() -> None:
    enum = parse_question(
        '{"type": "enumeration", "question": "Name the primary colors.", "answer": ["Red", "Blue", "Yellow"]}',
        "medium",
        ALL,
    )
    assert enum.correct_answer == ["Red", "Blue", "Yellow"]
    ident = parse_question(
        '{"type": "identification", "question": "What is the capital of France?", "answer": " Paris "}',
        "hard",
        ALL,
    )
    assert ident.correct_answer == "Paris"
    assert ident.choices is None


def test_questions_wrapper_is_accepted() -> None:
    q = parse_question(
        '{"questions": [{"type": "true_false", "question": "Chlorophyll absorbs green light best.",'
        ' "choices": ["True", "False"], "answer": "False"}]}',
        "easy",
        ALL,
    )
    assert q.correct_answer == ["b"]


@pytest.mark.parametrize(
    "content",
    [
        "no json at all",
        "{not valid json}",
        '{"type": "multiple_choice", "question": "Which one is right here?", "choices": ["A", "B"], "answer": "C"}',
        '{"type": "identification", "question": "short?", "answer": "x"}',
        '{"type": "enumeration", "question": "List the three primary colors.", "answer": []}',
    ],
)
def test_bad_output_raises(content) -> None:
    with pytest.raises(UpstreamGenerationError):
        parse_question(content, "medium", ALL)


def test_disallowed_type_raises() -> None:
    with pytest.raises(UpstreamGenerationError):
        parse_question(
            '{"type": "identification", "question": "What is the capital of France?", "answer": "Paris"}',
            "medium",
            ["multiple_choice"],
        )


def test_prompt_truncates_and_lists_avoid() -> None:
    prompt = build_question_prompt("x" * 50, "hard", ["identification"], ["Old question?"], text_limit=10)
    assert "x" * 10 + " ...[truncated]" in prompt
    assert "- Old question?" in prompt
    assert "DIFFICULTY: hard" in prompt


def test_generate_passes_model_and_timeout() -> None:
    chat = FakeChat(content='{"type": "identification", "question": "What is the capital of France?", "answer": "Paris"}')
    q = writer_with(chat).generate("France text", "medium", ALL)
    assert q.correct_answer == "Paris"
    assert chat.kwargs["model"] == "test-model"
    assert chat.kwargs["timeout_ms"] == 1234
    assert chat.kwargs["messages"][0]["role"] == "system"


def test_timeout_becomes_retryable_upstream_error() -> None:
    chat = FakeChat(error=httpx.ReadTimeout("slow"))
    with pytest.raises(UpstreamGenerationError) as info:
        writer_with(chat).generate("text", "easy", ALL)
    assert info.value.retryable is True
