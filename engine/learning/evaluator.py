# engine/learning/evaluator.py
"""
Answer evaluation.

A raw submission is a string, a list, or None depending on the question type.
resolve_answer() turns it into one of three shapes once, at the boundary,
and evaluate_answer() compares it against the stored correct answer.
Nothing here touches storage; the same inputs always give the same result.
"""
from __future__ import annotations

from typing import Any, List, Literal, Union

from pydantic import BaseModel, Field

from adaptive_models import CHOICE_TYPES


class SingleChoice(BaseModel):
    kind: Literal["single_choice"] = "single_choice"
    id: str = ""


class FreeText(BaseModel):
    kind: Literal["free_text"] = "free_text"
    text: str = ""


class ItemList(BaseModel):
    kind: Literal["item_list"] = "item_list"
    items: List[str] = Field(default_factory=list)


SubmittedAnswer = Union[SingleChoice, FreeText, ItemList]

SHAPE_FOR_TYPE = {
    "multiple_choice": SingleChoice,
    "true_false": SingleChoice,
    "identification": FreeText,
    "enumeration": ItemList,
}


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().casefold()


def normalize_items(values: Any) -> List[str]:
    if not isinstance(values, (list, tuple)):
        return []
    out = [normalize_text(v) for v in values]
    return [v for v in out if v]


def resolve_answer(question_type: str, raw: Any) -> SubmittedAnswer:
    if isinstance(raw, (SingleChoice, FreeText, ItemList)):
        return raw

    if question_type in CHOICE_TYPES:
        if isinstance(raw, (list, tuple)):
            raw = raw[0] if raw else None
        return SingleChoice(id="" if raw is None else str(raw))

    if question_type == "enumeration":
        if isinstance(raw, (list, tuple)):
            return ItemList(items=["" if v is None else str(v) for v in raw])
        return ItemList(items=[])

    if question_type == "identification":
        if isinstance(raw, (list, tuple)):
            raw = raw[0] if raw else None
        return FreeText(text="" if raw is None else str(raw))

    raise ValueError(f"Unknown question type: {question_type!r}")


def _as_list(correct_answer: Any) -> List[Any]:
    if correct_answer is None:
        return []
    if isinstance(correct_answer, (list, tuple)):
        return list(correct_answer)
    return [correct_answer]


def evaluate_answer(question_type: str, correct_answer: Any, submitted: Any) -> bool:
    answer = resolve_answer(question_type, submitted)
    if not isinstance(answer, SHAPE_FOR_TYPE[question_type]):
        return False

    if question_type in CHOICE_TYPES:
        chosen = normalize_text(answer.id)
        if not chosen:
            return False
        return chosen in normalize_items(_as_list(correct_answer))

    if question_type == "identification":
        given = normalize_text(answer.text)
        if not given:
            return False
        if isinstance(correct_answer, (list, tuple)):
            correct_answer = correct_answer[0] if correct_answer else ""
        return given == normalize_text(correct_answer)

    # enumeration: every expected item must appear; extras and order don't matter
    given_items = set(normalize_items(answer.items))
    expected = normalize_items(_as_list(correct_answer))
    if not given_items or not expected:
        return False
    return all(item in given_items for item in expected)
