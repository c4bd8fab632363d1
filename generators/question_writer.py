# generators/question_writer.py
from __future__ import annotations

import json
import re
from typing import List, Optional, Sequence, Union

import httpx
from loguru import logger
from mistralai import Mistral
from mistralai.models import SDKError
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from adaptive_models import CHOICE_TYPES, Choice, GeneratedQuestion
from engine.errors import UpstreamGenerationError

CHOICE_IDS = ["a", "b", "c", "d", "e"]


class RawQuestion(BaseModel):
    type: str = "multiple_choice"
    question: str
    choices: List[str] = Field(default_factory=list)
    answer: Union[List[str], str, bool, None] = None
    explanation: Optional[str] = None
    topic: Optional[str] = None


QUESTION_SYSTEM_PROMPT = """
You are an expert educational content creator. You write ONE quiz question
that tests comprehension of the source text, not trivia or memorization.

Rules:
- Use ONLY facts stated in the source text.
- Match the requested DIFFICULTY:
  easy   -> recognition of a stated fact
  medium -> connecting two ideas from the text
  hard   -> applying or contrasting concepts from the text
- Use one of the ALLOWED_TYPES.
- Never repeat or paraphrase a question listed under AVOID.
- multiple_choice: 4 choices, exactly one correct, plausible distractors.
- true_false: choices must be exactly ["True", "False"].
- identification: the answer is a short term or name (1-4 words).
- enumeration: the answer is a list of 2-6 short items.

STRICT FORMAT (JSON object only, no prose):
{
  "type": "multiple_choice | true_false | identification | enumeration",
  "question": "question text",
  "choices": ["..."],                 // choice types only, else []
  "answer": "correct choice text" | "term" | ["item", "item"],
  "explanation": "why the answer is correct (1-2 sentences)",
  "topic": "main topic this question covers"
}
"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def build_question_prompt(
    source_text: str,
    difficulty: str,
    allowed_types: Sequence[str],
    avoid: Sequence[str] = (),
    text_limit: int = 8000,
) -> str:
    excerpt = source_text[:text_limit]
    if len(source_text) > text_limit:
        excerpt += " ...[truncated]"
    avoid_text = "\n".join(f"- {s}" for s in avoid) if avoid else "(none)"
    return f"""
DIFFICULTY: {difficulty}
ALLOWED_TYPES: {", ".join(allowed_types)}

AVOID:
{avoid_text}

SOURCE_TEXT:
{excerpt}
""".strip()


def map_raw_question(raw: RawQuestion, difficulty: str, allowed_types: Sequence[str]) -> GeneratedQuestion:
    qtype = raw.type.strip().lower()
    if qtype not in allowed_types:
        raise UpstreamGenerationError(f"Generator returned disallowed type {qtype!r}")
    stem = raw.question.strip()
    if len(stem) < 10:
        raise UpstreamGenerationError("Generator returned an empty or trivial question")

    choices = None
    if qtype in CHOICE_TYPES:
        texts = [str(c).strip() for c in raw.choices if str(c).strip()][: len(CHOICE_IDS)]
        if qtype == "true_false" and not texts:
            texts = ["True", "False"]
        if len(texts) < 2:
            raise UpstreamGenerationError("Choice question needs at least two choices")
        answer = raw.answer[0] if isinstance(raw.answer, list) and raw.answer else raw.answer
        answer_text = str(answer).strip().casefold()
        idx = next((i for i, t in enumerate(texts) if t.casefold() == answer_text), -1)
        if idx < 0:
            raise UpstreamGenerationError("Correct answer is not one of the choices")
        choices = [Choice(id=CHOICE_IDS[i], text=t) for i, t in enumerate(texts)]
        correct: Union[List[str], str] = [CHOICE_IDS[idx]]
    elif qtype == "enumeration":
        items = raw.answer if isinstance(raw.answer, list) else []
        correct = [str(i).strip() for i in items if str(i).strip()]
        if not correct:
            raise UpstreamGenerationError("Enumeration question has no answer items")
    else:
        correct = "" if raw.answer is None else str(raw.answer).strip()
        if not correct:
            raise UpstreamGenerationError("Identification question has no answer")

    return GeneratedQuestion(
        type=qtype,
        stem=stem,
        choices=choices,
        correct_answer=correct,
        explanation=(raw.explanation or "").strip() or None,
        topic=(raw.topic or "").strip() or None,
        difficulty=difficulty,
        origin="generator",
    )


def parse_question(content: str, difficulty: str, allowed_types: Sequence[str]) -> GeneratedQuestion:
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise UpstreamGenerationError("No JSON object in generator output")
    try:
        data = json.loads(match.group(0))
        if isinstance(data.get("questions"), list) and data["questions"]:
            data = data["questions"][0]
        raw = RawQuestion(**data)
    except (json.JSONDecodeError, PydanticValidationError, TypeError, AttributeError) as e:
        raise UpstreamGenerationError(f"Unparseable generator output: {e}") from e
    return map_raw_question(raw, difficulty, allowed_types)


def _is_retryable_sdk_error(e: SDKError) -> bool:
    status = getattr(e, "status_code", None)
    if status is not None:
        return status == 429 or status >= 500
    msg = str(e).lower()
    return "429" in msg or "rate" in msg or "capacity" in msg


class MistralQuestionWriter:
    """
    Question Generator backed by Mistral chat completions.
    One call per generate(); retry and fallback live in the caller.
    """

    def __init__(
        self,
        client: Mistral,
        *,
        model: str = "mistral-small-latest",
        temperature: float = 0.4,
        timeout_ms: int = 20000,
        text_limit: int = 8000,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.timeout_ms = timeout_ms
        self.text_limit = text_limit

    def generate(
        self,
        source_text: str,
        difficulty: str,
        allowed_types: Sequence[str],
        avoid: Sequence[str] = (),
    ) -> GeneratedQuestion:
        user_prompt = build_question_prompt(source_text, difficulty, allowed_types, avoid, self.text_limit)
        try:
            resp = self.client.chat.complete(
                model=self.model,
                messages=[
                    {"role": "system", "content": QUESTION_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
                timeout_ms=self.timeout_ms,
            )
        except SDKError as e:
            logger.warning(f"Mistral error: {e}")
            raise UpstreamGenerationError(str(e), retryable=_is_retryable_sdk_error(e)) from e
        except httpx.TimeoutException as e:
            logger.warning(f"Mistral call timed out after {self.timeout_ms}ms")
            raise UpstreamGenerationError("Generator timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"Mistral transport error: {e}")
            raise UpstreamGenerationError(str(e)) from e

        if not resp or not resp.choices:
            raise UpstreamGenerationError("Generator returned no choices")
        content = resp.choices[0].message.content or ""
        if not isinstance(content, str):
            # chunked content: keep the text parts
            content = "".join(getattr(chunk, "text", "") or "" for chunk in content)
        return parse_question(content.strip(), difficulty, allowed_types)
