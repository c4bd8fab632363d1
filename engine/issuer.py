# engine/issuer.py
from __future__ import annotations

import hashlib
import threading
import time
from concurrent.futures import Future
from typing import Callable, Dict, Optional, Protocol, Sequence, Tuple

from loguru import logger

from adaptive_models import GeneratedQuestion, Question, Session
from engine.cache import TTLCache
from engine.errors import UpstreamGenerationError
from engine.storage.sqlite_store import SqliteStore
from generators.fallback import synthesize_question
from generators.retry_logic import call_with_retry

GenerationKey = Tuple[str, str, Tuple[str, ...], Tuple[str, ...]]


class QuestionGenerator(Protocol):
    def generate(
        self,
        source_text: str,
        difficulty: str,
        allowed_types: Sequence[str],
        avoid: Sequence[str] = (),
    ) -> GeneratedQuestion: ...


def generation_key(
    source_text: str,
    difficulty: str,
    allowed_types: Sequence[str],
    avoid: Sequence[str] = (),
) -> GenerationKey:
    digest = hashlib.sha256(source_text.encode("utf-8")).hexdigest()
    return (digest, difficulty, tuple(sorted(allowed_types)), tuple(avoid))


class GenerationGateway:
    """
    Front door to the question generator.

    - identical requests in flight share one generator call
    - finished results are cached for a short ttl
    - retryable failures back off and retry a bounded number of times
    - when the generator gives up, a question is synthesized locally
    """

    def __init__(
        self,
        generator: QuestionGenerator,
        cache: TTLCache,
        *,
        max_retries: int = 3,
        base_delay: float = 0.8,
        max_delay: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
        fallback: Callable[..., GeneratedQuestion] = synthesize_question,
    ):
        self.generator = generator
        self.cache = cache
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep
        self.fallback = fallback
        self._inflight: Dict[GenerationKey, Future] = {}
        self._lock = threading.Lock()

    def generate(
        self,
        source_text: str,
        difficulty: str,
        allowed_types: Sequence[str],
        avoid: Sequence[str] = (),
    ) -> GeneratedQuestion:
        key = generation_key(source_text, difficulty, allowed_types, avoid)

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        with self._lock:
            # an owner may have just cached its result and left the in-flight map
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            return future.result()

        try:
            result = self._generate_or_fallback(source_text, difficulty, allowed_types, avoid)
            # fallback output is not cached so the next request tries the generator again
            if result.origin == "generator":
                self.cache.set(key, result)
            future.set_result(result)
            return result
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def _generate_or_fallback(
        self,
        source_text: str,
        difficulty: str,
        allowed_types: Sequence[str],
        avoid: Sequence[str],
    ) -> GeneratedQuestion:
        try:
            return call_with_retry(
                lambda: self.generator.generate(source_text, difficulty, allowed_types, avoid),
                retry_on=(UpstreamGenerationError,),
                should_retry=lambda e: getattr(e, "retryable", True),
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self.sleep,
                label="generator",
            )
        except UpstreamGenerationError as e:
            logger.warning(f"Question generator failed ({e}); synthesizing a {difficulty} question locally")
            return self.fallback(source_text, difficulty, allowed_types, avoid)


class QuestionIssuer:
    def __init__(self, store: SqliteStore, gateway: GenerationGateway):
        self.store = store
        self.gateway = gateway

    def _issue(self, session: Session) -> Question:
        asked_stems = [q.stem for q in self.store.list_questions(session.id)]
        generated = self.gateway.generate(
            session.content,
            session.current_difficulty,
            session.preferences.question_types,
            asked_stems,
        )
        question = self.store.create_question(session.id, generated, session.current_difficulty)
        logger.info(
            f"Issued question {question.id} ({question.type}, {question.difficulty}, {question.origin}) "
            f"for session {session.token}"
        )
        return question

    def issue_first(self, session: Session) -> Question:
        return self._issue(session)

    def get_pending(self, session: Session) -> Optional[Question]:
        return self.store.find_pending_question(session.id)

    def issue_next(self, session: Session) -> Optional[Question]:
        if session.status != "active" or session.asked >= session.max_questions:
            return None
        pending = self.get_pending(session)
        if pending is not None:
            return pending
        return self._issue(session)
