# engine/controller.py
from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from adaptive_models import (
    Achievement,
    AnswerResult,
    Preferences,
    Question,
    Session,
    SessionListing,
    SessionSnapshot,
    SessionSummary,
    UserStats,
    accuracy_percent,
    session_stats,
)
from engine.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from engine.events import EventPublisher, NullPublisher
from engine.issuer import QuestionIssuer
from engine.learning.achievements import milestone_achievements, streak_achievements
from engine.learning.difficulty import next_difficulty
from engine.learning.evaluator import evaluate_answer
from engine.learning.review import DEFAULT_REVIEW_THRESHOLD, check_review
from engine.learning.streaks import (
    DIFFICULTY_ORDER,
    continues_streak,
    next_correct_streak,
    next_wrong_streak,
)
from engine.storage.sqlite_store import SqliteStore

SESSION_NOT_FOUND = "Session not found"


class SessionLocks:
    """One lock per session id, created on first use."""

    def __init__(self):
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, session_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def discard(self, session_id: int) -> None:
        with self._guard:
            self._locks.pop(session_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def outcome_fields(session: Session, is_correct: bool) -> Dict[str, Any]:
    """Counter and difficulty changes for one evaluated answer."""
    difficulty = next_difficulty(
        session.current_difficulty,
        is_correct,
        continues_streak(session.correct_streak, is_correct),
        session.preferences.difficulty_cap,
    )
    return {
        "asked": session.asked + 1,
        "correct": session.correct + (1 if is_correct else 0),
        "wrong_streak": next_wrong_streak(session.wrong_streak, is_correct),
        "correct_streak": next_correct_streak(session.correct_streak, is_correct),
        "current_difficulty": difficulty,
    }


def answer_payload(answer: Any) -> Any:
    """The submission as it will be stored: plain JSON values."""
    if isinstance(answer, BaseModel):
        answer = answer.model_dump()
    try:
        json.dumps(answer)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Answer cannot be stored: {e}") from e
    return answer


def update_stats_after_answer(stats: UserStats, is_correct: bool) -> UserStats:
    streak = next_correct_streak(stats.consecutive_correct_answers, is_correct)
    return stats.model_copy(
        update={
            "total_questions_answered": stats.total_questions_answered + 1,
            "total_correct_answers": stats.total_correct_answers + (1 if is_correct else 0),
            "consecutive_correct_answers": streak,
            "longest_streak": max(stats.longest_streak, streak),
        }
    )


def update_stats_after_finish(stats: UserStats, asked: int, correct: int) -> UserStats:
    accuracy = accuracy_percent(asked, correct)
    return stats.model_copy(
        update={
            "total_quizzes_taken": stats.total_quizzes_taken + 1,
            "total_perfect_scores": stats.total_perfect_scores + (1 if asked > 0 and accuracy == 100 else 0),
            "quizzes_90_plus_count": stats.quizzes_90_plus_count + (1 if accuracy >= 90 else 0),
        }
    )


class SessionManager:
    """
    Owns the adaptive session lifecycle.

    Mutations of one session (answers, preferences, finish, issuing the next
    question) run under that session's lock; the store's version check catches
    anything that slips past it from another process.
    """

    def __init__(
        self,
        store: SqliteStore,
        issuer: QuestionIssuer,
        publisher: Optional[EventPublisher] = None,
        *,
        default_max_questions: int = 20,
        max_questions_limit: int = 50,
        review_threshold: int = DEFAULT_REVIEW_THRESHOLD,
        max_page_size: int = 50,
    ):
        self.store = store
        self.issuer = issuer
        self.publisher = publisher or NullPublisher()
        self.default_max_questions = default_max_questions
        self.max_questions_limit = max_questions_limit
        self.review_threshold = review_threshold
        self.max_page_size = max_page_size
        self._locks = SessionLocks()

    # --------------------
    # Lookup
    # --------------------
    def _load(self, token: str, owner_id: str) -> Session:
        session = self.store.find_session_for_owner(token, owner_id)
        if session is None:
            # same error whether it's missing or someone else's
            raise NotFoundError(SESSION_NOT_FOUND)
        return session

    def _load_active(self, token: str, owner_id: str) -> Session:
        session = self._load(token, owner_id)
        if session.status != "active":
            raise ConflictError("Session already finished")
        return session

    # --------------------
    # Create
    # --------------------
    def _validate_create(
        self,
        content: Any,
        max_questions: Any,
        initial_difficulty: Any,
        preferences: Union[Preferences, Dict[str, Any], None],
    ) -> Tuple[str, int, str, Preferences]:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("content is required")
        if max_questions is None:
            max_questions = self.default_max_questions
        if isinstance(max_questions, bool) or not isinstance(max_questions, int):
            raise ValidationError("max_questions must be an integer")
        if not 1 <= max_questions <= self.max_questions_limit:
            raise ValidationError(f"max_questions must be between 1 and {self.max_questions_limit}")
        if initial_difficulty not in DIFFICULTY_ORDER:
            raise ValidationError(f"Unknown difficulty: {initial_difficulty!r}")
        return content, max_questions, initial_difficulty, self._coerce_preferences(preferences)

    @staticmethod
    def _coerce_preferences(prefs: Union[Preferences, Dict[str, Any], None]) -> Preferences:
        if prefs is None:
            return Preferences()
        if isinstance(prefs, Preferences):
            return prefs
        try:
            parsed = Preferences(**prefs)
        except (PydanticValidationError, TypeError) as e:
            raise ValidationError(f"Invalid preferences: {e}") from e
        if not parsed.question_types:
            raise ValidationError("question_types must not be empty")
        return parsed

    def create_session(
        self,
        owner_id: str,
        content: str,
        max_questions: Optional[int] = None,
        initial_difficulty: str = "medium",
        preferences: Union[Preferences, Dict[str, Any], None] = None,
    ) -> Tuple[Session, Question]:
        content, max_questions, initial_difficulty, prefs = self._validate_create(
            content, max_questions, initial_difficulty, preferences
        )
        session = self.store.create_session(
            owner_id=owner_id,
            content=content,
            max_questions=max_questions,
            current_difficulty=initial_difficulty,
            preferences=prefs,
        )
        logger.info(f"Created session {session.token} for {owner_id} (max_questions={max_questions})")
        question = self.issuer.issue_first(session)
        return session, question

    # --------------------
    # Read
    # --------------------
    def get_snapshot(self, token: str, owner_id: str) -> SessionSnapshot:
        session = self._load(token, owner_id)
        pending = self.issuer.get_pending(session)
        return SessionSnapshot(
            session_token=session.token,
            status=session.status,
            stats=session_stats(session),
            pending_question=pending.public_view() if pending else None,
            max_questions=session.max_questions,
            created_at=session.created_at,
        )

    def next_question(self, token: str, owner_id: str) -> Optional[Question]:
        session = self._load(token, owner_id)
        if session.status != "active":
            return None
        with self._locks.get(session.id):
            session = self._load(token, owner_id)
            return self.issuer.issue_next(session)

    def list_sessions(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[SessionListing]:
        limit = max(1, min(self.max_page_size, int(limit)))
        offset = max(0, int(offset))
        out: List[SessionListing] = []
        for s in self.store.list_sessions(owner_id, limit=limit, offset=offset):
            accuracy = accuracy_percent(s.asked, s.correct)
            out.append(
                SessionListing(
                    session_token=s.token,
                    title=f"Adaptive Session {s.asked}/{s.max_questions}",
                    description=f"{accuracy}% accuracy - {s.current_difficulty} difficulty",
                    status=s.status,
                    stats=session_stats(s),
                    accuracy=accuracy,
                    created_at=s.created_at,
                    updated_at=s.updated_at,
                )
            )
        return out

    def get_user_stats(self, owner_id: str) -> UserStats:
        return self.store.get_user_stats(owner_id)

    def list_achievements(self, owner_id: str) -> List[Achievement]:
        return self.store.list_achievements(owner_id)

    def _award(self, owner_id: str, candidates: List[str]) -> List[str]:
        if not candidates:
            return []
        try:
            awarded = self.store.award_achievements(owner_id, candidates)
        except PersistenceError as e:
            # the answer or finish is already committed; awards are retried on the next qualifying update
            logger.error(f"Could not store achievements {candidates} for {owner_id}: {e}")
            return []
        if awarded:
            logger.info(f"{owner_id} earned {awarded}")
            self.publisher.publish("achievement_earned", {"owner_id": owner_id, "achievements": awarded})
        return awarded

    # --------------------
    # Answers
    # --------------------
    def apply_answer_outcome(self, session: Session, is_correct: bool) -> Session:
        return self.store.update_session(session, **outcome_fields(session, is_correct))

    def submit_answer(
        self,
        token: str,
        owner_id: str,
        question_id: int,
        answer: Any,
        latency_ms: Optional[int] = None,
    ) -> AnswerResult:
        if latency_ms is not None and (isinstance(latency_ms, bool) or not isinstance(latency_ms, int) or latency_ms < 0):
            raise ValidationError("latency_ms must be a non-negative integer")
        stored_answer = answer_payload(answer)

        session = self._load_active(token, owner_id)
        with self._locks.get(session.id):
            # re-read under the lock; another submission may have just landed
            session = self._load_active(token, owner_id)

            question = self.store.get_question(question_id)
            if question is None or question.session_id != session.id:
                raise NotFoundError("Question not found")
            if question.answered_at is not None:
                raise ConflictError("Question already answered")

            is_correct = evaluate_answer(question.type, question.correct_answer, answer)

            fields = outcome_fields(session, is_correct)
            suggestion, shown = check_review(
                fields["wrong_streak"],
                fields["current_difficulty"],
                session.review_shown,
                self.review_threshold,
            )
            fields["review_shown"] = shown
            stats = update_stats_after_answer(self.store.get_user_stats(owner_id), is_correct)

            updated = self.store.record_answer(
                session=session,
                question=question,
                user_answer=stored_answer,
                is_correct=is_correct,
                latency_ms=latency_ms,
                session_fields=fields,
                user_stats=stats,
            )

            self.publisher.publish(
                "answer_recorded",
                {
                    "session": updated.token,
                    "owner_id": owner_id,
                    "question_id": question.id,
                    "correct": is_correct,
                    "difficulty": updated.current_difficulty,
                },
            )
            if suggestion is not None:
                logger.info(f"Review suggested for session {updated.token} after {suggestion.streak} wrong answers")
                self.publisher.publish(
                    "review_suggested",
                    {"session": updated.token, "owner_id": owner_id, **suggestion.model_dump()},
                )

            earned = self._award(owner_id, streak_achievements(stats)) if is_correct else []
            next_q = self.issuer.issue_next(updated)

        return AnswerResult(
            correct=is_correct,
            explanation=question.explanation,
            stats=session_stats(updated),
            review_suggestion=suggestion,
            next_question=next_q,
            achievements=earned,
        )

    # --------------------
    # Preferences / finish / delete
    # --------------------
    def set_preferences(self, token: str, owner_id: str, prefs: Dict[str, Any]) -> Preferences:
        session = self._load_active(token, owner_id)
        with self._locks.get(session.id):
            session = self._load_active(token, owner_id)
            merged = {**session.preferences.model_dump(), **(prefs or {})}
            preferences = self._coerce_preferences(merged)
            # a lower cap only clamps future steps; current_difficulty stays put
            updated = self.store.update_session(session, preferences=preferences)
        return updated.preferences

    def _summary(self, session: Session) -> SessionSummary:
        finished_at = session.finished_at or datetime.now(timezone.utc)
        duration = finished_at - session.created_at
        return SessionSummary(
            asked=session.asked,
            correct=session.correct,
            accuracy=accuracy_percent(session.asked, session.correct),
            wrong_streak=session.wrong_streak,
            finished_at=finished_at,
            duration_ms=max(0, int(duration.total_seconds() * 1000)),
        )

    def finish(self, token: str, owner_id: str) -> SessionSummary:
        session = self._load(token, owner_id)
        if session.status == "completed":
            return self._summary(session)
        try:
            with self._locks.get(session.id):
                session = self._load(token, owner_id)
                if session.status == "completed":
                    return self._summary(session)

                stats = update_stats_after_finish(self.store.get_user_stats(owner_id), session.asked, session.correct)
                updated = self.store.complete_session(
                    session,
                    finished_at=datetime.now(timezone.utc),
                    user_stats=stats,
                )
                summary = self._summary(updated)
                logger.info(f"Finished session {updated.token}: {updated.correct}/{updated.asked}")
                self.publisher.publish(
                    "session_completed",
                    {"session": updated.token, "owner_id": owner_id, **summary.model_dump(mode="json")},
                )
                self._award(owner_id, milestone_achievements(stats))
        finally:
            # a finished session is never locked again; the version check covers a failed finish
            self._locks.discard(session.id)
        return summary

    def delete_session(self, token: str, owner_id: str) -> bool:
        session = self.store.find_session_for_owner(token, owner_id)
        if session is None:
            return False
        with self._locks.get(session.id):
            deleted = self.store.delete_session(session.id)
        self._locks.discard(session.id)
        if deleted:
            logger.info(f"Deleted session {token}")
        return deleted
