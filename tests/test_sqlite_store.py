import sqlite3

import pytest

from adaptive_models import Preferences, UserStats
from engine.errors import ConflictError, PersistenceError
from engine.storage.sqlite_store import SqliteStore

from conftest import SOURCE_TEXT, make_generated


def test_create_and_lookup_session(store) -> None:
    session = store.create_session(owner_id="u1", content=SOURCE_TEXT, max_questions=5, current_difficulty="easy")
    assert session.status == "active"
    assert (session.asked, session.correct, session.wrong_streak, session.correct_streak) == (0, 0, 0, 0)
    assert session.text_length == len(SOURCE_TEXT)
    assert session.preferences == Preferences()
    assert store.find_session_for_owner(session.token, "u1").id == session.id
    assert store.find_session_for_owner(session.token, "someone-else") is None
    assert store.get_session(9999) is None


def test_conditional_update_bumps_version(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    updated = store.update_session(session, asked=1, current_difficulty="hard")
    assert updated.version == session.version + 1
    assert updated.asked == 1 and updated.current_difficulty == "hard"
    # writing with the old version loses
    with pytest.raises(ConflictError):
        store.update_session(session, asked=5)
    assert store.get_session(session.id).asked == 1


def test_update_rejects_unknown_fields(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    with pytest.raises(ValueError):
        store.update_session(session, owner_id="u2")


def test_question_roundtrip_and_pending(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    q = store.create_question(session.id, make_generated("multiple_choice"), "medium")
    assert q.choices[1].text == "Photosynthesize"
    assert q.correct_answer == ["b"]
    assert q.origin == "generator"
    assert store.find_pending_question(session.id).id == q.id


def test_record_answer_is_atomic(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    q = store.create_question(session.id, make_generated("enumeration"), "medium")
    updated = store.record_answer(
        session=session,
        question=q,
        user_answer=["red", "blue", "yellow"],
        is_correct=True,
        latency_ms=1500,
        session_fields={"asked": 1, "correct": 1},
    )
    assert (updated.asked, updated.correct) == (1, 1)
    assert store.find_pending_question(session.id) is None
    [answer] = store.list_answers(session.id)
    assert answer.user_answer == ["red", "blue", "yellow"]
    assert answer.is_correct is True and answer.latency_ms == 1500

    # second answer to the same question: nothing changes
    with pytest.raises(ConflictError):
        store.record_answer(
            session=updated,
            question=q,
            user_answer=["x"],
            is_correct=False,
            latency_ms=None,
            session_fields={"asked": 2},
        )
    assert store.get_session(session.id).asked == 1
    assert len(store.list_answers(session.id)) == 1


def test_stale_session_rolls_back_answer(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    q = store.create_question(session.id, make_generated("identification"), "medium")
    store.update_session(session, asked=0)  # someone else bumped the version
    with pytest.raises(ConflictError):
        store.record_answer(
            session=session,
            question=q,
            user_answer="Paris",
            is_correct=True,
            latency_ms=None,
            session_fields={"asked": 1},
        )
    assert store.list_answers(session.id) == []
    assert store.find_pending_question(session.id).id == q.id


def test_delete_cascades(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    store.create_question(session.id, make_generated("identification"), "medium")
    assert store.delete_session(session.id) is True
    assert store.list_questions(session.id) == []
    assert store.delete_session(session.id) is False


def test_list_sessions_newest_first(store) -> None:
    a = store.create_session(owner_id="u1", content="a", max_questions=5)
    b = store.create_session(owner_id="u1", content="b", max_questions=5)
    store.create_session(owner_id="u2", content="c", max_questions=5)
    assert [s.id for s in store.list_sessions("u1")] == [b.id, a.id]
    assert [s.id for s in store.list_sessions("u1", limit=1, offset=1)] == [a.id]


def test_user_stats_default_and_upsert(store) -> None:
    assert store.get_user_stats("u1") == UserStats(owner_id="u1")
    store.save_user_stats(UserStats(owner_id="u1", total_quizzes_taken=2, longest_streak=4))
    store.save_user_stats(UserStats(owner_id="u1", total_quizzes_taken=3, longest_streak=4))
    assert store.get_user_stats("u1").total_quizzes_taken == 3


def test_sqlite_failures_become_persistence_errors(tmp_path) -> None:
    with pytest.raises(PersistenceError) as info:
        SqliteStore(str(tmp_path / "missing-dir" / "quiz.db"))
    assert isinstance(info.value.__cause__, sqlite3.Error)


def test_achievements_awarded_once(store) -> None:
    assert store.award_achievements("u1", ["first_quiz", "five_streak"]) == ["first_quiz", "five_streak"]
    assert store.award_achievements("u1", ["first_quiz", "ten_streak"]) == ["ten_streak"]
    assert store.award_achievements("u2", ["first_quiz"]) == ["first_quiz"]
    assert store.award_achievements("u1", []) == []
    assert sorted(a.code for a in store.list_achievements("u1")) == ["first_quiz", "five_streak", "ten_streak"]


def test_record_answer_saves_stats_in_same_transaction(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    q = store.create_question(session.id, make_generated("identification"), "medium")
    stats = UserStats(owner_id="u1", total_questions_answered=1, total_correct_answers=1)
    store.record_answer(
        session=session,
        question=q,
        user_answer="Paris",
        is_correct=True,
        latency_ms=None,
        session_fields={"asked": 1, "correct": 1},
        user_stats=stats,
    )
    assert store.get_user_stats("u1") == stats

    # losing the race leaves the stats alone too
    with pytest.raises(ConflictError):
        store.record_answer(
            session=session,
            question=q,
            user_answer="Paris",
            is_correct=True,
            latency_ms=None,
            session_fields={"asked": 2},
            user_stats=stats.model_copy(update={"total_questions_answered": 2}),
        )
    assert store.get_user_stats("u1").total_questions_answered == 1


def test_complete_session(store) -> None:
    session = store.create_session(owner_id="u1", content="text", max_questions=5)
    stats = UserStats(owner_id="u1", total_quizzes_taken=1)
    done = store.complete_session(session, finished_at=session.created_at, user_stats=stats)
    assert done.status == "completed"
    assert done.finished_at == session.created_at
    assert store.get_user_stats("u1").total_quizzes_taken == 1
    with pytest.raises(ConflictError):
        store.complete_session(session, finished_at=session.created_at, user_stats=stats)
