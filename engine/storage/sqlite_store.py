# engine/storage/sqlite_store.py
from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from loguru import logger

from adaptive_models import Achievement, Answer, GeneratedQuestion, Preferences, Question, Session, UserStats
from engine.errors import ConflictError, PersistenceError


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(dt: datetime) -> str:
    return dt.isoformat(timespec="microseconds")


def _from_iso(s: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(s) if s else None


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        token TEXT NOT NULL UNIQUE,
        owner_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',           -- 'active' | 'completed'
        current_difficulty TEXT NOT NULL DEFAULT 'medium',
        asked INTEGER NOT NULL DEFAULT 0,
        correct INTEGER NOT NULL DEFAULT 0,
        wrong_streak INTEGER NOT NULL DEFAULT 0,
        correct_streak INTEGER NOT NULL DEFAULT 0,
        review_shown INTEGER NOT NULL DEFAULT 0,
        max_questions INTEGER NOT NULL DEFAULT 20,
        preferences_json TEXT NOT NULL DEFAULT '{}',
        content TEXT NOT NULL DEFAULT '',
        text_length INTEGER NOT NULL DEFAULT 0,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        finished_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS questions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uuid TEXT NOT NULL UNIQUE,
        session_id INTEGER NOT NULL,
        difficulty TEXT NOT NULL,
        type TEXT NOT NULL,
        stem TEXT NOT NULL,
        choices_json TEXT,
        correct_answer_json TEXT NOT NULL,
        explanation TEXT,
        topic TEXT,
        origin TEXT NOT NULL DEFAULT 'generator',         -- 'generator' | 'fallback'
        served_at TEXT NOT NULL,
        answered_at TEXT,
        FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_questions_session ON questions(session_id, answered_at)",
    """
    CREATE TABLE IF NOT EXISTS answers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL,
        question_id INTEGER NOT NULL UNIQUE,
        user_answer_json TEXT,
        is_correct INTEGER NOT NULL,
        latency_ms INTEGER,
        created_at TEXT NOT NULL,
        FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE,
        FOREIGN KEY(question_id) REFERENCES questions(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_stats (
        owner_id TEXT PRIMARY KEY,
        total_questions_answered INTEGER NOT NULL DEFAULT 0,
        total_correct_answers INTEGER NOT NULL DEFAULT 0,
        consecutive_correct_answers INTEGER NOT NULL DEFAULT 0,
        longest_streak INTEGER NOT NULL DEFAULT 0,
        total_quizzes_taken INTEGER NOT NULL DEFAULT 0,
        total_perfect_scores INTEGER NOT NULL DEFAULT 0,
        quizzes_90_plus_count INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_achievements (
        owner_id TEXT NOT NULL,
        code TEXT NOT NULL,
        awarded_at TEXT NOT NULL,
        PRIMARY KEY(owner_id, code)
    )
    """,
]

_SESSION_FIELDS = {
    "status",
    "current_difficulty",
    "asked",
    "correct",
    "wrong_streak",
    "correct_streak",
    "review_shown",
    "max_questions",
    "preferences",
    "finished_at",
}


class SqliteStore:
    """
    Durable storage for sessions, questions, answers and user stats.

    Every sqlite failure surfaces as PersistenceError. Session writes are
    conditional on the row version, so a stale writer gets ConflictError
    instead of silently overwriting counters.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.init_db()

    # --------------------
    # Plumbing
    # --------------------
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            logger.error(f"sqlite connect failed ({self.db_path}): {e}")
            raise PersistenceError(f"Could not open database: {e}") from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"sqlite operation failed: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    def init_db(self) -> None:
        with self._tx() as conn:
            for stmt in _SCHEMA:
                conn.execute(stmt)

    # --------------------
    # Row mapping
    # --------------------
    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            token=row["token"],
            owner_id=row["owner_id"],
            status=row["status"],
            current_difficulty=row["current_difficulty"],
            asked=row["asked"],
            correct=row["correct"],
            wrong_streak=row["wrong_streak"],
            correct_streak=row["correct_streak"],
            review_shown=bool(row["review_shown"]),
            max_questions=row["max_questions"],
            preferences=Preferences(**json.loads(row["preferences_json"] or "{}")),
            content=row["content"],
            text_length=row["text_length"],
            version=row["version"],
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
            finished_at=_from_iso(row["finished_at"]),
        )

    @staticmethod
    def _row_to_question(row: sqlite3.Row) -> Question:
        choices = json.loads(row["choices_json"]) if row["choices_json"] else None
        return Question(
            id=row["id"],
            uuid=row["uuid"],
            session_id=row["session_id"],
            difficulty=row["difficulty"],
            type=row["type"],
            stem=row["stem"],
            choices=choices,
            correct_answer=json.loads(row["correct_answer_json"]),
            explanation=row["explanation"],
            topic=row["topic"],
            origin=row["origin"],
            served_at=_from_iso(row["served_at"]),
            answered_at=_from_iso(row["answered_at"]),
        )

    @staticmethod
    def _row_to_answer(row: sqlite3.Row) -> Answer:
        raw = row["user_answer_json"]
        return Answer(
            id=row["id"],
            session_id=row["session_id"],
            question_id=row["question_id"],
            user_answer=json.loads(raw) if raw else None,
            is_correct=bool(row["is_correct"]),
            latency_ms=row["latency_ms"],
            created_at=_from_iso(row["created_at"]),
        )

    # --------------------
    # Sessions
    # --------------------
    def create_session(
        self,
        *,
        owner_id: str,
        content: str,
        max_questions: int,
        current_difficulty: str = "medium",
        preferences: Optional[Preferences] = None,
    ) -> Session:
        prefs = preferences or Preferences()
        now = _to_iso(_now())
        token = uuid.uuid4().hex
        with self._tx() as conn:
            cur = conn.execute(
                """
                INSERT INTO sessions(
                    token, owner_id, status, current_difficulty, max_questions,
                    preferences_json, content, text_length, created_at, updated_at
                )
                VALUES (?, ?, 'active', ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    token,
                    owner_id,
                    current_difficulty,
                    int(max_questions),
                    prefs.model_dump_json(),
                    content,
                    len(content),
                    now,
                    now,
                ),
            )
            session_id = cur.lastrowid
        return self.get_session(session_id)

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id=?", (session_id,)).fetchone()
        return self._row_to_session(row) if row else None

    def find_session_for_owner(self, token: str, owner_id: str) -> Optional[Session]:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE token=? AND owner_id=?",
                (token, owner_id),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def list_sessions(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[Session]:
        with self._tx() as conn:
            rows = conn.execute(
                """
                SELECT * FROM sessions
                WHERE owner_id=?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (owner_id, limit, offset),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    @staticmethod
    def _session_update_sql(fields: Dict[str, Any]):
        unknown = set(fields) - _SESSION_FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")
        sets: List[str] = []
        values: List[Any] = []
        for name, value in fields.items():
            if name == "preferences":
                sets.append("preferences_json=?")
                values.append(value.model_dump_json() if isinstance(value, Preferences) else json.dumps(value))
            elif name == "finished_at":
                sets.append("finished_at=?")
                values.append(_to_iso(value) if value else None)
            elif name == "review_shown":
                sets.append("review_shown=?")
                values.append(1 if value else 0)
            else:
                sets.append(f"{name}=?")
                values.append(value)
        sets.append("version=version+1")
        sets.append("updated_at=?")
        values.append(_to_iso(_now()))
        return ", ".join(sets), values

    def _conditional_update(self, conn: sqlite3.Connection, session: Session, fields: Dict[str, Any]) -> None:
        sets, values = self._session_update_sql(fields)
        cur = conn.execute(
            f"UPDATE sessions SET {sets} WHERE id=? AND version=?",
            (*values, session.id, session.version),
        )
        if cur.rowcount != 1:
            raise ConflictError(f"Session {session.token} was modified concurrently")

    def update_session(self, session: Session, **fields: Any) -> Session:
        """Apply fields only if the stored row still has session.version."""
        if not fields:
            return session
        with self._tx() as conn:
            self._conditional_update(conn, session, fields)
        return self.get_session(session.id)

    def delete_session(self, session_id: int) -> bool:
        with self._tx() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE id=?", (session_id,))
        return cur.rowcount > 0

    # --------------------
    # Questions
    # --------------------
    def create_question(self, session_id: int, generated: GeneratedQuestion, difficulty: str) -> Question:
        choices = [c.model_dump() for c in generated.choices] if generated.choices else None
        with self._tx() as conn:
            cur = conn.execute(
                """
                INSERT INTO questions(
                    uuid, session_id, difficulty, type, stem, choices_json,
                    correct_answer_json, explanation, topic, origin, served_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    uuid.uuid4().hex,
                    session_id,
                    difficulty,
                    generated.type,
                    generated.stem,
                    json.dumps(choices) if choices is not None else None,
                    json.dumps(generated.correct_answer),
                    generated.explanation,
                    generated.topic,
                    generated.origin,
                    _to_iso(_now()),
                ),
            )
            question_id = cur.lastrowid
        return self.get_question(question_id)

    def get_question(self, question_id: int) -> Optional[Question]:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM questions WHERE id=?", (question_id,)).fetchone()
        return self._row_to_question(row) if row else None

    def find_pending_question(self, session_id: int) -> Optional[Question]:
        with self._tx() as conn:
            row = conn.execute(
                """
                SELECT * FROM questions
                WHERE session_id=? AND answered_at IS NULL
                ORDER BY id DESC
                LIMIT 1
                """,
                (session_id,),
            ).fetchone()
        return self._row_to_question(row) if row else None

    def list_questions(self, session_id: int) -> List[Question]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM questions WHERE session_id=? ORDER BY id ASC",
                (session_id,),
            ).fetchall()
        return [self._row_to_question(r) for r in rows]

    # --------------------
    # Answers
    # --------------------
    def record_answer(
        self,
        *,
        session: Session,
        question: Question,
        user_answer: Any,
        is_correct: bool,
        latency_ms: Optional[int],
        session_fields: Dict[str, Any],
        user_stats: Optional[UserStats] = None,
    ) -> Session:
        """
        One transaction: append the answer, mark the question answered,
        update the session counters and, when given, the owner's stats.
        Any lost race rolls all of it back.
        """
        answer_json = json.dumps(user_answer)
        now = _to_iso(_now())
        with self._tx() as conn:
            cur = conn.execute(
                "UPDATE questions SET answered_at=? WHERE id=? AND session_id=? AND answered_at IS NULL",
                (now, question.id, session.id),
            )
            if cur.rowcount != 1:
                raise ConflictError(f"Question {question.id} already answered")
            conn.execute(
                """
                INSERT INTO answers(session_id, question_id, user_answer_json, is_correct, latency_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    question.id,
                    answer_json,
                    1 if is_correct else 0,
                    latency_ms,
                    now,
                ),
            )
            self._conditional_update(conn, session, session_fields)
            if user_stats is not None:
                self._upsert_user_stats(conn, user_stats)
        return self.get_session(session.id)

    def complete_session(self, session: Session, *, finished_at: datetime, user_stats: UserStats) -> Session:
        """Flip the session to completed and save the owner's quiz counters together."""
        with self._tx() as conn:
            self._conditional_update(conn, session, {"status": "completed", "finished_at": finished_at})
            self._upsert_user_stats(conn, user_stats)
        return self.get_session(session.id)

    def list_answers(self, session_id: int) -> List[Answer]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM answers WHERE session_id=? ORDER BY id ASC",
                (session_id,),
            ).fetchall()
        return [self._row_to_answer(r) for r in rows]

    # --------------------
    # User stats
    # --------------------
    def get_user_stats(self, owner_id: str) -> UserStats:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM user_stats WHERE owner_id=?", (owner_id,)).fetchone()
        if row is None:
            return UserStats(owner_id=owner_id)
        return UserStats(**dict(row))

    @staticmethod
    def _upsert_user_stats(conn: sqlite3.Connection, stats: UserStats) -> None:
        data = stats.model_dump()
        cols = list(data.keys())
        updates = ", ".join(f"{c}=excluded.{c}" for c in cols if c != "owner_id")
        conn.execute(
            f"""
            INSERT INTO user_stats({", ".join(cols)})
            VALUES ({", ".join("?" for _ in cols)})
            ON CONFLICT(owner_id) DO UPDATE SET {updates}
            """,
            tuple(data[c] for c in cols),
        )

    def save_user_stats(self, stats: UserStats) -> None:
        with self._tx() as conn:
            self._upsert_user_stats(conn, stats)

    # --------------------
    # Achievements
    # --------------------
    def award_achievements(self, owner_id: str, codes: Sequence[str]) -> List[str]:
        """Store the codes the owner doesn't have yet; returns only those."""
        if not codes:
            return []
        now = _to_iso(_now())
        awarded: List[str] = []
        with self._tx() as conn:
            for code in codes:
                cur = conn.execute(
                    "INSERT OR IGNORE INTO user_achievements(owner_id, code, awarded_at) VALUES (?, ?, ?)",
                    (owner_id, code, now),
                )
                if cur.rowcount == 1:
                    awarded.append(code)
        return awarded

    def list_achievements(self, owner_id: str) -> List[Achievement]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM user_achievements WHERE owner_id=? ORDER BY awarded_at ASC, code ASC",
                (owner_id,),
            ).fetchall()
        return [
            Achievement(owner_id=r["owner_id"], code=r["code"], awarded_at=_from_iso(r["awarded_at"]))
            for r in rows
        ]
