from datetime import datetime
from typing import Optional, Literal, List, Union
from pydantic import BaseModel, Field

Difficulty = Literal["easy", "medium", "hard"]
QuestionType = Literal["multiple_choice", "true_false", "identification", "enumeration"]
SessionStatus = Literal["active", "completed"]

ALL_QUESTION_TYPES: List[str] = ["multiple_choice", "true_false", "identification", "enumeration"]
CHOICE_TYPES = {"multiple_choice", "true_false"}


class Preferences(BaseModel):
    difficulty_cap: Optional[Difficulty] = None
    question_types: List[QuestionType] = Field(default_factory=lambda: list(ALL_QUESTION_TYPES))


class Session(BaseModel):
    id: int
    token: str
    owner_id: str
    status: SessionStatus = "active"
    current_difficulty: Difficulty = "medium"
    asked: int = 0
    correct: int = 0
    wrong_streak: int = 0
    correct_streak: int = 0
    review_shown: bool = False
    max_questions: int = 20
    preferences: Preferences = Field(default_factory=Preferences)
    content: str = ""
    text_length: int = 0
    version: int = 0
    created_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None


class Choice(BaseModel):
    id: str
    text: str


class Question(BaseModel):
    id: int
    uuid: str
    session_id: int
    difficulty: Difficulty
    type: QuestionType
    stem: str
    choices: Optional[List[Choice]] = None
    correct_answer: Union[List[str], str]
    explanation: Optional[str] = None
    topic: Optional[str] = None
    origin: Literal["generator", "fallback"] = "generator"
    served_at: datetime
    answered_at: Optional[datetime] = None

    def public_view(self) -> dict:
        """What a client may see: never the answer or the explanation."""
        return {
            "id": self.id,
            "type": self.type,
            "stem": self.stem,
            "choices": [c.model_dump() for c in self.choices] if self.choices else None,
            "difficulty": self.difficulty,
            "topic": self.topic,
        }


class Answer(BaseModel):
    id: int
    session_id: int
    question_id: int
    user_answer: object = None
    is_correct: bool
    latency_ms: Optional[int] = None
    created_at: datetime


class GeneratedQuestion(BaseModel):
    """One question as produced by a generator, before it is persisted."""
    type: QuestionType
    stem: str
    choices: Optional[List[Choice]] = None
    correct_answer: Union[List[str], str]
    explanation: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Difficulty = "medium"
    origin: Literal["generator", "fallback"] = "generator"


class UserStats(BaseModel):
    owner_id: str
    total_questions_answered: int = 0
    total_correct_answers: int = 0
    consecutive_correct_answers: int = 0
    longest_streak: int = 0
    total_quizzes_taken: int = 0
    total_perfect_scores: int = 0
    quizzes_90_plus_count: int = 0


class Achievement(BaseModel):
    owner_id: str
    code: str
    awarded_at: datetime


class SessionStats(BaseModel):
    asked: int
    correct: int
    wrong_streak: int
    current_difficulty: Difficulty


class ReviewSuggestion(BaseModel):
    trigger: Literal["wrong_streak"] = "wrong_streak"
    streak: int
    ease_to: Difficulty


class SessionSnapshot(BaseModel):
    session_token: str
    status: SessionStatus
    stats: SessionStats
    pending_question: Optional[dict] = None
    max_questions: int
    created_at: datetime


class AnswerResult(BaseModel):
    correct: bool
    explanation: Optional[str] = None
    stats: SessionStats
    review_suggestion: Optional[ReviewSuggestion] = None
    next_question: Optional[Question] = None
    achievements: List[str] = Field(default_factory=list)


class SessionSummary(BaseModel):
    asked: int
    correct: int
    accuracy: int
    wrong_streak: int
    finished_at: datetime
    duration_ms: int


class SessionListing(BaseModel):
    session_token: str
    title: str
    description: str
    status: SessionStatus
    stats: SessionStats
    accuracy: int
    created_at: datetime
    updated_at: datetime


def session_stats(session: Session) -> SessionStats:
    return SessionStats(
        asked=session.asked,
        correct=session.correct,
        wrong_streak=session.wrong_streak,
        current_difficulty=session.current_difficulty,
    )


def accuracy_percent(asked: int, correct: int) -> int:
    if asked <= 0:
        return 0
    return int(correct * 100 / asked + 0.5)
