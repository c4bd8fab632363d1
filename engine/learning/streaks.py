# engine/learning/streaks.py
from typing import List

DIFFICULTY_ORDER: List[str] = ["easy", "medium", "hard"]


def difficulty_rank(d: str) -> int:
    try:
        return DIFFICULTY_ORDER.index(d)
    except ValueError:
        raise ValueError(f"Unknown difficulty: {d!r}") from None


def step_up(d: str) -> str:
    return DIFFICULTY_ORDER[min(difficulty_rank(d) + 1, len(DIFFICULTY_ORDER) - 1)]


def step_down(d: str) -> str:
    return DIFFICULTY_ORDER[max(difficulty_rank(d) - 1, 0)]


def next_correct_streak(current: int, is_correct: bool) -> int:
    """Consecutive correct answers since the last incorrect one."""
    return current + 1 if is_correct else 0


def next_wrong_streak(current: int, is_correct: bool) -> int:
    """Consecutive incorrect answers since the last correct one."""
    return 0 if is_correct else current + 1


def continues_streak(previous_correct_streak: int, is_correct: bool) -> bool:
    # True when this answer and the one before it were both correct
    return is_correct and previous_correct_streak >= 1
