# engine/learning/difficulty.py
from typing import Optional

from engine.learning.streaks import DIFFICULTY_ORDER, difficulty_rank, step_down, step_up


def clamp_to_cap(current: str, proposed: str, cap: Optional[str]) -> str:
    """
    Clamp a proposed difficulty down to the cap.
    The cap never pushes below where the session already sits.
    """
    if not cap or difficulty_rank(proposed) <= difficulty_rank(cap):
        return proposed
    ceiling = max(difficulty_rank(cap), difficulty_rank(current))
    return DIFFICULTY_ORDER[min(difficulty_rank(proposed), ceiling)]


def next_difficulty(
    current: str,
    is_correct: bool,
    continuing_streak: bool,
    cap: Optional[str] = None,
) -> str:
    """
    Two correct in a row -> one level up (ceiling hard).
    Single correct -> hold.
    Incorrect -> one level down (floor easy).
    """
    if is_correct:
        proposed = step_up(current) if continuing_streak else current
    else:
        proposed = step_down(current)
    return clamp_to_cap(current, proposed, cap)
