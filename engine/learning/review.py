# engine/learning/review.py
from typing import Optional, Tuple

from adaptive_models import ReviewSuggestion
from engine.learning.streaks import step_down

DEFAULT_REVIEW_THRESHOLD = 4


def check_review(
    wrong_streak: int,
    difficulty: str,
    shown: bool,
    threshold: int = DEFAULT_REVIEW_THRESHOLD,
) -> Tuple[Optional[ReviewSuggestion], bool]:
    """
    Returns (suggestion or None, marker to store).
    One suggestion per unbroken wrong streak; the marker clears when the streak does.
    """
    if wrong_streak == 0:
        return None, False
    if shown or wrong_streak < threshold:
        return None, shown
    suggestion = ReviewSuggestion(streak=wrong_streak, ease_to=step_down(difficulty))
    return suggestion, True
