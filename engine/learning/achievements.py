# engine/learning/achievements.py
"""
Achievement rules over user stats.

These functions only say which codes a learner qualifies for. The store
remembers what was already awarded, so each code is granted once per owner.
"""
from typing import List, Tuple

from adaptive_models import UserStats

# (code, consecutive correct answers needed)
STREAK_AWARDS: List[Tuple[str, int]] = [
    ("five_streak", 5),
    ("ten_streak", 10),
]

# (code, stats field, count needed)
MILESTONE_AWARDS: List[Tuple[str, str, int]] = [
    ("first_quiz", "total_quizzes_taken", 1),
    ("quiz_master", "total_quizzes_taken", 10),
    ("dedicated", "total_quizzes_taken", 25),
    ("accuracy_king", "quizzes_90_plus_count", 5),
    ("unbeatable", "total_perfect_scores", 3),
]

ALL_ACHIEVEMENTS = [code for code, _ in STREAK_AWARDS] + [code for code, _, _ in MILESTONE_AWARDS]


def streak_achievements(stats: UserStats) -> List[str]:
    """Codes earned by the current run of correct answers."""
    return [code for code, needed in STREAK_AWARDS if stats.consecutive_correct_answers >= needed]


def milestone_achievements(stats: UserStats) -> List[str]:
    """Codes earned by finished-quiz counters."""
    return [code for code, field, needed in MILESTONE_AWARDS if getattr(stats, field) >= needed]
