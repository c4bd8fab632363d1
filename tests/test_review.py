from engine.learning.review import check_review
from engine.learning.streaks import next_wrong_streak


def test_one_suggestion_per_streak_episode() -> None:
    streak, shown, emitted = 0, False, []
    for ok in [False, False, False, False, False, True, False, False, False, False]:
        streak = next_wrong_streak(streak, ok)
        suggestion, shown = check_review(streak, "medium", shown)
        emitted.append(suggestion)
    fired = [i for i, s in enumerate(emitted) if s is not None]
    assert fired == [3, 9]
    assert emitted[3].streak == 4
    assert emitted[3].trigger == "wrong_streak"


def test_ease_to_is_one_level_down() -> None:
    assert check_review(4, "hard", False)[0].ease_to == "medium"
    assert check_review(4, "medium", False)[0].ease_to == "easy"
    assert check_review(4, "easy", False)[0].ease_to == "easy"


def test_marker_resets_with_streak() -> None:
    assert check_review(0, "easy", True) == (None, False)
    assert check_review(2, "easy", True) == (None, True)


def test_custom_threshold() -> None:
    suggestion, shown = check_review(2, "medium", False, threshold=2)
    assert suggestion is not None and shown is True
