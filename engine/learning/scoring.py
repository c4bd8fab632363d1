# engine/learning/scoring.py
"""
Time-weighted points for a finished attempt.

A correct answer at or under full_ms earns max_points, at or over min_ms it
earns min_points, linear in between. Incorrect answers earn nothing.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from adaptive_models import Answer, Question


@dataclass(frozen=True)
class ScoringConfig:
    full_ms: int = 3000
    min_ms: int = 30000
    min_points: int = 20
    max_points: int = 100
    multipliers: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if self.min_ms <= self.full_ms:
            raise ValueError("min_ms must be greater than full_ms")
        if self.max_points < self.min_points:
            raise ValueError("max_points must be >= min_points")

    @classmethod
    def from_settings(cls, settings, *, with_multipliers: bool = False) -> "ScoringConfig":
        return cls(
            full_ms=settings.speed_full_points_ms,
            min_ms=settings.speed_min_points_ms,
            min_points=settings.points_min_per_correct,
            max_points=settings.points_max_per_correct,
            multipliers=settings.type_multipliers() if with_multipliers else {},
        )


@dataclass(frozen=True)
class SpeedScore:
    points_earned: int
    used_times: List[int]


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def points_for(
    correct: bool,
    elapsed_ms: Optional[float],
    config: ScoringConfig = ScoringConfig(),
    question_type: Optional[str] = None,
) -> int:
    if not correct:
        return 0
    t = _clamp(float(elapsed_ms or 0), config.full_ms, config.min_ms)
    weight = 1 - (t - config.full_ms) / (config.min_ms - config.full_ms)
    pts = config.min_points + weight * (config.max_points - config.min_points)
    multiplier = config.multipliers.get(question_type, 1.0) if question_type else 1.0
    return _round_half_up(pts * multiplier)


def resolve_times(
    count: int,
    question_times_ms: Optional[Sequence[float]] = None,
    total_time_seconds: Optional[float] = None,
) -> List[int]:
    """Per-question times when there is one per question, else the total split evenly."""
    if question_times_ms is not None and len(question_times_ms) == count:
        return [int(t or 0) for t in question_times_ms]
    total_ms = max(0.0, float(total_time_seconds or 0) * 1000)
    even = int(total_ms // count) if count else 0
    return [even] * count


def compute_speed_points(
    correct: Sequence[bool],
    question_times_ms: Optional[Sequence[float]] = None,
    total_time_seconds: Optional[float] = None,
    config: ScoringConfig = ScoringConfig(),
    question_types: Optional[Sequence[str]] = None,
) -> SpeedScore:
    count = len(correct)
    if count == 0:
        return SpeedScore(points_earned=0, used_times=[])

    times = resolve_times(count, question_times_ms, total_time_seconds)
    total = 0
    for i, ok in enumerate(correct):
        qtype = question_types[i] if question_types and i < len(question_types) else None
        total += points_for(ok, times[i], config, qtype)
    return SpeedScore(points_earned=total, used_times=times)


def score_session(
    answers: Sequence[Answer],
    questions: Sequence[Question],
    config: ScoringConfig = ScoringConfig(),
) -> SpeedScore:
    """Score a finished adaptive session from its stored answers and their latency."""
    by_id = {q.id: q for q in questions}
    ordered = sorted(answers, key=lambda a: a.id)
    correct = [a.is_correct for a in ordered]
    types = [by_id[a.question_id].type if a.question_id in by_id else "" for a in ordered]
    # missing latency counts as slowest
    times = [a.latency_ms if a.latency_ms is not None else config.min_ms for a in ordered]
    return compute_speed_points(correct, times, None, config, types)
