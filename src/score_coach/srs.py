"""Spaced repetition scheduling for practice spots.

Pure functions over immutable Spot snapshots. The caller persists the
returned values; nothing here touches storage.
"""
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from score_coach.config import Settings
from score_coach.models import (
    PracticeAttempt,
    PracticeResult,
    ReadinessLevel,
    Spot,
    SpotColor,
    ValidationError,
)

logger = logging.getLogger(__name__)

STRUGGLED_FACTOR = 0.8
MASTERED_GROWTH = {
    PracticeResult.GOOD: 1.15,
    PracticeResult.EXCELLENT: 1.3,
}

# How much deadline pressure applies at each level. Mastered spots feel none.
UNMASTERED_WEIGHT = {
    ReadinessLevel.NEW: 1.0,
    ReadinessLevel.LEARNING: 0.8,
    ReadinessLevel.REVIEW: 0.5,
    ReadinessLevel.MASTERED: 0.0,
}

_COLOR_LADDER = [SpotColor.RED, SpotColor.YELLOW, SpotColor.GREEN, SpotColor.BLUE]


@dataclass
class ScheduleUpdate:
    next_due: datetime
    readiness_level: ReadinessLevel
    interval: timedelta
    spot: Spot
    suggested_color: SpotColor
    clamped_to_deadline: bool = False


def validate_history(history) -> None:
    """Reject history with negative durations or timestamps going backwards."""
    previous = None
    for attempt in history:
        if not isinstance(attempt, PracticeAttempt):
            raise ValidationError(f"History entries must be practice attempts, got {attempt!r}")
        if attempt.duration_minutes < 0:
            raise ValidationError(f"Practice duration cannot be negative: {attempt.duration_minutes}")
        if previous is not None and attempt.timestamp < previous:
            raise ValidationError("Practice history is out of chronological order")
        previous = attempt.timestamp


def initial_next_due(spot: Spot, now: Optional[datetime] = None) -> datetime:
    """When the spot should next be practised. Never-practised spots are due now."""
    now = now or datetime.now()
    if not spot.history or spot.next_due is None:
        return now
    return spot.next_due


def compute_interval(spot: Spot, result: PracticeResult, new_level: ReadinessLevel,
                     settings: Settings) -> timedelta:
    base = settings.base_intervals[new_level] * settings.multiplier
    if result is PracticeResult.FAILED:
        return min(settings.retry_lag, base)
    if result is PracticeResult.STRUGGLED:
        interval = base * STRUGGLED_FACTOR
    else:
        interval = base
        if spot.readiness_level is ReadinessLevel.MASTERED and spot.last_practiced and spot.next_due:
            previous_gap = spot.next_due - spot.last_practiced
            interval = max(interval, previous_gap * MASTERED_GROWTH[result])
    return max(interval, settings.minimum_interval)


def _apply_sleep_gate(when: datetime, gate_hour: int) -> datetime:
    morning = when.replace(hour=8, minute=0, second=0, microsecond=0)
    if when.hour >= gate_hour:
        return morning + timedelta(days=1)
    if when.hour < 6:
        return morning
    return when


def record_outcome(
    spot: Spot,
    result,
    *,
    now: Optional[datetime] = None,
    duration_minutes: int = 0,
    concert_date: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    notes: str = "",
) -> ScheduleUpdate:
    """Apply one practice outcome to a spot.

    Args:
        spot: Snapshot of the spot before this attempt.
        result: PracticeResult (or its string value) for the attempt.
        now: Time of the attempt; defaults to the current time.
        duration_minutes: Minutes spent on the attempt (>= 0).
        concert_date: Optional deadline; next_due never lands after it.
        settings: Scheduler settings; defaults to ``Settings()``.

    Returns:
        ScheduleUpdate with the new next_due, readiness level and the
        updated spot (attempt appended).
    """
    settings = settings or Settings()
    now = now or datetime.now()
    result = PracticeResult.parse(result)
    validate_history(spot.history)
    attempt = PracticeAttempt(timestamp=now, duration_minutes=duration_minutes, result=result, notes=notes)

    if result.is_success:
        new_level = spot.readiness_level.advance()
    else:
        new_level = spot.readiness_level.regress()

    interval = compute_interval(spot, result, new_level, settings)
    next_due = now + interval
    if settings.sleep_gate_hour is not None and result is not PracticeResult.FAILED:
        next_due = _apply_sleep_gate(next_due, settings.sleep_gate_hour)

    clamped = False
    if concert_date is not None:
        latest = max(now, concert_date - settings.deadline_margin)
        if next_due > latest:
            logger.debug("Clamping %s from %s to %s for concert on %s", spot.id, next_due, latest, concert_date)
            next_due = latest
            clamped = True

    updated = replace(
        spot.with_attempt(attempt),
        readiness_level=new_level,
        last_practiced=now,
        next_due=next_due,
    )
    logger.debug(
        "Spot %s: %s -> %s (%s), next due %s",
        spot.id, spot.readiness_level.value, new_level.value, result.value, next_due,
    )
    return ScheduleUpdate(
        next_due=next_due,
        readiness_level=new_level,
        interval=next_due - now,
        spot=updated,
        suggested_color=suggest_color(updated),
        clamped_to_deadline=clamped,
    )


def _deadline_pressure(now: datetime, concert_date: Optional[datetime], window_days: int) -> float:
    if concert_date is None:
        return 0.0
    days_left = (concert_date - now).total_seconds() / 86400
    if days_left <= 0:
        return 1.0
    return max(0.0, min(1.0, 1.0 - days_left / window_days))


def urgency_score(
    spot: Spot,
    now: Optional[datetime] = None,
    concert_date: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> float:
    """How urgently a spot needs practice, 0.0-1.0.

    Exactly 0 before the spot is due. From the due moment on it grows with
    time overdue and with the pressure of an approaching concert.
    """
    settings = settings or Settings()
    now = now or datetime.now()
    if spot.next_due is not None:
        if now < spot.next_due:
            return 0.0
        overdue_since = spot.next_due
    else:
        overdue_since = spot.created_at or now
    hours_overdue = max(0.0, (now - overdue_since).total_seconds() / 3600)

    floor = 0.05 * spot.difficulty
    overdue = floor + (1 - floor) * (1 - math.exp(-hours_overdue / settings.urgency_tau_hours))
    pressure = _deadline_pressure(now, concert_date, settings.deadline_window_days)
    # monotone in both overdue and pressure, including under float rounding
    score = 1.0 - (1.0 - overdue) * (1.0 - pressure * UNMASTERED_WEIGHT[spot.readiness_level])
    return min(1.0, score)


def urgency_color(score: float) -> SpotColor:
    if score >= 0.7:
        return SpotColor.RED
    if score >= 0.4:
        return SpotColor.YELLOW
    return SpotColor.GREEN


def suggest_color(spot: Spot) -> SpotColor:
    """Promote or demote a spot's color from its recent results."""
    if len(spot.history) < 3:
        return spot.color
    recent = spot.history[-5:]
    successes = sum(1 for a in recent if a.result.is_success)
    failures = sum(1 for a in recent if a.result is PracticeResult.FAILED)
    rate = successes / len(recent)
    step = _COLOR_LADDER.index(spot.color)
    if rate >= 0.8 and failures == 0:
        return _COLOR_LADDER[min(step + 1, len(_COLOR_LADDER) - 1)]
    if rate <= 0.4 or failures >= 2:
        return _COLOR_LADDER[max(step - 1, 0)]
    return spot.color
