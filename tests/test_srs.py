from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from score_coach.config import Settings
from score_coach.models import (
    PracticeAttempt, PracticeResult, ReadinessLevel, Spot, SpotColor, ValidationError,
)
from score_coach.srs import (
    initial_next_due, record_outcome, suggest_color, urgency_color, urgency_score, validate_history,
)

NOW = datetime(2024, 3, 4, 10, 0)
LEVELS = list(ReadinessLevel)
RESULTS = list(PracticeResult)


def make_spot(level=ReadinessLevel.NEW, history=(), **kw):
    return Spot(id="s1", piece_id="p1", title="bars 9-12", readiness_level=level,
                history=tuple(history), created_at=NOW - timedelta(days=10), **kw)


def practised_spot(level, gap=timedelta(days=3)):
    """A spot practised once, last at NOW - 1 day, due again after ``gap``."""
    last = NOW - timedelta(days=1)
    return make_spot(
        level,
        history=[PracticeAttempt(timestamp=last, duration_minutes=5, result=PracticeResult.GOOD)],
        last_practiced=last,
        next_due=last + gap,
    )


def test_never_practised_spot_is_due_now():
    assert initial_next_due(make_spot(), NOW) == NOW
    assert initial_next_due(make_spot(next_due=NOW + timedelta(days=5)), NOW) == NOW
    spot = practised_spot(ReadinessLevel.LEARNING)
    assert initial_next_due(spot, NOW) == spot.next_due


def test_new_excellent_advances_to_learning_one_day():
    update = record_outcome(make_spot(), "excellent", now=NOW)
    assert update.readiness_level == ReadinessLevel.LEARNING
    assert update.next_due == NOW + timedelta(days=1) * 1.0
    assert update.spot.next_due == update.next_due
    assert update.spot.last_practiced == NOW
    assert update.spot.practice_count == 1


def test_record_outcome_does_not_mutate_input():
    spot = make_spot()
    record_outcome(spot, "good", now=NOW, duration_minutes=4)
    assert spot.history == ()
    assert spot.readiness_level == ReadinessLevel.NEW


def test_failed_regresses_and_retries_soon():
    update = record_outcome(practised_spot(ReadinessLevel.REVIEW), PracticeResult.FAILED, now=NOW)
    assert update.readiness_level == ReadinessLevel.LEARNING
    assert update.next_due == NOW + timedelta(minutes=30)


def test_struggled_regresses_with_shorter_interval():
    update = record_outcome(practised_spot(ReadinessLevel.REVIEW), "struggled", now=NOW)
    assert update.readiness_level == ReadinessLevel.LEARNING
    assert update.interval == timedelta(days=1) * 0.8


def test_minimum_interval_applies():
    # new level base is 4h; standard profile keeps at least 8h
    update = record_outcome(make_spot(ReadinessLevel.LEARNING), "struggled", now=NOW)
    assert update.readiness_level == ReadinessLevel.NEW
    assert update.interval == timedelta(hours=8)


def test_mastered_interval_grows_from_previous_gap():
    spot = practised_spot(ReadinessLevel.MASTERED, gap=timedelta(days=20))
    good = record_outcome(spot, "good", now=NOW)
    excellent = record_outcome(spot, "excellent", now=NOW)
    assert good.readiness_level == ReadinessLevel.MASTERED
    assert good.interval == timedelta(days=20) * 1.15
    assert excellent.interval == timedelta(days=20) * 1.3


def test_profiles_order_intervals():
    spot = practised_spot(ReadinessLevel.LEARNING)
    intervals = [
        record_outcome(spot, "good", now=NOW, settings=Settings(profile=p)).interval
        for p in ("aggressive", "standard", "gentle")
    ]
    assert intervals[0] < intervals[1] < intervals[2]


@pytest.mark.parametrize("level", LEVELS)
@pytest.mark.parametrize("profile", ["aggressive", "standard", "gentle"])
def test_excellent_never_due_before_failed(level, profile):
    settings = Settings(profile=profile)
    for spot in (make_spot(level), practised_spot(level), practised_spot(level, gap=timedelta(days=30))):
        for concert in (None, NOW + timedelta(days=2), NOW + timedelta(hours=3)):
            excellent = record_outcome(spot, "excellent", now=NOW, concert_date=concert, settings=settings)
            failed = record_outcome(spot, "failed", now=NOW, concert_date=concert, settings=settings)
            assert excellent.next_due >= failed.next_due


@pytest.mark.parametrize("level", LEVELS)
def test_better_results_never_schedule_sooner(level):
    spot = practised_spot(level)
    dues = [record_outcome(spot, r, now=NOW).next_due for r in RESULTS]
    assert dues == sorted(dues)


def test_deadline_clamp_never_past_concert():
    concert = NOW + timedelta(days=2)
    spot = practised_spot(ReadinessLevel.REVIEW)
    update = record_outcome(spot, "excellent", now=NOW, concert_date=concert)
    assert update.clamped_to_deadline
    assert update.next_due == concert - timedelta(hours=24)
    assert update.next_due <= concert


def test_deadline_inside_margin_keeps_spot_due_now():
    concert = NOW + timedelta(hours=6)
    update = record_outcome(practised_spot(ReadinessLevel.REVIEW), "good", now=NOW, concert_date=concert)
    assert update.next_due == NOW


def test_far_deadline_does_not_clamp():
    update = record_outcome(make_spot(), "good", now=NOW, concert_date=NOW + timedelta(days=60))
    assert not update.clamped_to_deadline
    assert update.next_due == NOW + timedelta(days=1)


def test_sleep_gate_moves_late_reviews_to_morning():
    settings = Settings(sleep_gate_hour=22)
    evening = datetime(2024, 3, 4, 14, 0)
    # 8h minimum interval lands at 22:00, pushed to 08:00 next day
    update = record_outcome(make_spot(ReadinessLevel.LEARNING), "struggled", now=evening, settings=settings)
    assert update.next_due == datetime(2024, 3, 5, 8, 0)


def test_sleep_gate_skips_failed_retries():
    settings = Settings(sleep_gate_hour=22)
    late = datetime(2024, 3, 4, 23, 0)
    update = record_outcome(make_spot(), "failed", now=late, settings=settings)
    assert update.next_due == late + timedelta(minutes=30)


def test_invalid_inputs_are_rejected():
    with pytest.raises(ValidationError):
        record_outcome(make_spot(), "meh", now=NOW)
    with pytest.raises(ValidationError):
        record_outcome(make_spot(), "good", now=NOW, duration_minutes=-3)


def test_out_of_order_history_is_rejected():
    history = [
        PracticeAttempt(timestamp=NOW, duration_minutes=1, result=PracticeResult.GOOD),
        PracticeAttempt(timestamp=NOW - timedelta(days=1), duration_minutes=1, result=PracticeResult.GOOD),
    ]
    with pytest.raises(ValidationError):
        validate_history(history)
    with pytest.raises(ValidationError):
        record_outcome(make_spot(history=history), "good", now=NOW)


def test_recording_before_last_attempt_is_rejected():
    with pytest.raises(ValidationError):
        record_outcome(practised_spot(ReadinessLevel.NEW), "good", now=NOW - timedelta(days=2))


def test_urgency_zero_before_due():
    spot = practised_spot(ReadinessLevel.LEARNING)
    assert urgency_score(spot, spot.next_due - timedelta(seconds=1)) == 0.0
    assert urgency_score(spot, NOW) == 0.0
    assert urgency_score(spot, spot.next_due) > 0.0


@pytest.mark.parametrize("concert", [None, NOW + timedelta(days=5), NOW + timedelta(days=40)])
@pytest.mark.parametrize("level", LEVELS)
def test_urgency_non_decreasing_over_time(level, concert):
    spot = practised_spot(level, gap=timedelta(hours=12))
    times = [spot.next_due + timedelta(hours=h) for h in range(0, 24 * 50, 7)]
    scores = [urgency_score(spot, t, concert) for t in times]
    assert scores == sorted(scores)
    assert all(0.0 <= s <= 1.0 for s in scores)


def test_urgency_grows_with_deadline_pressure():
    spot = practised_spot(ReadinessLevel.NEW, gap=timedelta(hours=12))
    relaxed = urgency_score(spot, NOW, None)
    pressed = urgency_score(spot, NOW, NOW + timedelta(days=3))
    assert pressed > relaxed


def test_mastered_spots_feel_no_deadline_pressure():
    spot = practised_spot(ReadinessLevel.MASTERED, gap=timedelta(hours=12))
    assert urgency_score(spot, NOW, None) == urgency_score(spot, NOW, NOW + timedelta(days=1))


def test_never_practised_spot_is_urgent():
    assert urgency_score(make_spot(), NOW) > 0.0


def test_urgency_color_buckets():
    assert urgency_color(0.9) == SpotColor.RED
    assert urgency_color(0.5) == SpotColor.YELLOW
    assert urgency_color(0.1) == SpotColor.GREEN


def _history(*results):
    return [
        PracticeAttempt(timestamp=NOW + timedelta(hours=i), duration_minutes=3, result=PracticeResult(r))
        for i, r in enumerate(results)
    ]


def test_suggest_color_promotes_and_demotes():
    doing_well = make_spot(color=SpotColor.YELLOW, history=_history("good", "excellent", "good", "good"))
    assert suggest_color(doing_well) == SpotColor.GREEN
    doing_badly = make_spot(color=SpotColor.GREEN, history=_history("failed", "good", "failed"))
    assert suggest_color(doing_badly) == SpotColor.YELLOW
    assert suggest_color(replace(doing_badly, color=SpotColor.RED)) == SpotColor.RED


def test_suggest_color_needs_some_history():
    assert suggest_color(make_spot(color=SpotColor.YELLOW, history=_history("good", "good"))) == SpotColor.YELLOW


def test_record_outcome_leaves_color_unchanged():
    spot = make_spot(color=SpotColor.YELLOW, history=_history("good", "good", "good"))
    update = record_outcome(spot, "excellent", now=NOW + timedelta(days=1))
    assert update.spot.color == SpotColor.YELLOW
    assert update.suggested_color == SpotColor.GREEN
