"""Readiness scoring for pieces and concert projects."""
import logging
from datetime import datetime
from typing import Optional

from score_coach.config import NOT_READY_LABEL, READINESS_THRESHOLDS, Settings
from score_coach.models import (
    Piece,
    PieceScore,
    Project,
    ProjectReadiness,
    ReadinessLevel,
    ReadinessTier,
    Spot,
    ValidationError,
)

logger = logging.getLogger(__name__)

LEVEL_VALUES = {
    ReadinessLevel.NEW: 0.0,
    ReadinessLevel.LEARNING: 40.0,
    ReadinessLevel.REVIEW: 75.0,
    ReadinessLevel.MASTERED: 100.0,
}

URGENT_CONCERT_DAYS = 7
NEAR_CONCERT_DAYS = 30
NO_CONCERT_DAYS = 365
DEFAULT_TARGET_SCORE = 85.0

MINUTES_PER_POINT = {1: 1.0, 2: 1.5, 3: 2.0, 4: 3.0, 5: 4.0}

MAINTAIN_MESSAGE = "Maintain muscle memory with light review"


def spot_readiness(spot: Spot, now: datetime) -> float:
    """Nominal level value, reduced for a spot left unpractised past its due date."""
    value = LEVEL_VALUES[spot.readiness_level]
    if spot.next_due is not None and spot.next_due < now:
        hours_overdue = (now - spot.next_due).total_seconds() / 3600
        value *= max(0.5, 1.0 - hours_overdue * 0.01)
    return value


def piece_readiness(piece: Piece, now: Optional[datetime] = None) -> float:
    now = now or datetime.now()
    spots = piece.active_spots
    if not spots:
        return 0.0
    weighted = sum(spot_readiness(s, now) * s.difficulty for s in spots)
    total_weight = sum(s.difficulty for s in spots)
    return round(weighted / total_weight, 1)


def readiness_level(score: float, thresholds=None) -> ReadinessTier:
    """Bucket a 0-100 score into a labelled tier (higher tier = more ready)."""
    if not 0.0 <= score <= 100.0:
        raise ValidationError(f"Readiness score must be within 0-100, got {score}")
    thresholds = thresholds or READINESS_THRESHOLDS
    for i, (cutoff, label) in enumerate(thresholds):
        if score >= cutoff:
            return ReadinessTier(label=label, tier=len(thresholds) - i)
    return ReadinessTier(label=NOT_READY_LABEL, tier=0)


def readiness_color(score: float) -> str:
    if score >= 90:
        return "green"
    elif score >= 70:
        return "yellow"
    elif score >= 40:
        return "dark_orange"
    return "red"


def estimate_minutes_to_readiness(piece: Piece, target: float = DEFAULT_TARGET_SCORE,
                                  now: Optional[datetime] = None) -> int:
    current = piece_readiness(piece, now)
    if current >= target:
        return 0
    per_point = MINUTES_PER_POINT.get(piece.difficulty, 2.0)
    if current > 50:
        per_point *= 1.5
    return round((target - current) * per_point)


def _overdue_count(piece: Piece, now: datetime) -> int:
    return sum(1 for s in piece.active_spots if s.next_due is not None and s.next_due < now)


def project_readiness(
    project: Project,
    pieces,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ProjectReadiness:
    """Aggregate readiness across a project's pieces with ranked recommendations.

    Pieces without spots count as 0 so an unprepared piece pulls the
    average down. The result is deterministic for the same inputs.
    """
    settings = settings or Settings()
    now = now or datetime.now()
    thresholds = settings.readiness_thresholds
    project_pieces = project.pieces_in(pieces)
    days = project.days_until_concert(now)

    piece_scores = []
    for piece in project_pieces:
        score = piece_readiness(piece, now)
        piece_scores.append(PieceScore(
            piece_id=piece.id,
            title=piece.title,
            score=score,
            level=readiness_level(score, thresholds),
            critical_spots=len(piece.critical_spots),
            overdue_spots=_overdue_count(piece, now),
            minutes_needed=estimate_minutes_to_readiness(piece, now=now),
        ))

    if piece_scores:
        overall = round(sum(p.score for p in piece_scores) / len(piece_scores), 1)
    else:
        overall = 0.0
    minutes_needed = sum(p.minutes_needed for p in piece_scores)
    available_days = days if days is not None else NO_CONCERT_DAYS
    feasible = bool(piece_scores) and minutes_needed <= project.daily_goal_minutes * max(available_days, 0)

    recommendations = _recommendations(project, project_pieces, piece_scores, overall, days, feasible,
                                       minutes_needed, thresholds)
    logger.debug("Project %s readiness %.1f with %d recommendations", project.id, overall, len(recommendations))
    return ProjectReadiness(
        overall_score=overall,
        level=readiness_level(overall, thresholds),
        piece_scores=piece_scores,
        recommendations=recommendations,
        days_until_concert=days,
        minutes_needed=minutes_needed,
        feasible=feasible,
    )


def _recommendations(project, project_pieces, piece_scores, overall, days, feasible,
                     minutes_needed, thresholds) -> list[str]:
    if not project_pieces:
        return ["No pieces assigned: add pieces to this project"]

    recs = []
    critical_total = sum(p.critical_spots for p in piece_scores)
    thresholds = thresholds or READINESS_THRESHOLDS
    tier = readiness_level(overall, thresholds).tier
    top_tier = len(thresholds)
    top_cutoff = thresholds[0][0]
    # a concert already past has no deadline to push toward
    if days is not None and days >= 0:
        if days <= URGENT_CONCERT_DAYS and (critical_total or overall < top_cutoff):
            recs.append(f"Concert in {days} days: prioritize performance readiness")
        elif days <= NEAR_CONCERT_DAYS and tier < top_tier - 1:
            recs.append(f"Concert in {days} days: increase practice intensity")

    with_critical = sorted(
        (p for p in piece_scores if p.critical_spots),
        key=lambda p: (-p.critical_spots, p.title),
    )
    for p in with_critical:
        noun = "spot" if p.critical_spots == 1 else "spots"
        recs.append(f"Focus on {p.title}: {p.critical_spots} critical {noun}")

    for piece in project_pieces:
        if not piece.active_spots:
            recs.append(f"{piece.title} has no practice spots yet")

    overdue_total = sum(p.overdue_spots for p in piece_scores)
    if overdue_total:
        noun = "spot" if overdue_total == 1 else "spots"
        recs.append(f"{overdue_total} {noun} overdue")

    if tier == 0:
        recs.append("Focus on fundamentals: most spots are still being learned")
    elif tier == top_tier - 1:
        recs.append("Nearly there: polish dynamics and musical expression")
    elif tier < top_tier:
        recs.append("Good progress: work on consistency and tempo")

    if not feasible and minutes_needed:
        recs.append(
            f"Daily goal of {project.daily_goal_minutes} minutes is not enough: "
            f"about {minutes_needed} minutes of practice remain"
        )

    return recs or [MAINTAIN_MESSAGE]
