"""Practice session planning: pick due spots, pack them into a time budget, order them."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from score_coach.config import Settings
from score_coach.models import Project, ReadinessLevel, Spot, SpotColor, ValidationError, parse_enum
from score_coach.srs import urgency_score

logger = logging.getLogger(__name__)

# urgency multiplier for spots on pieces carrying one of the session's focus tags
FOCUS_TAG_BOOST = 1.3


class SessionType(str, Enum):
    SMART = "smart"
    CRITICAL = "critical"
    NEW_PIECE = "new_piece"
    WARMUP = "warmup"
    QUICK_REVIEW = "quick_review"
    PERFORMANCE = "performance"

    @classmethod
    def parse(cls, value) -> "SessionType":
        return parse_enum(cls, value, "session type")

    @property
    def description(self) -> str:
        return _SESSION_DESCRIPTIONS[self]

    def accepts(self, spot: Spot) -> bool:
        if self is SessionType.CRITICAL:
            return spot.is_critical
        if self is SessionType.NEW_PIECE:
            return spot.readiness_level is ReadinessLevel.NEW
        if self is SessionType.WARMUP:
            return spot.difficulty <= 2 or spot.color in (SpotColor.GREEN, SpotColor.BLUE)
        if self is SessionType.QUICK_REVIEW:
            return spot.readiness_level in (ReadinessLevel.REVIEW, ReadinessLevel.MASTERED)
        return True


_SESSION_DESCRIPTIONS = {
    SessionType.SMART: "Due spots, most urgent first",
    SessionType.CRITICAL: "Red spots that are not mastered yet",
    SessionType.NEW_PIECE: "Spots you have not learned yet",
    SessionType.WARMUP: "Easy or well-known spots to warm up",
    SessionType.QUICK_REVIEW: "Fast pass over spots in review or mastered",
    SessionType.PERFORMANCE: "Every spot in score order, due or not",
}


class EmptyReason(str, Enum):
    NO_SPOTS_AVAILABLE = "no_spots_available"
    ZERO_DURATION = "zero_duration"
    NO_MATCHING_SPOTS = "no_matching_spots"
    NOTHING_DUE = "nothing_due"


_EMPTY_MESSAGES = {
    EmptyReason.NO_SPOTS_AVAILABLE: "No spots available: mark some spots in your pieces first",
    EmptyReason.ZERO_DURATION: "Session length is zero minutes",
    EmptyReason.NO_MATCHING_SPOTS: "No spots fit this kind of session",
    EmptyReason.NOTHING_DUE: "Nothing is due right now",
}


@dataclass
class EmptyPlan:
    """No session could be planned. Distinct from a plan with zero entries."""

    reason: EmptyReason

    @property
    def message(self) -> str:
        return _EMPTY_MESSAGES[self.reason]


@dataclass
class PlanItem:
    spot_id: str
    piece_id: str
    title: str
    minutes: int
    urgency: float
    repetitions: int = 3
    instructions: str = ""


@dataclass
class RestBreak:
    minutes: int


@dataclass
class SessionPlan:
    entries: list = field(default_factory=list)
    target_minutes: int = 0
    interleaved: bool = False
    session_type: SessionType = SessionType.SMART

    @property
    def items(self) -> list[PlanItem]:
        return [e for e in self.entries if isinstance(e, PlanItem)]

    @property
    def spot_ids(self) -> list[str]:
        return [i.spot_id for i in self.items]

    @property
    def practice_minutes(self) -> int:
        return sum(i.minutes for i in self.items)

    @property
    def rest_minutes(self) -> int:
        return sum(e.minutes for e in self.entries if isinstance(e, RestBreak))

    @property
    def total_minutes(self) -> int:
        return self.practice_minutes + self.rest_minutes


def focus_piece_ids(pieces, focus_tags) -> set[str]:
    """Ids of the pieces tagged with any of ``focus_tags`` (case-insensitive)."""
    wanted = {t.strip().lower() for t in focus_tags if t.strip()}
    return {p.id for p in pieces if wanted & {t.lower() for t in p.tags}}


def rank_spots(spots, now: datetime, concert_date: Optional[datetime] = None,
               settings: Optional[Settings] = None, focus_pieces=()) -> list[tuple[Spot, float]]:
    """Most urgent first; ties go to the less mature, then the longest-neglected spot.

    Spots on ``focus_pieces`` have their urgency raised by FOCUS_TAG_BOOST
    (capped at 1.0). Spots not yet due stay at 0.
    """
    scored = []
    for s in spots:
        urgency = urgency_score(s, now, concert_date, settings)
        if s.piece_id in focus_pieces:
            urgency = min(1.0, urgency * FOCUS_TAG_BOOST)
        scored.append((s, urgency))
    scored.sort(key=lambda pair: (
        -pair[1],
        pair[0].readiness_level.rank,
        pair[0].last_practiced or datetime.min,
        pair[0].id,
    ))
    return scored


def _pack(ranked, target_minutes: int, max_spots: Optional[int]) -> list[tuple[Spot, float]]:
    selected = []
    total = 0
    for spot, urgency in ranked:
        if total >= target_minutes:
            break
        if max_spots is not None and len(selected) >= max_spots:
            break
        selected.append((spot, urgency))
        total += spot.recommended_practice_minutes
    return selected


def _in_score_order(ranked, pool) -> list:
    # pieces in pool order, then each piece front to back
    piece_order = {}
    for s in pool:
        piece_order.setdefault(s.piece_id, len(piece_order))
    return sorted(ranked, key=lambda pair: (
        piece_order[pair[0].piece_id], pair[0].page, pair[0].y, pair[0].x, pair[0].id,
    ))


def _piece_queues(selected) -> dict:
    # dicts keep insertion order, so pieces stay in order of their most urgent spot
    queues = {}
    for spot, urgency in selected:
        queues.setdefault(spot.piece_id, []).append((spot, urgency))
    return queues


def _grouped(selected) -> list:
    return [pair for queue in _piece_queues(selected).values() for pair in queue]


def _interleaved(selected) -> list:
    queues = [list(q) for q in _piece_queues(selected).values()]
    ordered = []
    while any(queues):
        for queue in queues:
            if queue:
                ordered.append(queue.pop(0))
    return ordered


def _instructions(spot: Spot, urgency: float) -> str:
    parts = [{
        SpotColor.RED: "Critical spot: focus on accuracy",
        SpotColor.YELLOW: "Review spot: work on consistency",
        SpotColor.GREEN: "Maintenance: keep it polished",
        SpotColor.BLUE: "Nearly solved: play it at tempo",
    }[spot.color]]
    if spot.history:
        if spot.success_rate < 0.5:
            parts.append("Start slowly, build tempo gradually")
        elif spot.success_rate > 0.8:
            parts.append("Practice at performance tempo")
    if spot.difficulty >= 4:
        parts.append("Complex passage: break into smaller sections")
    if urgency > 0.8:
        parts.append("High priority")
    return ". ".join(parts)


def _repetitions(spot: Spot, urgency: float) -> int:
    reps = 3
    if spot.history:
        if spot.success_rate < 0.3:
            reps = 5
        elif spot.success_rate > 0.8:
            reps = 2
    if spot.difficulty >= 4:
        reps += 1
    if urgency > 0.8:
        reps += 1
    return max(1, min(8, reps))


def _to_item(spot: Spot, urgency: float) -> PlanItem:
    return PlanItem(
        spot_id=spot.id,
        piece_id=spot.piece_id,
        title=spot.title,
        minutes=spot.recommended_practice_minutes,
        urgency=round(urgency, 3),
        repetitions=_repetitions(spot, urgency),
        instructions=_instructions(spot, urgency),
    )


def _with_breaks(items: list[PlanItem], every: int, rest: int) -> list:
    # breaks fall on multiples of the interval, counted in practice minutes
    entries = []
    practised = 0
    next_break = every
    for i, item in enumerate(items):
        entries.append(item)
        practised += item.minutes
        if practised >= next_break and i < len(items) - 1:
            entries.append(RestBreak(minutes=rest))
        while practised >= next_break:
            next_break += every
    return entries


def plan_session(
    spots,
    target_minutes: int,
    *,
    now: Optional[datetime] = None,
    interleave: bool = False,
    microbreaks: bool = False,
    concert_date: Optional[datetime] = None,
    include_not_due: bool = False,
    max_spots: Optional[int] = None,
    settings: Optional[Settings] = None,
    session_type=SessionType.SMART,
    focus_tags=(),
    pieces=(),
):
    """Build an ordered practice session from a pool of spots.

    ``session_type`` narrows the pool (critical spots only, warmup, ...).
    A performance run takes every active spot, due or not, in score order.
    ``focus_tags`` boosts spots on the ``pieces`` carrying those tags.

    Returns a SessionPlan, or an EmptyPlan explaining why nothing was
    planned (empty pool, zero-length session, no spot of the requested
    kind, nothing due).
    """
    settings = settings or Settings()
    now = now or datetime.now()
    session_type = SessionType.parse(session_type)
    if target_minutes < 0:
        raise ValidationError(f"Session length cannot be negative: {target_minutes}")
    if max_spots is not None and max_spots < 1:
        raise ValidationError(f"max_spots must be at least 1, got {max_spots}")

    pool = [s for s in spots if s.active]
    if not pool:
        return EmptyPlan(EmptyReason.NO_SPOTS_AVAILABLE)
    if target_minutes == 0:
        return EmptyPlan(EmptyReason.ZERO_DURATION)
    pool = [s for s in pool if session_type.accepts(s)]
    if not pool:
        return EmptyPlan(EmptyReason.NO_MATCHING_SPOTS)
    performance = session_type is SessionType.PERFORMANCE
    if include_not_due or performance:
        candidates = pool
    else:
        candidates = [s for s in pool if s.is_due(now)]
    if not candidates:
        return EmptyPlan(EmptyReason.NOTHING_DUE)

    ranked = rank_spots(candidates, now, concert_date, settings, focus_piece_ids(pieces, focus_tags))
    if performance:
        ranked = _in_score_order(ranked, candidates)
        interleave = False
    selected = _pack(ranked, target_minutes, max_spots)
    ordered = _interleaved(selected) if interleave else _grouped(selected)
    items = [_to_item(spot, urgency) for spot, urgency in ordered]
    if microbreaks:
        entries = _with_breaks(items, settings.microbreak_interval_minutes, settings.microbreak_minutes)
    else:
        entries = items
    logger.debug(
        "Planned %d of %d candidate spots for a %s session, %d minutes (target %d)",
        len(items), len(candidates), session_type.value, sum(i.minutes for i in items), target_minutes,
    )
    return SessionPlan(entries=entries, target_minutes=target_minutes, interleaved=interleave,
                       session_type=session_type)


def spots_for_project(project: Project, pieces) -> list[Spot]:
    return [s for piece in project.pieces_in(pieces) for s in piece.active_spots]


def daily_allocation(project: Project, spots, now: Optional[datetime] = None) -> dict:
    """Split the project's daily goal between critical, review and maintenance spots."""
    now = now or datetime.now()
    days = project.days_until_concert(now)
    if days is not None and days <= 7:
        ratios = (0.7, 0.25, 0.05)
    elif days is not None and days <= 30:
        ratios = (0.5, 0.35, 0.15)
    else:
        ratios = (0.4, 0.4, 0.2)
    if not any(s.active for s in spots):
        ratios = (0.0, 0.0, 0.0)
    goal = project.daily_goal_minutes
    return {
        SpotColor.RED: round(goal * ratios[0]),
        SpotColor.YELLOW: round(goal * ratios[1]),
        SpotColor.GREEN: round(goal * ratios[2]),
    }
