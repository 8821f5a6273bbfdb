"""Data classes for the practice domain model."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class ValidationError(ValueError):
    """Raised for malformed input. Never coerced or clamped."""


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SpotColor(str, Enum):
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"

    @property
    def priority_weight(self) -> float:
        return {"red": 1.0, "yellow": 0.7, "green": 0.4, "blue": 0.2}[self.value]

    @property
    def display_name(self) -> str:
        return {"red": "Critical", "yellow": "Review", "green": "Maintenance", "blue": "Solved"}[self.value]


class ReadinessLevel(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    MASTERED = "mastered"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def advance(self) -> "ReadinessLevel":
        return _LEVEL_ORDER[min(self.rank + 1, len(_LEVEL_ORDER) - 1)]

    def regress(self) -> "ReadinessLevel":
        return _LEVEL_ORDER[max(self.rank - 1, 0)]


_LEVEL_ORDER = [
    ReadinessLevel.NEW,
    ReadinessLevel.LEARNING,
    ReadinessLevel.REVIEW,
    ReadinessLevel.MASTERED,
]


class PracticeResult(str, Enum):
    FAILED = "failed"
    STRUGGLED = "struggled"
    GOOD = "good"
    EXCELLENT = "excellent"

    @property
    def rank(self) -> int:
        return list(PracticeResult).index(self)

    @property
    def is_success(self) -> bool:
        return self in (PracticeResult.GOOD, PracticeResult.EXCELLENT)

    @classmethod
    def parse(cls, value) -> "PracticeResult":
        return parse_enum(cls, value, "practice result")


class SRSProfile(str, Enum):
    AGGRESSIVE = "aggressive"
    STANDARD = "standard"
    GENTLE = "gentle"

    @classmethod
    def parse(cls, value) -> "SRSProfile":
        return parse_enum(cls, value, "SRS profile")


def parse_enum(enum_cls, value, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Unknown {what} {value!r} (expected one of: {choices})") from None


def _require_local(value: Optional[datetime], what: str) -> None:
    # stored and compared against naive datetime.now()
    if value is not None and value.tzinfo is not None:
        raise ValidationError(f"{what} must be local time without a UTC offset: {value.isoformat()}")


@dataclass(frozen=True)
class PracticeAttempt:
    timestamp: datetime
    duration_minutes: int
    result: PracticeResult
    notes: str = ""

    def __post_init__(self):
        if not isinstance(self.result, PracticeResult):
            raise ValidationError(f"Invalid practice result: {self.result!r}")
        if self.duration_minutes < 0:
            raise ValidationError(f"Practice duration cannot be negative: {self.duration_minutes}")
        _require_local(self.timestamp, "Practice time")


@dataclass(frozen=True)
class Spot:
    """A rectangular region on one page of a piece, practised as a unit.

    Geometry is normalized to the page (0.0-1.0). ``next_due`` of None means
    the spot is due immediately. ``history`` is append-only.
    """

    id: str
    piece_id: str
    title: str
    page: int = 1
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0
    priority: Priority = Priority.MEDIUM
    color: SpotColor = SpotColor.RED
    difficulty: int = 3
    readiness_level: ReadinessLevel = ReadinessLevel.NEW
    created_at: Optional[datetime] = None
    last_practiced: Optional[datetime] = None
    next_due: Optional[datetime] = None
    recommended_minutes: Optional[int] = None
    history: tuple = ()
    active: bool = True
    notes: str = ""

    def __post_init__(self):
        if self.page < 1:
            raise ValidationError(f"Page numbers start at 1, got {self.page}")
        if not 1 <= self.difficulty <= 5:
            raise ValidationError(f"Difficulty must be 1-5, got {self.difficulty}")
        if self.x < 0 or self.y < 0 or self.width <= 0 or self.height <= 0:
            raise ValidationError("Spot bounding box must have a non-negative origin and positive size")
        if self.x + self.width > 1.0 + 1e-9 or self.y + self.height > 1.0 + 1e-9:
            raise ValidationError("Spot bounding box must lie within the page")
        if self.recommended_minutes is not None and self.recommended_minutes <= 0:
            raise ValidationError(f"Recommended practice time must be positive, got {self.recommended_minutes}")
        for name in ("created_at", "last_practiced", "next_due"):
            _require_local(getattr(self, name), name.replace("_", " ").capitalize())
        if not isinstance(self.history, tuple):
            object.__setattr__(self, "history", tuple(self.history))
        for attempt in self.history:
            if not isinstance(attempt, PracticeAttempt):
                raise ValidationError(f"History entries must be practice attempts, got {attempt!r}")

    # -- derived -----------------------------------------------------------

    @property
    def practice_count(self) -> int:
        return len(self.history)

    @property
    def success_count(self) -> int:
        return sum(1 for a in self.history if a.result.is_success)

    @property
    def failure_count(self) -> int:
        return sum(1 for a in self.history if a.result is PracticeResult.FAILED)

    @property
    def success_rate(self) -> float:
        if not self.history:
            return 0.0
        return self.success_count / self.practice_count

    @property
    def total_minutes(self) -> int:
        return sum(a.duration_minutes for a in self.history)

    @property
    def is_critical(self) -> bool:
        return self.color is SpotColor.RED and self.readiness_level is not ReadinessLevel.MASTERED

    def is_due(self, now: datetime) -> bool:
        return self.next_due is None or self.next_due <= now

    @property
    def recommended_practice_minutes(self) -> int:
        """Minutes to spend on this spot in one sitting (3-15)."""
        if self.recommended_minutes is not None:
            return self.recommended_minutes
        minutes = 3 + self.difficulty
        minutes += {"red": 4, "yellow": 2, "green": 1, "blue": -1}[self.color.value]
        minutes += {"new": 3, "learning": 2, "review": 0, "mastered": -2}[self.readiness_level.value]
        if self.history:
            if self.success_rate < 0.4:
                minutes += 3
            elif self.success_rate > 0.8:
                minutes -= 1
        return max(3, min(15, minutes))

    # -- transitions -------------------------------------------------------

    def with_attempt(self, attempt: PracticeAttempt) -> "Spot":
        if self.history and attempt.timestamp < self.history[-1].timestamp:
            raise ValidationError("Practice attempts must be recorded in chronological order")
        return replace(self, history=self.history + (attempt,))

    def edit(self, **changes) -> "Spot":
        locked = set(changes) & _SCHEDULING_FIELDS
        if locked:
            raise ValidationError(f"Scheduling fields cannot be edited directly: {', '.join(sorted(locked))}")
        return replace(self, **changes)

    def deactivate(self) -> "Spot":
        return replace(self, active=False)


_SCHEDULING_FIELDS = {
    "id", "piece_id", "readiness_level", "last_practiced", "next_due", "history", "created_at", "active",
}


@dataclass(frozen=True)
class Piece:
    id: str
    title: str
    composer: str = ""
    difficulty: int = 3
    spots: tuple = ()
    target_tempo: Optional[float] = None
    current_tempo: Optional[float] = None
    total_minutes: int = 0
    tags: tuple = ()
    pdf_path: str = ""
    total_pages: int = 0

    def __post_init__(self):
        if not 1 <= self.difficulty <= 5:
            raise ValidationError(f"Difficulty must be 1-5, got {self.difficulty}")
        if not isinstance(self.spots, tuple):
            object.__setattr__(self, "spots", tuple(self.spots))
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def active_spots(self) -> list:
        return [s for s in self.spots if s.active]

    @property
    def critical_spots(self) -> list:
        return [s for s in self.active_spots if s.is_critical]

    def spots_due(self, now: datetime) -> list:
        return [s for s in self.active_spots if s.is_due(now)]


@dataclass(frozen=True)
class Project:
    """A set of pieces prepared together, usually for a concert."""

    id: str
    name: str
    piece_ids: tuple = ()
    concert_date: Optional[datetime] = None
    daily_goal_minutes: int = 30

    def __post_init__(self):
        if self.daily_goal_minutes < 0:
            raise ValidationError(f"Daily practice goal cannot be negative: {self.daily_goal_minutes}")
        _require_local(self.concert_date, "Concert date")
        if not isinstance(self.piece_ids, tuple):
            object.__setattr__(self, "piece_ids", tuple(self.piece_ids))

    def days_until_concert(self, now: datetime) -> Optional[int]:
        if self.concert_date is None:
            return None
        return (self.concert_date - now).days

    def urgency(self, now: datetime) -> str:
        days = self.days_until_concert(now)
        if days is None or days < 0:
            return "none"
        if days <= 3:
            return "critical"
        if days <= 7:
            return "high"
        if days <= 14:
            return "medium"
        if days <= 30:
            return "low"
        return "none"

    def pieces_in(self, pieces) -> list:
        by_id = {p.id: p for p in pieces}
        return [by_id[pid] for pid in self.piece_ids if pid in by_id]


@dataclass
class ReadinessTier:
    label: str
    tier: int


@dataclass
class PieceScore:
    piece_id: str
    title: str
    score: float
    level: ReadinessTier
    critical_spots: int = 0
    overdue_spots: int = 0
    minutes_needed: int = 0


@dataclass
class ProjectReadiness:
    overall_score: float
    level: ReadinessTier
    piece_scores: list = field(default_factory=list)
    recommendations: list = field(default_factory=list)
    days_until_concert: Optional[int] = None
    minutes_needed: int = 0
    feasible: bool = True
