"""Scheduler, readiness and session settings with stored and environment overrides."""
import logging
import os
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta

from score_coach.db import get_connection
from score_coach.models import ReadinessLevel, SRSProfile, ValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "SCORE_COACH_"

BASE_INTERVALS = {
    ReadinessLevel.NEW: timedelta(hours=4),
    ReadinessLevel.LEARNING: timedelta(days=1),
    ReadinessLevel.REVIEW: timedelta(days=3),
    ReadinessLevel.MASTERED: timedelta(days=7),
}

# Aggressive reviews more often, so its intervals are the shortest.
PROFILE_MULTIPLIERS = {
    SRSProfile.AGGRESSIVE: 0.7,
    SRSProfile.STANDARD: 1.0,
    SRSProfile.GENTLE: 1.4,
}

MINIMUM_INTERVALS = {
    SRSProfile.AGGRESSIVE: timedelta(hours=4),
    SRSProfile.STANDARD: timedelta(hours=8),
    SRSProfile.GENTLE: timedelta(hours=12),
}

READINESS_THRESHOLDS = (
    (90.0, "Performance Ready"),
    (70.0, "Nearly Ready"),
    (40.0, "Developing"),
)
NOT_READY_LABEL = "Not Ready"


@dataclass
class Settings:
    profile: SRSProfile = SRSProfile.STANDARD
    base_intervals: dict = field(default_factory=lambda: dict(BASE_INTERVALS))
    profile_multipliers: dict = field(default_factory=lambda: dict(PROFILE_MULTIPLIERS))
    minimum_intervals: dict = field(default_factory=lambda: dict(MINIMUM_INTERVALS))
    retry_lag: timedelta = timedelta(minutes=30)
    deadline_margin: timedelta = timedelta(hours=24)
    sleep_gate_hour: int | None = None
    urgency_tau_hours: float = 48.0
    deadline_window_days: int = 30
    readiness_thresholds: tuple = READINESS_THRESHOLDS
    session_minutes: int = 30
    microbreak_interval_minutes: int = 15
    microbreak_minutes: int = 2

    def __post_init__(self):
        self.profile = SRSProfile.parse(self.profile)
        if self.sleep_gate_hour is not None and not 0 <= self.sleep_gate_hour <= 23:
            raise ValidationError(f"Sleep gate hour must be 0-23, got {self.sleep_gate_hour}")
        for name in ("session_minutes", "microbreak_interval_minutes", "microbreak_minutes"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} cannot be negative")
        if self.microbreak_interval_minutes == 0:
            raise ValidationError("microbreak_interval_minutes must be positive")
        cutoffs = [t for t, _ in self.readiness_thresholds]
        if cutoffs != sorted(cutoffs, reverse=True):
            raise ValidationError("Readiness thresholds must be listed highest first")

    @property
    def multiplier(self) -> float:
        return self.profile_multipliers[self.profile]

    @property
    def minimum_interval(self) -> timedelta:
        return self.minimum_intervals[self.profile]

    @classmethod
    def load(cls, db_path: str | None = None) -> "Settings":
        """Defaults, overlaid by stored user settings, overlaid by the environment."""
        overrides = {}
        if db_path:
            overrides.update(get_all_settings(db_path))
        for f in _OVERRIDABLE:
            env_value = os.environ.get(ENV_PREFIX + f.upper())
            if env_value is not None:
                overrides[f] = env_value
        settings = cls()
        if overrides:
            logger.debug("Applying settings overrides: %s", sorted(overrides))
            settings = replace(settings, **{k: _coerce(k, v) for k, v in overrides.items() if k in _OVERRIDABLE})
        return settings


# Scalar settings a user may change from the app or the environment.
_OVERRIDABLE = {
    "profile": SRSProfile.parse,
    "retry_lag": lambda v: timedelta(minutes=float(v)),
    "deadline_margin": lambda v: timedelta(hours=float(v)),
    "sleep_gate_hour": lambda v: None if str(v).strip().lower() in ("", "none", "off") else int(v),
    "session_minutes": int,
    "microbreak_interval_minutes": int,
    "microbreak_minutes": int,
}


def _coerce(key: str, value):
    try:
        return _OVERRIDABLE[key](value)
    except (TypeError, ValueError) as e:
        if isinstance(e, ValidationError):
            raise
        raise ValidationError(f"Invalid value for setting {key!r}: {value!r}") from None


def setting_names() -> list[str]:
    return sorted(_OVERRIDABLE)


def get_setting(db_path: str, key: str, default: str = None) -> str | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT value FROM user_settings WHERE key = ?", (key,)).fetchone()
    conn.close()
    return row["value"] if row else default


def get_all_settings(db_path: str) -> dict:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT key, value FROM user_settings").fetchall()
    conn.close()
    return {r["key"]: r["value"] for r in rows}


def set_setting(db_path: str, key: str, value: str) -> None:
    if key not in _OVERRIDABLE:
        raise ValidationError(f"Unknown setting {key!r} (expected one of: {', '.join(setting_names())})")
    _coerce(key, value)
    conn = get_connection(db_path)
    conn.execute(
        "INSERT INTO user_settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=?",
        (key, str(value), str(value)),
    )
    conn.commit()
    conn.close()
    logger.info("Setting %s = %s", key, value)


def describe(settings: Settings) -> list[tuple[str, str]]:
    """Human-readable (name, value) pairs for the overridable settings."""
    values = {f.name: getattr(settings, f.name) for f in fields(settings)}
    out = []
    for name in setting_names():
        value = values[name]
        if isinstance(value, SRSProfile):
            value = value.value
        out.append((name, str(value)))
    return out
