from datetime import timedelta

import pytest

from score_coach.config import (
    Settings, describe, get_all_settings, get_setting, set_setting, setting_names,
)
from score_coach.db import init_db
from score_coach.models import SRSProfile, ValidationError


def test_defaults():
    s = Settings()
    assert s.profile == SRSProfile.STANDARD
    assert s.multiplier == 1.0
    assert s.minimum_interval == timedelta(hours=8)
    assert s.retry_lag == timedelta(minutes=30)
    assert s.sleep_gate_hour is None


def test_profile_string_is_parsed():
    assert Settings(profile="gentle").multiplier == 1.4
    with pytest.raises(ValidationError):
        Settings(profile="turbo")


def test_rejects_bad_values():
    with pytest.raises(ValidationError):
        Settings(sleep_gate_hour=24)
    with pytest.raises(ValidationError):
        Settings(session_minutes=-5)
    with pytest.raises(ValidationError):
        Settings(readiness_thresholds=((40.0, "Low"), (90.0, "High")))


def test_load_without_db():
    assert Settings.load() == Settings()


def test_set_and_get_setting(tmp_db):
    init_db(tmp_db)
    assert get_setting(tmp_db, "profile") is None
    assert get_setting(tmp_db, "profile", "standard") == "standard"
    set_setting(tmp_db, "profile", "aggressive")
    set_setting(tmp_db, "profile", "gentle")
    assert get_setting(tmp_db, "profile") == "gentle"
    assert get_all_settings(tmp_db) == {"profile": "gentle"}


def test_set_setting_rejects_unknown_key_and_bad_value(tmp_db):
    init_db(tmp_db)
    with pytest.raises(ValidationError):
        set_setting(tmp_db, "colour", "red")
    with pytest.raises(ValidationError):
        set_setting(tmp_db, "session_minutes", "lots")
    with pytest.raises(ValidationError):
        set_setting(tmp_db, "profile", "turbo")
    assert get_all_settings(tmp_db) == {}


def test_load_applies_stored_settings(tmp_db):
    init_db(tmp_db)
    set_setting(tmp_db, "profile", "aggressive")
    set_setting(tmp_db, "retry_lag", "10")
    set_setting(tmp_db, "sleep_gate_hour", "22")
    s = Settings.load(tmp_db)
    assert s.profile == SRSProfile.AGGRESSIVE
    assert s.retry_lag == timedelta(minutes=10)
    assert s.sleep_gate_hour == 22


def test_environment_overrides_stored(tmp_db, monkeypatch):
    init_db(tmp_db)
    set_setting(tmp_db, "session_minutes", "45")
    monkeypatch.setenv("SCORE_COACH_SESSION_MINUTES", "20")
    monkeypatch.setenv("SCORE_COACH_SLEEP_GATE_HOUR", "off")
    s = Settings.load(tmp_db)
    assert s.session_minutes == 20
    assert s.sleep_gate_hour is None


def test_describe_lists_every_setting():
    rows = dict(describe(Settings()))
    assert list(rows) == setting_names()
    assert rows["profile"] == "standard"
    assert rows["session_minutes"] == "30"
