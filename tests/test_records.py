from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from examguard.database.exceptions import UnknownFieldError
from examguard.database.records import (
    build_user_upsert, compute_fraud_rate, fraud_analytics_key,
    prepare_fraud_analytics, prepare_video_evidence,
)


def test_user_upsert_only_writes_present_fields():
    values, update_set = build_user_upsert({"open_id": "a@x.com", "name": "A"})

    assert values["open_id"] == "a@x.com"
    assert values["name"] == "A"
    assert "email" not in values
    assert "last_signed_in" in values
    assert update_set == {"name": "A"}


def test_user_upsert_explicit_none_clears_field():
    _, update_set = build_user_upsert({"open_id": "a@x.com", "email": None})
    assert update_set == {"email": None}


def test_user_upsert_without_changes_touches_sign_in():
    _, update_set = build_user_upsert({"open_id": "a@x.com"})
    assert list(update_set) == ["last_signed_in"]


def test_user_upsert_promotes_owner():
    values, update_set = build_user_upsert({"open_id": "boss"}, owner_open_id="boss")

    assert values["role"] == "admin"
    assert update_set["role"] == "admin"


def test_user_upsert_rejects_unknown_fields():
    with pytest.raises(UnknownFieldError):
        build_user_upsert({"open_id": "a@x.com", "openId": "a@x.com"})


@pytest.mark.parametrize("confirmed,total,expected", [
    (0, 0, "0.00"),
    (1, 3, "33.33"),
    (2, 3, "66.67"),
    (5, 20, "25.00"),
])
def test_compute_fraud_rate(confirmed, total, expected):
    assert compute_fraud_rate(confirmed, total) == Decimal(expected)


def test_prepare_fraud_analytics_keeps_explicit_rate():
    data = prepare_fraud_analytics({"period": "2024-01", "fraud_rate": Decimal("1.50")})
    assert data["fraud_rate"] == Decimal("1.50")


@pytest.mark.parametrize("payload", [
    {"period": "2024-01"},
    {"period": "2024-01", "confirmed_incidents": 3},
    {"period": "2024-01", "total_exam_sessions": 12, "fraud_rate": None},
])
def test_prepare_fraud_analytics_skips_rate_without_both_counts(payload):
    assert "fraud_rate" not in prepare_fraud_analytics(payload)


def test_prepare_fraud_analytics_derives_rate_from_counts():
    data = prepare_fraud_analytics({"period": "2024-01", "confirmed_incidents": 0, "total_exam_sessions": 0})
    assert data["fraud_rate"] == Decimal("0.00")


def test_fraud_key_prefers_course_code():
    assert fraud_analytics_key({"period": "2024-01", "course_code": "CS101", "department": "CS"}) == {
        "period": "2024-01", "course_code": "CS101",
    }
    assert fraud_analytics_key({"period": "2024-01", "department": "CS"}) == {
        "period": "2024-01", "course_code": None, "department": "CS",
    }


def test_video_evidence_keeps_explicit_expiry():
    expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
    data = prepare_video_evidence({"session_id": 1, "video_url": "u", "storage_key": "k", "expires_at": expires})

    assert data["expires_at"] == expires
    assert data["retention_days"] == 90


def test_video_evidence_computes_expiry():
    data = prepare_video_evidence({"session_id": 1, "video_url": "u", "storage_key": "k", "retention_days": 7})

    expected = datetime.now(timezone.utc) + timedelta(days=7)
    assert abs(data["expires_at"] - expected) < timedelta(minutes=1)
