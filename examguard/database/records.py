"""
Backend-independent record preparation.

Both adapters run incoming payloads through these helpers so the values they
write (defaulted timestamps, owner promotion, computed expiry and fraud rate)
are identical whichever backend serves the call.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Tuple

from examguard.database.fields import FRAUD_ANALYTICS, USER, VIDEO_EVIDENCE
from examguard.database.models import UserRole

USER_TEXT_FIELDS = ("name", "email", "login_method", "department", "student_id", "profile_photo_url")

DEFAULT_RETENTION_DAYS = 90


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_user_upsert(user: Mapping[str, Any], owner_open_id: Optional[str] = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Split an upsert payload into the row to insert and the columns to update.

    Only fields present in ``user`` are written; an explicit ``None`` clears
    a text field. ``open_id`` is never part of the update set.

    Returns:
        (insert values, update set)
    """
    open_id = user.get("open_id")
    if not open_id:
        raise ValueError("User open_id is required for upsert")
    USER.check_fields(user)

    values: Dict[str, Any] = {"open_id": open_id}
    update_set: Dict[str, Any] = {}

    for name in USER_TEXT_FIELDS:
        if name in user:
            values[name] = user[name]
            update_set[name] = user[name]

    if user.get("last_signed_in") is not None:
        values["last_signed_in"] = user["last_signed_in"]
        update_set["last_signed_in"] = user["last_signed_in"]

    role = user.get("role")
    if role is not None:
        values["role"] = getattr(role, "value", role)
        update_set["role"] = values["role"]
    elif owner_open_id and open_id == owner_open_id:
        values["role"] = UserRole.ADMIN.value
        update_set["role"] = UserRole.ADMIN.value

    if "last_signed_in" not in values:
        values["last_signed_in"] = utcnow()

    if not update_set:
        update_set["last_signed_in"] = utcnow()

    return values, update_set


def prepare_video_evidence(evidence: Mapping[str, Any]) -> Dict[str, Any]:
    """Fill in retention defaults and compute the expiry timestamp."""
    VIDEO_EVIDENCE.check_fields(evidence)
    data = dict(evidence)
    if data.get("retention_days") is None:
        data["retention_days"] = DEFAULT_RETENTION_DAYS
    if data.get("expires_at") is None:
        data["expires_at"] = utcnow() + timedelta(days=data["retention_days"])
    return data


def compute_fraud_rate(confirmed_incidents: int, total_exam_sessions: int) -> Decimal:
    """Confirmed incidents as a percentage of sessions, two decimal places."""
    if not total_exam_sessions:
        return Decimal("0.00")
    rate = Decimal(confirmed_incidents) * 100 / Decimal(total_exam_sessions)
    return rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def prepare_fraud_analytics(analytics: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Fill in ``fraud_rate`` when the payload carries both counts it derives from.

    Without both counts the rate is left out entirely, so an update keeps the
    stored value and an insert falls back to the column default.
    """
    FRAUD_ANALYTICS.check_fields(analytics)
    data = dict(analytics)
    if data.get("fraud_rate") is None:
        data.pop("fraud_rate", None)
        confirmed = data.get("confirmed_incidents")
        total = data.get("total_exam_sessions")
        if confirmed is not None and total is not None:
            data["fraud_rate"] = compute_fraud_rate(confirmed, total)
    return data


def fraud_analytics_key(analytics: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Matching key for a fraud analytics upsert.

    Rows are keyed by (period, course_code); department-level rows that carry
    no course code are keyed by (period, department) instead.
    """
    if not analytics.get("period"):
        raise ValueError("Fraud analytics period is required for upsert")
    if analytics.get("course_code"):
        return {"period": analytics.get("period"), "course_code": analytics["course_code"]}
    return {"period": analytics.get("period"), "course_code": None, "department": analytics.get("department")}
