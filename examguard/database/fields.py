"""
Declared field tables for every persisted entity.

Each table lists the entity's field names (the keys adapters accept and
return), the Oracle table they live in and how each field maps to an
UPPER_SNAKE_CASE Oracle column. Both adapters validate payload keys against
these tables before building any SQL, and ``validate_field_tables`` checks
them against the SQLAlchemy models at startup.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Tuple

from sqlalchemy import inspect

from examguard.database.exceptions import ImmutableFieldError, SchemaMismatchError, UnknownFieldError
from examguard.database.models import MODELS_BY_ENTITY

logger = logging.getLogger(__name__)


def to_upper_snake(name: str) -> str:
    """Convert a camelCase or snake_case name to UPPER_SNAKE_CASE."""
    out = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0 and name[i - 1] != "_" and not name[i - 1].isupper():
            out.append("_")
        out.append(char.upper())
    return "".join(out)


@dataclass(frozen=True)
class EntityTable:
    entity: str
    oracle_table: str
    fields: Tuple[str, ...]
    json_fields: FrozenSet[str] = frozenset()
    bool_fields: FrozenSet[str] = frozenset()
    immutable: FrozenSet[str] = frozenset({"id", "created_at"})
    column_overrides: Mapping[str, str] = field(default_factory=dict)

    def oracle_column(self, field_name: str) -> str:
        return self.column_overrides.get(field_name, to_upper_snake(field_name))

    @property
    def oracle_columns(self) -> Dict[str, str]:
        """Field name -> Oracle column, in declaration order."""
        return {name: self.oracle_column(name) for name in self.fields}

    def check_fields(self, data: Mapping[str, Any]):
        unknown = set(data) - set(self.fields)
        if unknown:
            raise UnknownFieldError(self.entity, unknown)

    def check_update(self, updates: Mapping[str, Any]):
        self.check_fields(updates)
        blocked = set(updates) & self.immutable
        if blocked:
            raise ImmutableFieldError(self.entity, blocked)


USER = EntityTable(
    entity="user",
    oracle_table="users",
    fields=(
        "id", "open_id", "name", "email", "login_method", "role", "department",
        "student_id", "profile_photo_url", "created_at", "updated_at", "last_signed_in",
    ),
    immutable=frozenset({"id", "open_id", "created_at"}),
)

EXAM = EntityTable(
    entity="exam",
    oracle_table="exams",
    fields=(
        "id", "title", "course_code", "department", "description", "duration",
        "total_questions", "max_score", "passing_score", "scheduled_at", "end_at",
        "status", "detection_sensitivity", "requires_biometric", "allowed_devices",
        "created_by", "created_at", "updated_at", "deleted_at",
    ),
    json_fields=frozenset({"allowed_devices"}),
    bool_fields=frozenset({"requires_biometric"}),
)

EXAM_SESSION = EntityTable(
    entity="exam_session",
    oracle_table="exam_sessions",
    fields=(
        "id", "exam_id", "student_id", "started_at", "ended_at", "submitted_at",
        "status", "biometric_verified", "biometric_verified_at", "score",
        "percentage_score", "passed", "video_recording_url", "video_metadata",
        "ip_address", "user_agent", "suspicious_activity_count", "created_at",
        "updated_at",
    ),
    json_fields=frozenset({"video_metadata"}),
    bool_fields=frozenset({"biometric_verified", "passed"}),
    # The counter moves only through increment_suspicious_activity
    immutable=frozenset({"id", "created_at", "suspicious_activity_count"}),
)

ALERT = EntityTable(
    entity="alert",
    oracle_table="alerts",
    fields=(
        "id", "session_id", "alert_type", "severity", "confidence_score",
        "description", "video_clip_url", "video_clip_start_time",
        "video_clip_duration", "alert_metadata", "acknowledged", "acknowledged_by",
        "acknowledged_at", "notes", "created_at", "updated_at", "deleted_at",
    ),
    json_fields=frozenset({"alert_metadata"}),
    bool_fields=frozenset({"acknowledged"}),
    column_overrides={"alert_metadata": "METADATA"},
)

INCIDENT = EntityTable(
    entity="incident",
    oracle_table="incidents",
    fields=(
        "id", "session_id", "incident_type", "severity", "description", "status",
        "reported_by", "investigated_by", "resolution", "recommended_action",
        "evidence_urls", "created_at", "updated_at", "resolved_at", "deleted_at",
    ),
    json_fields=frozenset({"evidence_urls"}),
)

VIDEO_EVIDENCE = EntityTable(
    entity="video_evidence",
    oracle_table="video_evidence",
    fields=(
        "id", "session_id", "alert_id", "incident_id", "video_url", "file_size",
        "duration", "start_time", "end_time", "content_type", "storage_key",
        "retention_days", "expires_at", "created_at",
    ),
)

FRAUD_ANALYTICS = EntityTable(
    entity="fraud_analytics",
    oracle_table="fraud_analytics",
    fields=(
        "id", "exam_id", "course_code", "department", "period",
        "total_exam_sessions", "flagged_sessions", "confirmed_incidents",
        "dismissed_incidents", "fraud_rate", "common_alert_types",
        "average_confidence_score", "average_session_score", "pass_rate",
        "created_at", "updated_at",
    ),
    json_fields=frozenset({"common_alert_types"}),
)

AUDIT_LOG = EntityTable(
    entity="audit_log",
    oracle_table="audit_logs",
    fields=(
        "id", "user_id", "action", "entity_type", "entity_id", "old_value",
        "new_value", "description", "ip_address", "user_agent", "created_at",
    ),
    json_fields=frozenset({"old_value", "new_value"}),
)

ENTITY_TABLES: Dict[str, EntityTable] = {
    table.entity: table
    for table in (USER, EXAM, EXAM_SESSION, ALERT, INCIDENT, VIDEO_EVIDENCE, FRAUD_ANALYTICS, AUDIT_LOG)
}


def validate_field_tables(tables: Iterable[EntityTable] = None):
    """
    Check every declared field table against its SQLAlchemy model.

    Raises:
        SchemaMismatchError: if a table and its model disagree on field names
    """
    problems = []
    for table in tables or ENTITY_TABLES.values():
        model = MODELS_BY_ENTITY.get(table.entity)
        if model is None:
            problems.append(f"{table.entity}: no model")
            continue

        mapped = {attr.key for attr in inspect(model).column_attrs}
        declared = set(table.fields)
        if mapped != declared:
            missing = sorted(mapped - declared)
            extra = sorted(declared - mapped)
            problems.append(f"{table.entity}: missing={missing} extra={extra}")

    if problems:
        raise SchemaMismatchError("Field tables do not match models: " + "; ".join(problems))

    logger.debug("Field tables validated against models")
