import pytest

from examguard.database.exceptions import SchemaMismatchError
from examguard.database.fields import (
    ALERT, ENTITY_TABLES, EXAM_SESSION, USER, EntityTable, to_upper_snake, validate_field_tables,
)


@pytest.mark.parametrize("name,expected", [
    ("open_id", "OPEN_ID"),
    ("openId", "OPEN_ID"),
    ("suspiciousActivityCount", "SUSPICIOUS_ACTIVITY_COUNT"),
    ("id", "ID"),
    ("ID", "ID"),
])
def test_to_upper_snake(name, expected):
    assert to_upper_snake(name) == expected


def test_declared_tables_match_models():
    validate_field_tables()


def test_every_entity_is_declared():
    assert set(ENTITY_TABLES) == {
        "user", "exam", "exam_session", "alert", "incident",
        "video_evidence", "fraud_analytics", "audit_log",
    }


def test_mismatched_table_fails_validation():
    broken = EntityTable(entity="user", oracle_table="users", fields=USER.fields + ("nickname",))

    with pytest.raises(SchemaMismatchError, match="nickname"):
        validate_field_tables([broken])


def test_alert_metadata_column_override():
    assert ALERT.oracle_column("alert_metadata") == "METADATA"
    assert ALERT.oracle_column("acknowledged_by") == "ACKNOWLEDGED_BY"


def test_session_counter_is_immutable():
    assert "suspicious_activity_count" in EXAM_SESSION.immutable
    assert "suspicious_activity_count" in EXAM_SESSION.fields
