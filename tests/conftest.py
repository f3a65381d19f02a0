from datetime import datetime, timezone

import pytest

from examguard.database.relational_adapter import RelationalAdapter

OWNER_OPEN_ID = "owner@example.com"


@pytest.fixture
async def adapter():
    """Relational adapter over a fresh in-memory SQLite database."""
    adapter = RelationalAdapter(database_url="sqlite+aiosqlite://", owner_open_id=OWNER_OPEN_ID)
    await adapter.create_tables()
    yield adapter
    await adapter.close()


@pytest.fixture
def exam_payload():
    def build(**overrides):
        payload = {
            "title": "Midterm",
            "course_code": "CS101",
            "department": "Computer Science",
            "duration": 90,
            "scheduled_at": datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
            "created_by": 1,
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def session_payload():
    def build(**overrides):
        payload = {
            "exam_id": 1,
            "student_id": 7,
            "started_at": datetime(2024, 3, 1, 9, 5, tzinfo=timezone.utc),
            "status": "in_progress",
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def alert_payload():
    def build(**overrides):
        payload = {
            "session_id": 1,
            "alert_type": "phone_detected",
            "severity": "medium",
            "confidence_score": 87.5,
        }
        payload.update(overrides)
        return payload
    return build
