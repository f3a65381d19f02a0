import types
from decimal import Decimal

import pytest

from examguard.database import oracle_adapter as oracle_module
from examguard.database.exceptions import DatabaseUnavailableError, ImmutableFieldError, UnknownFieldError
from examguard.database.fields import ALERT, EXAM_SESSION, INCIDENT
from examguard.database.oracle_adapter import (
    OracleAdapter, build_fraud_analytics_merge, build_insert_statement,
    build_update_statement, build_user_merge, from_row,
)
from examguard.database.records import prepare_fraud_analytics


class FakeLob:
    def __init__(self, text):
        self.text = text

    async def read(self):
        return self.text


class FakeVar:
    def __init__(self, value):
        self.value = value

    def getvalue(self):
        return [self.value]


class FakeCursor:
    def __init__(self, pool):
        self.pool = pool
        self.description = None
        self.rowcount = 0
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def var(self, type_):
        return FakeVar(self.pool.next_id)

    async def execute(self, sql, binds):
        self.pool.executed.append((sql, binds))
        columns, rows = self.pool.results.pop(0) if self.pool.results else ([], [])
        self.description = [(name,) for name in columns]
        self._rows = rows
        self.rowcount = self.pool.rowcount

    async def fetchall(self):
        return self._rows


class FakeConnection:
    def __init__(self, pool):
        self.pool = pool

    async def __aenter__(self):
        self.pool.acquired += 1
        return self

    async def __aexit__(self, *exc):
        return False

    def cursor(self):
        return FakeCursor(self.pool)

    async def commit(self):
        self.pool.commits += 1


class FakePool:
    def __init__(self):
        self.executed = []
        self.results = []
        self.acquired = 0
        self.commits = 0
        self.rowcount = 1
        self.next_id = 7
        self.closed = False

    def acquire(self):
        return FakeConnection(self)

    async def close(self):
        self.closed = True


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def oracle(monkeypatch, pool):
    driver = types.SimpleNamespace(
        create_pool_async=lambda **kwargs: pool,
        AsyncLOB=FakeLob,
        defaults=types.SimpleNamespace(fetch_lobs=True),
    )
    monkeypatch.setattr(oracle_module, "oracledb", driver)
    return OracleAdapter(user="exam_system", password="secret", dsn="db:1521/XEPDB1", owner_open_id="owner")


@pytest.fixture
def unavailable(monkeypatch):
    def create_pool_async(**kwargs):
        raise RuntimeError("listener refused connection")

    monkeypatch.setattr(oracle_module, "oracledb", types.SimpleNamespace(create_pool_async=create_pool_async))
    return OracleAdapter(user="exam_system", password="secret", dsn="db:1521/XEPDB1")


# ===== Statement builders =====

@pytest.mark.parametrize("updates", [
    {"status": "submitted"},
    {"status": "submitted", "passed": True, "score": 88},
    {"video_metadata": {"codec": "h264"}, "ended_at": None},
])
def test_update_binds_one_per_key_plus_id(updates):
    sql, binds = build_update_statement(EXAM_SESSION, 5, updates)

    assert len(binds) == len(updates) + 1
    assert binds["id"] == 5
    assert sql.startswith("UPDATE exam_sessions SET ")
    assert sql.endswith("WHERE ID = :id")
    assert "UPDATED_AT = CURRENT_TIMESTAMP" in sql


def test_update_converts_json_and_flags():
    sql, binds = build_update_statement(EXAM_SESSION, 1, {"passed": True, "video_metadata": {"fps": 30}})

    assert "PASSED = :passed" in sql
    assert "VIDEO_METADATA = :video_metadata" in sql
    assert binds["passed"] == 1
    assert binds["video_metadata"] == '{"fps": 30}'


def test_update_rejects_unknown_and_immutable_fields():
    with pytest.raises(UnknownFieldError):
        build_update_statement(INCIDENT, 1, {"resolvedAt": None})
    with pytest.raises(ImmutableFieldError):
        build_update_statement(EXAM_SESSION, 1, {"suspicious_activity_count": 3})


def test_insert_uses_returning_and_server_timestamps():
    sql, binds = build_insert_statement(ALERT, {
        "session_id": 1, "alert_type": "phone_detected", "confidence_score": 90, "alert_metadata": {"box": [1, 2]},
    })

    assert sql.startswith("INSERT INTO alerts (SESSION_ID, ALERT_TYPE, CONFIDENCE_SCORE, METADATA, CREATED_AT, UPDATED_AT)")
    assert "CURRENT_TIMESTAMP, CURRENT_TIMESTAMP" in sql
    assert sql.endswith("RETURNING ID INTO :new_id")
    assert binds["alert_metadata"] == '{"box": [1, 2]}'


def test_user_merge_is_single_statement():
    sql, binds = build_user_merge({"open_id": "a@x.com", "name": "A"}, {"name": "A"})

    assert sql.startswith("MERGE INTO users target")
    assert "ON (target.OPEN_ID = source.OPEN_ID)" in sql
    assert "target.NAME = :set_name" in sql
    assert "OPEN_ID = :set_open_id" not in sql
    assert binds == {"open_id": "a@x.com", "name": "A", "set_name": "A"}


def test_fraud_merge_keys_department_rows_on_null_course():
    sql, binds = build_fraud_analytics_merge({"period": "2024-01", "department": "Physics", "fraud_rate": 0})

    assert "target.COURSE_CODE IS NULL" in sql
    assert "target.DEPARTMENT = source.DEPARTMENT" in sql
    assert binds["key_period"] == "2024-01"
    assert binds["key_department"] == "Physics"


def test_fraud_merge_without_counts_leaves_rate_alone():
    data = prepare_fraud_analytics({"period": "2024-01", "course_code": "CS101", "flagged_sessions": 5})

    sql, binds = build_fraud_analytics_merge(data)

    assert "FRAUD_RATE" not in sql
    assert "fraud_rate" not in binds
    assert "target.FLAGGED_SESSIONS = :flagged_sessions" in sql


def test_fraud_merge_with_counts_sets_rate():
    data = prepare_fraud_analytics({
        "period": "2024-01", "course_code": "CS101", "total_exam_sessions": 10, "confirmed_incidents": 2,
    })

    sql, binds = build_fraud_analytics_merge(data)

    assert "target.FRAUD_RATE = :fraud_rate" in sql
    assert binds["fraud_rate"] == Decimal("20.00")


def test_from_row_remaps_upper_case_columns():
    record = from_row(ALERT, {"ID": 3, "SESSION_ID": 1, "ACKNOWLEDGED": 0, "METADATA": '{"a": 1}'})

    assert record["id"] == 3
    assert record["session_id"] == 1
    assert record["acknowledged"] is False
    assert record["alert_metadata"] == {"a": 1}
    assert record["notes"] is None


# ===== Adapter against a fake pool =====

async def test_create_returns_new_id(oracle, pool):
    new_id = await oracle.create_exam_session({"exam_id": 1, "student_id": 2, "started_at": None})

    sql, binds = pool.executed[0]
    assert new_id == 7
    assert sql.startswith("INSERT INTO exam_sessions")
    assert "new_id" in binds
    assert pool.commits == 1


async def test_get_maps_row_and_missing_is_none(oracle, pool):
    pool.results.append((["ID", "OPEN_ID", "NAME", "ROLE"], [(1, "a@x.com", "A", "user")]))

    user = await oracle.get_user_by_open_id("a@x.com")
    assert user["open_id"] == "a@x.com"
    assert user["role"] == "user"

    assert await oracle.get_exam_session_by_id(404) is None


async def test_clob_columns_are_read_into_records(oracle, pool):
    pool.results.append((["ID", "SESSION_ID", "METADATA", "ACKNOWLEDGED"], [(3, 1, FakeLob('{"frames": [4]}'), 0)]))

    alert = await oracle.get_alert_by_id(3)

    assert alert["alert_metadata"] == {"frames": [4]}
    assert alert["acknowledged"] is False


def test_construction_leaves_driver_defaults_untouched(oracle):
    assert oracle_module.oracledb.defaults.fetch_lobs is True


async def test_unacknowledged_orders_by_severity_rank(oracle, pool):
    await oracle.list_unacknowledged_alerts(limit=5)

    sql, binds = pool.executed[0]
    assert "WHERE ACKNOWLEDGED = 0" in sql
    assert "CASE SEVERITY WHEN 'low' THEN 1" in sql
    assert "FETCH FIRST :limit ROWS ONLY" in sql
    assert binds == {"limit": 5}


async def test_acknowledge_only_touches_unacknowledged(oracle, pool):
    pool.rowcount = 0

    assert await oracle.acknowledge_alert(3, 42, "ok") == 0
    sql, _ = pool.executed[0]
    assert sql.endswith("WHERE ID = :id AND ACKNOWLEDGED = 0")


async def test_owner_upsert_binds_admin_role(oracle, pool):
    await oracle.upsert_user({"open_id": "owner"})

    _, binds = pool.executed[0]
    assert binds["role"] == "admin"
    assert binds["set_role"] == "admin"


async def test_empty_partial_update_skips_io(oracle, pool):
    assert await oracle.update_incident(1, {}) == 0
    assert pool.acquired == 0


async def test_close_marks_unavailable(oracle, pool):
    await oracle.close()

    assert pool.closed is True
    with pytest.raises(DatabaseUnavailableError):
        await oracle.list_exams()


# ===== Availability probe =====

def test_missing_driver_marks_unavailable(monkeypatch):
    monkeypatch.setattr(oracle_module, "oracledb", None)

    adapter = OracleAdapter(user="u", password="p", dsn="db")
    assert adapter.is_available is False


@pytest.mark.parametrize("call", [
    lambda db: db.upsert_user({"open_id": "a@x.com"}),
    lambda db: db.get_user_by_open_id("a@x.com"),
    lambda db: db.create_exam({"title": "Midterm"}),
    lambda db: db.list_exams(),
    lambda db: db.update_exam_session(1, {"status": "submitted"}),
    lambda db: db.update_incident(1, {}),
    lambda db: db.increment_suspicious_activity(1),
    lambda db: db.list_unacknowledged_alerts(),
    lambda db: db.acknowledge_alert(1, 2),
    lambda db: db.create_video_evidence({"session_id": 1, "video_url": "u", "storage_key": "k"}),
    lambda db: db.upsert_fraud_analytics({"period": "2024-01"}),
    lambda db: db.list_audit_logs(),
    lambda db: db.verify_schema(),
])
async def test_failed_probe_raises_on_every_call(unavailable, call):
    assert unavailable.is_available is False
    assert unavailable.pool is None

    with pytest.raises(DatabaseUnavailableError, match="Oracle not available"):
        await call(unavailable)


async def test_failed_probe_health_reports_unavailable(unavailable):
    health = await unavailable.health_check()
    assert health["status"] == "unavailable"
