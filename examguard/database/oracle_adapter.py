"""
Oracle Database Adapter for the Exam Proctoring System

Implements the persistence contract with hand-written parameterized SQL over
a python-oracledb async connection pool. Physical columns are the
UPPER_SNAKE_CASE form of each declared field; every read remaps the
driver's upper-case row keys back to field names through the declared
field tables, and every write validates its keys against them first.

The pool is created once in the constructor. A missing driver or a failed
pool creation marks the adapter permanently unavailable: every later call
raises DatabaseUnavailableError without touching the pool.
"""

import json
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Try Oracle driver import
try:
    import oracledb
except ImportError:
    oracledb = None

from examguard.database.base import DatabaseAdapter, Record, DEFAULT_AUDIT_LIMIT, DEFAULT_LIST_LIMIT
from examguard.database.exceptions import DatabaseUnavailableError
from examguard.database.fields import (
    ALERT, AUDIT_LOG, ENTITY_TABLES, EXAM, EXAM_SESSION, FRAUD_ANALYTICS,
    INCIDENT, USER, VIDEO_EVIDENCE, EntityTable,
)
from examguard.database.models import SessionStatus, SEVERITY_RANK
from examguard.database.records import (
    build_user_upsert, fraud_analytics_key, prepare_fraud_analytics,
    prepare_video_evidence,
)

logger = logging.getLogger(__name__)

TAG = "[Oracle]"

# Columns filled by the database rather than the payload
SERVER_TIMESTAMPS = ("created_at", "updated_at")


def to_bind_value(table: EntityTable, name: str, value: Any) -> Any:
    """Convert a field value to what the driver binds: JSON text, 0/1 flags, plain strings."""
    if value is None:
        return None
    if name in table.json_fields:
        return json.dumps(value)
    if name in table.bool_fields:
        return 1 if value else 0
    if isinstance(value, Enum):
        return value.value
    return value


async def read_lob(value: Any) -> Any:
    """Read CLOB columns (JSON text, long descriptions) into plain strings."""
    if isinstance(value, oracledb.AsyncLOB):
        return await value.read()
    return value


def from_row(table: EntityTable, row: Mapping[str, Any]) -> Record:
    """Remap an upper-case driver row to the entity's field names."""
    record = {}
    for name, column in table.oracle_columns.items():
        value = row.get(column)
        if value is not None:
            if name in table.json_fields and isinstance(value, (str, bytes)):
                value = json.loads(value)
            elif name in table.bool_fields:
                value = bool(value)
        record[name] = value
    return record


def build_insert_statement(table: EntityTable, data: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Build an INSERT ... RETURNING ID statement for a create payload.

    ``created_at``/``updated_at`` default to CURRENT_TIMESTAMP when the
    payload does not supply them. The caller adds the ``new_id`` out bind.
    """
    table.check_fields(data)
    names = [name for name in data if name != "id"]

    columns = [table.oracle_column(name) for name in names]
    placeholders = [f":{name}" for name in names]
    for name in SERVER_TIMESTAMPS:
        if name in table.fields and name not in data:
            columns.append(table.oracle_column(name))
            placeholders.append("CURRENT_TIMESTAMP")

    sql = (
        f"INSERT INTO {table.oracle_table} ({', '.join(columns)}) "
        f"VALUES ({', '.join(placeholders)}) RETURNING ID INTO :new_id"
    )
    binds = {name: to_bind_value(table, name, data[name]) for name in names}
    return sql, binds


def build_update_statement(table: EntityTable, row_id: int, updates: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Build ``UPDATE ... SET <COL> = :field, ... WHERE ID = :id`` from a partial update.

    One bind per update key plus the id predicate. ``UPDATED_AT`` is stamped
    with CURRENT_TIMESTAMP unless the payload sets it.
    """
    table.check_update(updates)
    if not updates:
        raise ValueError(f"Empty {table.entity} update")

    set_parts = [f"{table.oracle_column(name)} = :{name}" for name in updates]
    if "updated_at" in table.fields and "updated_at" not in updates:
        set_parts.append("UPDATED_AT = CURRENT_TIMESTAMP")

    sql = f"UPDATE {table.oracle_table} SET {', '.join(set_parts)} WHERE ID = :id"
    binds = {name: to_bind_value(table, name, value) for name, value in updates.items()}
    binds["id"] = row_id
    return sql, binds


def build_user_merge(values: Mapping[str, Any], update_set: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Single-statement user upsert keyed by OPEN_ID."""
    insert_columns = [USER.oracle_column(name) for name in values] + ["CREATED_AT", "UPDATED_AT"]
    insert_values = [f":{name}" for name in values] + ["CURRENT_TIMESTAMP", "CURRENT_TIMESTAMP"]
    set_parts = [f"target.{USER.oracle_column(name)} = :set_{name}" for name in update_set]
    set_parts.append("target.UPDATED_AT = CURRENT_TIMESTAMP")

    sql = (
        f"MERGE INTO {USER.oracle_table} target "
        f"USING (SELECT :open_id AS OPEN_ID FROM dual) source "
        f"ON (target.OPEN_ID = source.OPEN_ID) "
        f"WHEN MATCHED THEN UPDATE SET {', '.join(set_parts)} "
        f"WHEN NOT MATCHED THEN INSERT ({', '.join(insert_columns)}) VALUES ({', '.join(insert_values)})"
    )
    binds = {name: to_bind_value(USER, name, value) for name, value in values.items()}
    binds.update({f"set_{name}": to_bind_value(USER, name, value) for name, value in update_set.items()})
    return sql, binds


def build_fraud_analytics_merge(data: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Single-statement fraud analytics upsert keyed by period and course (or department)."""
    table = FRAUD_ANALYTICS
    key = fraud_analytics_key(data)

    source_parts = []
    on_parts = []
    binds = {}
    for name, value in key.items():
        column = table.oracle_column(name)
        if value is None:
            on_parts.append(f"target.{column} IS NULL")
        else:
            source_parts.append(f":key_{name} AS {column}")
            on_parts.append(f"target.{column} = source.{column}")
            binds[f"key_{name}"] = value

    names = [name for name in data if name != "id"]
    updatable = [name for name in names if name not in key]
    set_parts = [f"target.{table.oracle_column(name)} = :{name}" for name in updatable]
    set_parts.append("target.UPDATED_AT = CURRENT_TIMESTAMP")
    insert_columns = [table.oracle_column(name) for name in names] + ["CREATED_AT", "UPDATED_AT"]
    insert_values = [f":{name}" for name in names] + ["CURRENT_TIMESTAMP", "CURRENT_TIMESTAMP"]

    sql = (
        f"MERGE INTO {table.oracle_table} target "
        f"USING (SELECT {', '.join(source_parts)} FROM dual) source "
        f"ON ({' AND '.join(on_parts)}) "
        f"WHEN MATCHED THEN UPDATE SET {', '.join(set_parts)} "
        f"WHEN NOT MATCHED THEN INSERT ({', '.join(insert_columns)}) VALUES ({', '.join(insert_values)})"
    )
    binds.update({name: to_bind_value(table, name, data[name]) for name in names})
    return sql, binds


SEVERITY_ORDER = "CASE SEVERITY {} ELSE 0 END".format(
    " ".join(f"WHEN '{severity}' THEN {rank}" for severity, rank in SEVERITY_RANK.items())
)


class OracleAdapter(DatabaseAdapter):
    """Oracle-backed adapter over an async connection pool."""

    backend = "oracle"

    def __init__(self, user: str, password: str, dsn: str, pool_min: int = 2, pool_max: int = 10,
                 pool_increment: int = 1, owner_open_id: Optional[str] = None):
        self.dsn = dsn
        self.owner_open_id = owner_open_id
        self.pool = None
        self._available = False

        # Availability probe: the driver must expose its async pool factory
        if oracledb is None or not callable(getattr(oracledb, "create_pool_async", None)):
            logger.warning(f"{TAG} Oracle client not available")
            return

        try:
            self.pool = oracledb.create_pool_async(
                user=user,
                password=password,
                dsn=dsn,
                min=pool_min,
                max=pool_max,
                increment=pool_increment
            )
            self._available = True
            logger.info(f"{TAG} Connection pool created successfully ({dsn}, min={pool_min}, max={pool_max})")
        except Exception as e:
            logger.error(f"{TAG} Failed to create connection pool: {e}")
            self.pool = None
            self._available = False

    @classmethod
    def from_settings(cls, settings) -> "OracleAdapter":
        return cls(
            user=settings.ORACLE_USER,
            password=settings.ORACLE_PASSWORD,
            dsn=settings.oracle_dsn,
            pool_min=settings.ORACLE_POOL_MIN,
            pool_max=settings.ORACLE_POOL_MAX,
            pool_increment=settings.ORACLE_POOL_INCREMENT,
            owner_open_id=settings.OWNER_OPEN_ID,
        )

    @property
    def is_available(self) -> bool:
        return self._available

    def _require_available(self):
        if not self._available:
            logger.error(f"{TAG} Oracle not available, operation failed")
            raise DatabaseUnavailableError(self.backend, "Oracle not available")

    async def _query(self, sql: str, binds: Optional[Mapping[str, Any]], action: str) -> List[Dict[str, Any]]:
        """Run one SELECT on a pooled connection; rows keyed by upper-case column name."""
        self._require_available()
        try:
            async with self.pool.acquire() as connection:
                with connection.cursor() as cursor:
                    await cursor.execute(sql, binds or {})
                    columns = [description[0] for description in cursor.description]
                    rows = await cursor.fetchall()
                    return [dict(zip(columns, [await read_lob(value) for value in row])) for row in rows]
        except Exception as e:
            logger.error(f"{TAG} Failed to {action}: {e}")
            raise

    async def _write(self, sql: str, binds: Mapping[str, Any], action: str) -> int:
        """Run one DML statement and commit; returns the affected row count."""
        self._require_available()
        try:
            async with self.pool.acquire() as connection:
                with connection.cursor() as cursor:
                    await cursor.execute(sql, binds)
                    rowcount = cursor.rowcount
                await connection.commit()
                return rowcount
        except Exception as e:
            logger.error(f"{TAG} Failed to {action}: {e}")
            raise

    async def _insert(self, table: EntityTable, data: Mapping[str, Any], action: str) -> int:
        self._require_available()
        sql, binds = build_insert_statement(table, data)
        try:
            async with self.pool.acquire() as connection:
                with connection.cursor() as cursor:
                    new_id = cursor.var(int)
                    await cursor.execute(sql, {**binds, "new_id": new_id})
                    returned = new_id.getvalue()
                await connection.commit()
        except Exception as e:
            logger.error(f"{TAG} Failed to {action}: {e}")
            raise

        # DML RETURNING yields one value per affected row
        if isinstance(returned, list):
            returned = returned[0]
        return int(returned)

    async def _select_one(self, table: EntityTable, where: str, binds: Mapping[str, Any], action: str) -> Optional[Record]:
        sql = f"SELECT * FROM {table.oracle_table} WHERE {where} FETCH FIRST 1 ROWS ONLY"
        rows = await self._query(sql, binds, action)
        return from_row(table, rows[0]) if rows else None

    async def _select_many(self, table: EntityTable, sql: str, binds: Mapping[str, Any], action: str) -> List[Record]:
        rows = await self._query(sql, binds, action)
        return [from_row(table, row) for row in rows]

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def upsert_user(self, user: Mapping[str, Any]) -> None:
        self._require_available()
        values, update_set = build_user_upsert(user, self.owner_open_id)
        sql, binds = build_user_merge(values, update_set)
        await self._write(sql, binds, "upsert user")

    async def get_user_by_open_id(self, open_id: str) -> Optional[Record]:
        return await self._select_one(USER, "OPEN_ID = :open_id", {"open_id": open_id}, "get user by open id")

    async def update_user_role(self, user_id: int, role: str) -> int:
        sql = f"UPDATE {USER.oracle_table} SET ROLE = :role, UPDATED_AT = CURRENT_TIMESTAMP WHERE ID = :id"
        return await self._write(sql, {"role": getattr(role, "value", role), "id": user_id}, "update user role")

    # ------------------------------------------------------------------
    # Exam operations
    # ------------------------------------------------------------------

    async def create_exam(self, exam: Mapping[str, Any]) -> int:
        return await self._insert(EXAM, exam, "create exam")

    async def get_exam_by_id(self, exam_id: int) -> Optional[Record]:
        return await self._select_one(EXAM, "ID = :id", {"id": exam_id}, "get exam by id")

    async def list_exams(self, status: Optional[str] = None) -> List[Record]:
        sql = f"SELECT * FROM {EXAM.oracle_table}"
        binds = {}
        if status:
            sql += " WHERE STATUS = :status"
            binds["status"] = getattr(status, "value", status)
        sql += " ORDER BY CREATED_AT DESC, ID DESC"
        return await self._select_many(EXAM, sql, binds, "list exams")

    # ------------------------------------------------------------------
    # Exam session operations
    # ------------------------------------------------------------------

    async def create_exam_session(self, session: Mapping[str, Any]) -> int:
        return await self._insert(EXAM_SESSION, session, "create exam session")

    async def get_exam_session_by_id(self, session_id: int) -> Optional[Record]:
        return await self._select_one(EXAM_SESSION, "ID = :id", {"id": session_id}, "get exam session by id")

    async def update_exam_session(self, session_id: int, updates: Mapping[str, Any]) -> int:
        self._require_available()
        if not updates:
            return 0
        sql, binds = build_update_statement(EXAM_SESSION, session_id, updates)
        return await self._write(sql, binds, "update exam session")

    async def increment_suspicious_activity(self, session_id: int, amount: int = 1) -> int:
        if amount < 1:
            raise ValueError("Suspicious activity count can only be incremented")
        sql = (
            f"UPDATE {EXAM_SESSION.oracle_table} "
            f"SET SUSPICIOUS_ACTIVITY_COUNT = SUSPICIOUS_ACTIVITY_COUNT + :amount, UPDATED_AT = CURRENT_TIMESTAMP "
            f"WHERE ID = :id"
        )
        return await self._write(sql, {"amount": amount, "id": session_id}, "increment suspicious activity")

    async def list_active_exam_sessions(self) -> List[Record]:
        sql = (
            f"SELECT * FROM {EXAM_SESSION.oracle_table} "
            f"WHERE STATUS = :status AND ENDED_AT IS NULL "
            f"ORDER BY STARTED_AT DESC, ID DESC"
        )
        return await self._select_many(EXAM_SESSION, sql, {"status": SessionStatus.IN_PROGRESS.value},
                                       "list active exam sessions")

    async def list_student_exam_sessions(self, student_id: int, exam_id: Optional[int] = None) -> List[Record]:
        sql = f"SELECT * FROM {EXAM_SESSION.oracle_table} WHERE STUDENT_ID = :student_id"
        binds = {"student_id": student_id}
        if exam_id:
            sql += " AND EXAM_ID = :exam_id"
            binds["exam_id"] = exam_id
        sql += " ORDER BY CREATED_AT DESC, ID DESC"
        return await self._select_many(EXAM_SESSION, sql, binds, "list student exam sessions")

    # ------------------------------------------------------------------
    # Alert operations
    # ------------------------------------------------------------------

    async def create_alert(self, alert: Mapping[str, Any]) -> int:
        return await self._insert(ALERT, alert, "create alert")

    async def get_alert_by_id(self, alert_id: int) -> Optional[Record]:
        return await self._select_one(ALERT, "ID = :id", {"id": alert_id}, "get alert by id")

    async def list_session_alerts(self, session_id: int) -> List[Record]:
        sql = f"SELECT * FROM {ALERT.oracle_table} WHERE SESSION_ID = :session_id ORDER BY CREATED_AT DESC, ID DESC"
        return await self._select_many(ALERT, sql, {"session_id": session_id}, "list session alerts")

    async def acknowledge_alert(self, alert_id: int, acknowledged_by: int, notes: Optional[str] = None) -> int:
        sql = (
            f"UPDATE {ALERT.oracle_table} "
            f"SET ACKNOWLEDGED = 1, ACKNOWLEDGED_BY = :acknowledged_by, ACKNOWLEDGED_AT = CURRENT_TIMESTAMP, "
            f"NOTES = :notes, UPDATED_AT = CURRENT_TIMESTAMP "
            f"WHERE ID = :id AND ACKNOWLEDGED = 0"
        )
        binds = {"acknowledged_by": acknowledged_by, "notes": notes, "id": alert_id}
        return await self._write(sql, binds, "acknowledge alert")

    async def list_unacknowledged_alerts(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        sql = (
            f"SELECT * FROM {ALERT.oracle_table} WHERE ACKNOWLEDGED = 0 "
            f"ORDER BY {SEVERITY_ORDER} DESC, CREATED_AT DESC, ID DESC "
            f"FETCH FIRST :limit ROWS ONLY"
        )
        return await self._select_many(ALERT, sql, {"limit": int(limit)}, "list unacknowledged alerts")

    # ------------------------------------------------------------------
    # Incident operations
    # ------------------------------------------------------------------

    async def create_incident(self, incident: Mapping[str, Any]) -> int:
        return await self._insert(INCIDENT, incident, "create incident")

    async def get_incident_by_id(self, incident_id: int) -> Optional[Record]:
        return await self._select_one(INCIDENT, "ID = :id", {"id": incident_id}, "get incident by id")

    async def list_session_incidents(self, session_id: int) -> List[Record]:
        sql = f"SELECT * FROM {INCIDENT.oracle_table} WHERE SESSION_ID = :session_id ORDER BY CREATED_AT DESC, ID DESC"
        return await self._select_many(INCIDENT, sql, {"session_id": session_id}, "list session incidents")

    async def update_incident(self, incident_id: int, updates: Mapping[str, Any]) -> int:
        self._require_available()
        if not updates:
            return 0
        sql, binds = build_update_statement(INCIDENT, incident_id, updates)
        return await self._write(sql, binds, "update incident")

    async def list_incidents(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        sql = f"SELECT * FROM {INCIDENT.oracle_table}"
        binds = {"limit": int(limit)}
        if status:
            sql += " WHERE STATUS = :status"
            binds["status"] = getattr(status, "value", status)
        sql += " ORDER BY CREATED_AT DESC, ID DESC FETCH FIRST :limit ROWS ONLY"
        return await self._select_many(INCIDENT, sql, binds, "list incidents")

    # ------------------------------------------------------------------
    # Video evidence operations
    # ------------------------------------------------------------------

    async def create_video_evidence(self, evidence: Mapping[str, Any]) -> int:
        return await self._insert(VIDEO_EVIDENCE, prepare_video_evidence(evidence), "create video evidence")

    async def list_session_video_evidence(self, session_id: int) -> List[Record]:
        sql = f"SELECT * FROM {VIDEO_EVIDENCE.oracle_table} WHERE SESSION_ID = :session_id ORDER BY ID"
        return await self._select_many(VIDEO_EVIDENCE, sql, {"session_id": session_id}, "list session video evidence")

    async def list_alert_video_evidence(self, alert_id: int) -> List[Record]:
        sql = f"SELECT * FROM {VIDEO_EVIDENCE.oracle_table} WHERE ALERT_ID = :alert_id ORDER BY ID"
        return await self._select_many(VIDEO_EVIDENCE, sql, {"alert_id": alert_id}, "list alert video evidence")

    # ------------------------------------------------------------------
    # Fraud analytics operations
    # ------------------------------------------------------------------

    async def upsert_fraud_analytics(self, analytics: Mapping[str, Any]) -> None:
        self._require_available()
        sql, binds = build_fraud_analytics_merge(prepare_fraud_analytics(analytics))
        await self._write(sql, binds, "upsert fraud analytics")

    async def list_fraud_analytics_by_period(self, period: str) -> List[Record]:
        sql = f"SELECT * FROM {FRAUD_ANALYTICS.oracle_table} WHERE PERIOD = :period ORDER BY ID"
        return await self._select_many(FRAUD_ANALYTICS, sql, {"period": period}, "list fraud analytics by period")

    async def list_fraud_analytics_by_course(self, course_code: str) -> List[Record]:
        sql = f"SELECT * FROM {FRAUD_ANALYTICS.oracle_table} WHERE COURSE_CODE = :course_code ORDER BY ID"
        return await self._select_many(FRAUD_ANALYTICS, sql, {"course_code": course_code},
                                       "list fraud analytics by course")

    async def list_fraud_analytics_by_department(self, department: str) -> List[Record]:
        sql = f"SELECT * FROM {FRAUD_ANALYTICS.oracle_table} WHERE DEPARTMENT = :department ORDER BY ID"
        return await self._select_many(FRAUD_ANALYTICS, sql, {"department": department},
                                       "list fraud analytics by department")

    # ------------------------------------------------------------------
    # Audit log operations
    # ------------------------------------------------------------------

    async def create_audit_log(self, entry: Mapping[str, Any]) -> int:
        return await self._insert(AUDIT_LOG, entry, "create audit log")

    async def list_audit_logs(self, entity_type: Optional[str] = None, entity_id: Optional[int] = None,
                              limit: int = DEFAULT_AUDIT_LIMIT) -> List[Record]:
        conditions = []
        binds = {"limit": int(limit)}
        if entity_type:
            conditions.append("ENTITY_TYPE = :entity_type")
            binds["entity_type"] = entity_type
        if entity_id is not None:
            conditions.append("ENTITY_ID = :entity_id")
            binds["entity_id"] = entity_id

        sql = f"SELECT * FROM {AUDIT_LOG.oracle_table}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY CREATED_AT DESC, ID DESC FETCH FIRST :limit ROWS ONLY"
        return await self._select_many(AUDIT_LOG, sql, binds, "list audit logs")

    # ------------------------------------------------------------------
    # Schema, diagnostics and lifecycle
    # ------------------------------------------------------------------

    async def verify_schema(self) -> Dict[str, List[str]]:
        rows = await self._query("SELECT TABLE_NAME, COLUMN_NAME FROM USER_TAB_COLUMNS", None, "verify schema")

        live: Dict[str, set] = {}
        for row in rows:
            live.setdefault(row["TABLE_NAME"], set()).add(row["COLUMN_NAME"])

        missing = {}
        for table in ENTITY_TABLES.values():
            present = live.get(table.oracle_table.upper(), set())
            lacking = [column for column in table.oracle_columns.values() if column not in present]
            if lacking:
                missing[table.oracle_table] = lacking

        if missing:
            logger.warning(f"{TAG} Schema is missing columns: {missing}")
        return missing

    async def health_check(self) -> Dict[str, Any]:
        if not self._available:
            return {"status": "unavailable", "backend": self.backend, "error": "Oracle not available"}

        try:
            start_time = time.time()
            await self._query("SELECT 1 AS OK FROM dual", None, "health check")
            response_time = (time.time() - start_time) * 1000

            return {
                "status": "healthy",
                "backend": self.backend,
                "response_time_ms": round(response_time, 2),
                "pool_opened": getattr(self.pool, "opened", None),
                "pool_busy": getattr(self.pool, "busy", None),
            }
        except Exception as e:
            return {"status": "unhealthy", "backend": self.backend, "error": str(e)}

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["dsn"] = self.dsn
        return status

    async def close(self):
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            self._available = False
            logger.info(f"{TAG} Connection pool closed")
