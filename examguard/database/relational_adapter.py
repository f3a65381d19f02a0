"""
Relational Database Adapter for the Exam Proctoring System

This module implements the persistence contract on top of SQLAlchemy's
asyncio extension. Every public method is a single-table statement built
with the schema-mapped query builder; nothing spans more than one write.

When no DATABASE_URL is configured the adapter still constructs: reads log
a warning and return empty results, writes raise DatabaseUnavailableError.
"""

from sqlalchemy import case, func, inspect, select, text, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from examguard.database.base import DatabaseAdapter, Record, DEFAULT_AUDIT_LIMIT, DEFAULT_LIST_LIMIT
from examguard.database.exceptions import DatabaseError, DatabaseUnavailableError
from examguard.database.fields import ALERT, AUDIT_LOG, EXAM, EXAM_SESSION, INCIDENT
from examguard.database.models import (
    Alert, AuditLog, Base, Exam, ExamSession, FraudAnalytics, Incident, User,
    VideoEvidence, SessionStatus, SEVERITY_RANK,
)
from examguard.database.records import (
    build_user_upsert, fraud_analytics_key, prepare_fraud_analytics,
    prepare_video_evidence, utcnow,
)

logger = logging.getLogger(__name__)

TAG = "[Relational]"

# INSERT constructs that carry an upsert clause, per dialect
UPSERT_INSERTS = {
    "mysql": mysql.insert,
    "mariadb": mysql.insert,
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _column_values(model, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Re-key a field-name payload by the model's physical column keys."""
    columns = inspect(model).columns
    return {columns[name].key: value for name, value in data.items()}


class RelationalAdapter(DatabaseAdapter):
    """
    SQLAlchemy-backed adapter.

    Features:
    - Dialect-aware single-statement user upsert (MySQL, SQLite, PostgreSQL)
    - Connection pooling tuned per database type
    - Read-silent / write-loud behaviour when unconfigured
    """

    backend = "relational"

    def __init__(self, database_url: Optional[str] = None, owner_open_id: Optional[str] = None,
                 echo: bool = False, engine: Optional[AsyncEngine] = None):
        self.database_url = database_url
        self.owner_open_id = owner_open_id
        self.engine = engine
        self.session_maker = None

        if self.engine is not None:
            self._check_dialect(self.engine.dialect.name)
        elif database_url:
            self._check_dialect(make_url(database_url).get_backend_name())
            self.engine = self._create_engine(database_url, echo)

        if self.engine is not None:
            self.session_maker = async_sessionmaker(self.engine, expire_on_commit=False)
            logger.info(f"{TAG} Using database: {self._get_safe_url()}")
        else:
            logger.warning(f"{TAG} DATABASE_URL is not set; reads return empty results and writes will fail")

    def _create_engine(self, database_url: str, echo: bool) -> AsyncEngine:
        """Create the async engine with pool settings for the database type."""
        if database_url.startswith('sqlite'):
            return create_async_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo
            )

        connect_args = {}
        if database_url.startswith('mysql'):
            connect_args["charset"] = "utf8mb4"

        return create_async_engine(
            database_url,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=echo,
            connect_args=connect_args
        )

    def _get_safe_url(self) -> str:
        """Database URL with the password masked for logging."""
        if not self.engine:
            return "not configured"
        return self.engine.url.render_as_string(hide_password=True)

    @property
    def is_available(self) -> bool:
        return self.session_maker is not None

    def _require_database(self, action: str):
        if self.session_maker is None:
            logger.error(f"{TAG} Cannot {action}: database not available")
            raise DatabaseUnavailableError(self.backend)

    async def _fetch_all(self, statement, action: str) -> List[Record]:
        if self.session_maker is None:
            logger.warning(f"{TAG} Cannot {action}: database not available")
            return []

        try:
            async with self.session_maker() as session:
                result = await session.execute(statement)
                return [row.to_dict() for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"{TAG} Failed to {action}: {e}")
            raise

    async def _fetch_one(self, statement, action: str) -> Optional[Record]:
        if self.session_maker is None:
            logger.warning(f"{TAG} Cannot {action}: database not available")
            return None

        try:
            async with self.session_maker() as session:
                result = await session.execute(statement.limit(1))
                row = result.scalars().first()
                return row.to_dict() if row is not None else None
        except SQLAlchemyError as e:
            logger.error(f"{TAG} Failed to {action}: {e}")
            raise

    async def _insert(self, model, data: Mapping[str, Any], action: str) -> int:
        self._require_database(action)
        data = {key: value for key, value in data.items() if key != "id"}

        try:
            async with self.session_maker() as session:
                row = model(**data)
                session.add(row)
                await session.commit()
                return row.id
        except SQLAlchemyError as e:
            logger.error(f"{TAG} Failed to {action}: {e}")
            raise

    async def _execute_write(self, statement, action: str) -> int:
        self._require_database(action)

        try:
            async with self.session_maker() as session:
                result = await session.execute(statement)
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"{TAG} Failed to {action}: {e}")
            raise

    def _update_by_id(self, model, row_id: int, data: Mapping[str, Any]):
        table = model.__table__
        return update(table).where(table.c.id == row_id).values(_column_values(model, data))

    @staticmethod
    def _check_dialect(name: str):
        if name not in UPSERT_INSERTS:
            supported = ", ".join(sorted(UPSERT_INSERTS))
            raise DatabaseError(f"Unsupported database '{name}'; expected one of: {supported}")

    def _dialect_insert(self):
        """Pick the INSERT construct that supports this dialect's upsert clause."""
        return UPSERT_INSERTS[self.engine.dialect.name]

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def upsert_user(self, user: Mapping[str, Any]) -> None:
        values, update_set = build_user_upsert(user, self.owner_open_id)
        self._require_database("upsert user")

        insert_values = _column_values(User, values)
        update_values = _column_values(User, update_set)
        update_values["updatedAt"] = func.now()
        table = User.__table__

        statement = self._dialect_insert()(table).values(insert_values)
        if self.engine.dialect.name in ("mysql", "mariadb"):
            statement = statement.on_duplicate_key_update(update_values)
        else:
            statement = statement.on_conflict_do_update(
                index_elements=[table.c.openId],
                set_=update_values
            )

        await self._execute_write(statement, "upsert user")

    async def get_user_by_open_id(self, open_id: str) -> Optional[Record]:
        return await self._fetch_one(select(User).where(User.open_id == open_id), "get user")

    async def update_user_role(self, user_id: int, role: str) -> int:
        role = getattr(role, "value", role)
        return await self._execute_write(self._update_by_id(User, user_id, {"role": role}), "update user role")

    # ------------------------------------------------------------------
    # Exam operations
    # ------------------------------------------------------------------

    async def create_exam(self, exam: Mapping[str, Any]) -> int:
        EXAM.check_fields(exam)
        return await self._insert(Exam, exam, "create exam")

    async def get_exam_by_id(self, exam_id: int) -> Optional[Record]:
        return await self._fetch_one(select(Exam).where(Exam.id == exam_id), "get exam")

    async def list_exams(self, status: Optional[str] = None) -> List[Record]:
        statement = select(Exam)
        if status:
            statement = statement.where(Exam.status == status)
        statement = statement.order_by(Exam.created_at.desc(), Exam.id.desc())
        return await self._fetch_all(statement, "list exams")

    # ------------------------------------------------------------------
    # Exam session operations
    # ------------------------------------------------------------------

    async def create_exam_session(self, session: Mapping[str, Any]) -> int:
        EXAM_SESSION.check_fields(session)
        return await self._insert(ExamSession, session, "create exam session")

    async def get_exam_session_by_id(self, session_id: int) -> Optional[Record]:
        return await self._fetch_one(select(ExamSession).where(ExamSession.id == session_id), "get exam session")

    async def update_exam_session(self, session_id: int, updates: Mapping[str, Any]) -> int:
        EXAM_SESSION.check_update(updates)
        if not updates:
            return 0
        return await self._execute_write(self._update_by_id(ExamSession, session_id, updates), "update exam session")

    async def increment_suspicious_activity(self, session_id: int, amount: int = 1) -> int:
        if amount < 1:
            raise ValueError("Suspicious activity count can only be incremented")

        table = ExamSession.__table__
        counter = table.c.suspiciousActivityCount
        statement = update(table).where(table.c.id == session_id).values({counter.key: counter + amount})
        return await self._execute_write(statement, "increment suspicious activity")

    async def list_active_exam_sessions(self) -> List[Record]:
        statement = (
            select(ExamSession)
            .where(ExamSession.status == SessionStatus.IN_PROGRESS.value, ExamSession.ended_at.is_(None))
            .order_by(ExamSession.started_at.desc(), ExamSession.id.desc())
        )
        return await self._fetch_all(statement, "list active exam sessions")

    async def list_student_exam_sessions(self, student_id: int, exam_id: Optional[int] = None) -> List[Record]:
        statement = select(ExamSession).where(ExamSession.student_id == student_id)
        if exam_id:
            statement = statement.where(ExamSession.exam_id == exam_id)
        statement = statement.order_by(ExamSession.created_at.desc(), ExamSession.id.desc())
        return await self._fetch_all(statement, "list student exam sessions")

    # ------------------------------------------------------------------
    # Alert operations
    # ------------------------------------------------------------------

    async def create_alert(self, alert: Mapping[str, Any]) -> int:
        ALERT.check_fields(alert)
        return await self._insert(Alert, alert, "create alert")

    async def get_alert_by_id(self, alert_id: int) -> Optional[Record]:
        return await self._fetch_one(select(Alert).where(Alert.id == alert_id), "get alert")

    async def list_session_alerts(self, session_id: int) -> List[Record]:
        statement = (
            select(Alert)
            .where(Alert.session_id == session_id)
            .order_by(Alert.created_at.desc(), Alert.id.desc())
        )
        return await self._fetch_all(statement, "list session alerts")

    async def acknowledge_alert(self, alert_id: int, acknowledged_by: int, notes: Optional[str] = None) -> int:
        table = Alert.__table__
        statement = (
            update(table)
            .where(table.c.id == alert_id, table.c.acknowledged.is_(False))
            .values(_column_values(Alert, {
                "acknowledged": True,
                "acknowledged_by": acknowledged_by,
                "acknowledged_at": utcnow(),
                "notes": notes,
            }))
        )
        return await self._execute_write(statement, "acknowledge alert")

    async def list_unacknowledged_alerts(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        severity_rank = case(SEVERITY_RANK, value=Alert.severity, else_=0)
        statement = (
            select(Alert)
            .where(Alert.acknowledged.is_(False))
            .order_by(severity_rank.desc(), Alert.created_at.desc(), Alert.id.desc())
            .limit(limit)
        )
        return await self._fetch_all(statement, "list unacknowledged alerts")

    # ------------------------------------------------------------------
    # Incident operations
    # ------------------------------------------------------------------

    async def create_incident(self, incident: Mapping[str, Any]) -> int:
        INCIDENT.check_fields(incident)
        return await self._insert(Incident, incident, "create incident")

    async def get_incident_by_id(self, incident_id: int) -> Optional[Record]:
        return await self._fetch_one(select(Incident).where(Incident.id == incident_id), "get incident")

    async def list_session_incidents(self, session_id: int) -> List[Record]:
        statement = (
            select(Incident)
            .where(Incident.session_id == session_id)
            .order_by(Incident.created_at.desc(), Incident.id.desc())
        )
        return await self._fetch_all(statement, "list session incidents")

    async def update_incident(self, incident_id: int, updates: Mapping[str, Any]) -> int:
        INCIDENT.check_update(updates)
        if not updates:
            return 0
        return await self._execute_write(self._update_by_id(Incident, incident_id, updates), "update incident")

    async def list_incidents(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        statement = select(Incident)
        if status:
            statement = statement.where(Incident.status == status)
        statement = statement.order_by(Incident.created_at.desc(), Incident.id.desc()).limit(limit)
        return await self._fetch_all(statement, "list incidents")

    # ------------------------------------------------------------------
    # Video evidence operations
    # ------------------------------------------------------------------

    async def create_video_evidence(self, evidence: Mapping[str, Any]) -> int:
        return await self._insert(VideoEvidence, prepare_video_evidence(evidence), "create video evidence")

    async def list_session_video_evidence(self, session_id: int) -> List[Record]:
        statement = select(VideoEvidence).where(VideoEvidence.session_id == session_id).order_by(VideoEvidence.id)
        return await self._fetch_all(statement, "list session video evidence")

    async def list_alert_video_evidence(self, alert_id: int) -> List[Record]:
        statement = select(VideoEvidence).where(VideoEvidence.alert_id == alert_id).order_by(VideoEvidence.id)
        return await self._fetch_all(statement, "list alert video evidence")

    # ------------------------------------------------------------------
    # Fraud analytics operations
    # ------------------------------------------------------------------

    async def upsert_fraud_analytics(self, analytics: Mapping[str, Any]) -> None:
        data = prepare_fraud_analytics(analytics)
        data.pop("id", None)
        self._require_database("upsert fraud analytics")

        conditions = []
        for name, value in fraud_analytics_key(data).items():
            column = getattr(FraudAnalytics, name)
            conditions.append(column.is_(None) if value is None else column == value)

        try:
            async with self.session_maker() as session:
                existing_id = (await session.execute(
                    select(FraudAnalytics.id).where(*conditions).limit(1)
                )).scalar_one_or_none()

                if existing_id is not None:
                    await session.execute(self._update_by_id(FraudAnalytics, existing_id, data))
                else:
                    session.add(FraudAnalytics(**data))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"{TAG} Failed to upsert fraud analytics: {e}")
            raise

    async def list_fraud_analytics_by_period(self, period: str) -> List[Record]:
        statement = select(FraudAnalytics).where(FraudAnalytics.period == period).order_by(FraudAnalytics.id)
        return await self._fetch_all(statement, "list fraud analytics by period")

    async def list_fraud_analytics_by_course(self, course_code: str) -> List[Record]:
        statement = select(FraudAnalytics).where(FraudAnalytics.course_code == course_code).order_by(FraudAnalytics.id)
        return await self._fetch_all(statement, "list fraud analytics by course")

    async def list_fraud_analytics_by_department(self, department: str) -> List[Record]:
        statement = select(FraudAnalytics).where(FraudAnalytics.department == department).order_by(FraudAnalytics.id)
        return await self._fetch_all(statement, "list fraud analytics by department")

    # ------------------------------------------------------------------
    # Audit log operations
    # ------------------------------------------------------------------

    async def create_audit_log(self, entry: Mapping[str, Any]) -> int:
        AUDIT_LOG.check_fields(entry)
        return await self._insert(AuditLog, entry, "create audit log")

    async def list_audit_logs(self, entity_type: Optional[str] = None, entity_id: Optional[int] = None,
                              limit: int = DEFAULT_AUDIT_LIMIT) -> List[Record]:
        statement = select(AuditLog)
        if entity_type:
            statement = statement.where(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            statement = statement.where(AuditLog.entity_id == entity_id)
        statement = statement.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        return await self._fetch_all(statement, "list audit logs")

    # ------------------------------------------------------------------
    # Schema, diagnostics and lifecycle
    # ------------------------------------------------------------------

    async def create_tables(self):
        """Create every table declared on the models."""
        self._require_database("create tables")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"{TAG} Database tables created/verified")

    async def verify_schema(self) -> Dict[str, List[str]]:
        self._require_database("verify schema")

        def _live_columns(sync_conn) -> Dict[str, set]:
            inspector = inspect(sync_conn)
            return {
                table: {column["name"] for column in inspector.get_columns(table)}
                for table in inspector.get_table_names()
            }

        async with self.engine.connect() as conn:
            live = await conn.run_sync(_live_columns)

        missing = {}
        for table in Base.metadata.sorted_tables:
            expected = [column.name for column in table.columns]
            present = live.get(table.name, set())
            lacking = [name for name in expected if name not in present]
            if lacking:
                missing[table.name] = lacking

        if missing:
            logger.warning(f"{TAG} Schema is missing columns: {missing}")
        return missing

    async def health_check(self) -> Dict[str, Any]:
        if self.engine is None:
            return {"status": "unavailable", "backend": self.backend, "error": "DATABASE_URL is not set"}

        try:
            start_time = time.time()
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            response_time = (time.time() - start_time) * 1000

            return {
                "status": "healthy",
                "backend": self.backend,
                "response_time_ms": round(response_time, 2),
                "database_type": self.engine.dialect.name,
            }
        except SQLAlchemyError as e:
            logger.error(f"{TAG} Health check failed: {e}")
            return {
                "status": "unhealthy",
                "backend": self.backend,
                "error": str(e),
                "database_type": self.engine.dialect.name,
            }

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["database_url"] = self._get_safe_url()
        return status

    async def close(self):
        if self.engine:
            await self.engine.dispose()
            logger.info(f"{TAG} Database connections closed")
