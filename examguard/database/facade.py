"""
Database facade used by the application layer.

``ProctoringDatabase`` wraps one adapter chosen at startup and passes every
call straight through. The module-level functions do the same against the
process-wide default adapter for code that holds no handle. Callers never
know which backend served them, and errors propagate unchanged.
"""

from typing import Any, Dict, List, Mapping, Optional

from examguard.database.base import DatabaseAdapter, Record, DEFAULT_AUDIT_LIMIT, DEFAULT_LIST_LIMIT
from examguard.database.factory import AdapterFactory, get_database_adapter


class ProctoringDatabase:
    """Pass-through facade over an injected adapter."""

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    @classmethod
    async def from_factory(cls, factory: Optional[AdapterFactory] = None) -> "ProctoringDatabase":
        """Select the adapter once and bind the facade to it."""
        factory = factory or AdapterFactory()
        return cls(await factory.get_adapter())

    @property
    def backend(self) -> str:
        return self.adapter.backend

    @property
    def is_available(self) -> bool:
        return self.adapter.is_available

    # Users
    async def upsert_user(self, user: Mapping[str, Any]) -> None:
        return await self.adapter.upsert_user(user)

    async def get_user_by_open_id(self, open_id: str) -> Optional[Record]:
        return await self.adapter.get_user_by_open_id(open_id)

    async def update_user_role(self, user_id: int, role: str) -> int:
        return await self.adapter.update_user_role(user_id, role)

    # Exams
    async def create_exam(self, exam: Mapping[str, Any]) -> int:
        return await self.adapter.create_exam(exam)

    async def get_exam_by_id(self, exam_id: int) -> Optional[Record]:
        return await self.adapter.get_exam_by_id(exam_id)

    async def list_exams(self, status: Optional[str] = None) -> List[Record]:
        return await self.adapter.list_exams(status)

    # Exam sessions
    async def create_exam_session(self, session: Mapping[str, Any]) -> int:
        return await self.adapter.create_exam_session(session)

    async def get_exam_session_by_id(self, session_id: int) -> Optional[Record]:
        return await self.adapter.get_exam_session_by_id(session_id)

    async def update_exam_session(self, session_id: int, updates: Mapping[str, Any]) -> int:
        return await self.adapter.update_exam_session(session_id, updates)

    async def increment_suspicious_activity(self, session_id: int, amount: int = 1) -> int:
        return await self.adapter.increment_suspicious_activity(session_id, amount)

    async def list_active_exam_sessions(self) -> List[Record]:
        return await self.adapter.list_active_exam_sessions()

    async def list_student_exam_sessions(self, student_id: int, exam_id: Optional[int] = None) -> List[Record]:
        return await self.adapter.list_student_exam_sessions(student_id, exam_id)

    # Alerts
    async def create_alert(self, alert: Mapping[str, Any]) -> int:
        return await self.adapter.create_alert(alert)

    async def get_alert_by_id(self, alert_id: int) -> Optional[Record]:
        return await self.adapter.get_alert_by_id(alert_id)

    async def list_session_alerts(self, session_id: int) -> List[Record]:
        return await self.adapter.list_session_alerts(session_id)

    async def acknowledge_alert(self, alert_id: int, acknowledged_by: int, notes: Optional[str] = None) -> int:
        return await self.adapter.acknowledge_alert(alert_id, acknowledged_by, notes)

    async def list_unacknowledged_alerts(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        return await self.adapter.list_unacknowledged_alerts(limit)

    # Incidents
    async def create_incident(self, incident: Mapping[str, Any]) -> int:
        return await self.adapter.create_incident(incident)

    async def get_incident_by_id(self, incident_id: int) -> Optional[Record]:
        return await self.adapter.get_incident_by_id(incident_id)

    async def list_session_incidents(self, session_id: int) -> List[Record]:
        return await self.adapter.list_session_incidents(session_id)

    async def update_incident(self, incident_id: int, updates: Mapping[str, Any]) -> int:
        return await self.adapter.update_incident(incident_id, updates)

    async def list_incidents(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        return await self.adapter.list_incidents(status, limit)

    # Video evidence
    async def create_video_evidence(self, evidence: Mapping[str, Any]) -> int:
        return await self.adapter.create_video_evidence(evidence)

    async def list_session_video_evidence(self, session_id: int) -> List[Record]:
        return await self.adapter.list_session_video_evidence(session_id)

    async def list_alert_video_evidence(self, alert_id: int) -> List[Record]:
        return await self.adapter.list_alert_video_evidence(alert_id)

    # Fraud analytics
    async def upsert_fraud_analytics(self, analytics: Mapping[str, Any]) -> None:
        return await self.adapter.upsert_fraud_analytics(analytics)

    async def list_fraud_analytics_by_period(self, period: str) -> List[Record]:
        return await self.adapter.list_fraud_analytics_by_period(period)

    async def list_fraud_analytics_by_course(self, course_code: str) -> List[Record]:
        return await self.adapter.list_fraud_analytics_by_course(course_code)

    async def list_fraud_analytics_by_department(self, department: str) -> List[Record]:
        return await self.adapter.list_fraud_analytics_by_department(department)

    # Audit log
    async def create_audit_log(self, entry: Mapping[str, Any]) -> int:
        return await self.adapter.create_audit_log(entry)

    async def list_audit_logs(self, entity_type: Optional[str] = None, entity_id: Optional[int] = None,
                              limit: int = DEFAULT_AUDIT_LIMIT) -> List[Record]:
        return await self.adapter.list_audit_logs(entity_type, entity_id, limit)

    async def health_check(self) -> Dict[str, Any]:
        return await self.adapter.health_check()

    async def verify_schema(self) -> Dict[str, List[str]]:
        return await self.adapter.verify_schema()

    def get_status(self) -> Dict[str, Any]:
        return self.adapter.get_status()

    async def close(self):
        await self.adapter.close()


async def get_db() -> ProctoringDatabase:
    """Facade bound to the process-wide default adapter."""
    return ProctoringDatabase(await get_database_adapter())


# ===== USER OPERATIONS =====

async def upsert_user(user: Mapping[str, Any]) -> None:
    return await (await get_db()).upsert_user(user)


async def get_user_by_open_id(open_id: str) -> Optional[Record]:
    return await (await get_db()).get_user_by_open_id(open_id)


async def update_user_role(user_id: int, role: str) -> int:
    return await (await get_db()).update_user_role(user_id, role)


# ===== EXAM OPERATIONS =====

async def create_exam(exam: Mapping[str, Any]) -> int:
    return await (await get_db()).create_exam(exam)


async def get_exam_by_id(exam_id: int) -> Optional[Record]:
    return await (await get_db()).get_exam_by_id(exam_id)


async def list_exams(status: Optional[str] = None) -> List[Record]:
    return await (await get_db()).list_exams(status)


# ===== EXAM SESSION OPERATIONS =====

async def create_exam_session(session: Mapping[str, Any]) -> int:
    return await (await get_db()).create_exam_session(session)


async def get_exam_session_by_id(session_id: int) -> Optional[Record]:
    return await (await get_db()).get_exam_session_by_id(session_id)


async def update_exam_session(session_id: int, updates: Mapping[str, Any]) -> int:
    return await (await get_db()).update_exam_session(session_id, updates)


async def increment_suspicious_activity(session_id: int, amount: int = 1) -> int:
    return await (await get_db()).increment_suspicious_activity(session_id, amount)


async def list_active_exam_sessions() -> List[Record]:
    return await (await get_db()).list_active_exam_sessions()


async def list_student_exam_sessions(student_id: int, exam_id: Optional[int] = None) -> List[Record]:
    return await (await get_db()).list_student_exam_sessions(student_id, exam_id)


# ===== ALERT OPERATIONS =====

async def create_alert(alert: Mapping[str, Any]) -> int:
    return await (await get_db()).create_alert(alert)


async def get_alert_by_id(alert_id: int) -> Optional[Record]:
    return await (await get_db()).get_alert_by_id(alert_id)


async def list_session_alerts(session_id: int) -> List[Record]:
    return await (await get_db()).list_session_alerts(session_id)


async def acknowledge_alert(alert_id: int, acknowledged_by: int, notes: Optional[str] = None) -> int:
    return await (await get_db()).acknowledge_alert(alert_id, acknowledged_by, notes)


async def list_unacknowledged_alerts(limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
    return await (await get_db()).list_unacknowledged_alerts(limit)


# ===== INCIDENT OPERATIONS =====

async def create_incident(incident: Mapping[str, Any]) -> int:
    return await (await get_db()).create_incident(incident)


async def get_incident_by_id(incident_id: int) -> Optional[Record]:
    return await (await get_db()).get_incident_by_id(incident_id)


async def list_session_incidents(session_id: int) -> List[Record]:
    return await (await get_db()).list_session_incidents(session_id)


async def update_incident(incident_id: int, updates: Mapping[str, Any]) -> int:
    return await (await get_db()).update_incident(incident_id, updates)


async def list_incidents(status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
    return await (await get_db()).list_incidents(status, limit)


# ===== VIDEO EVIDENCE OPERATIONS =====

async def create_video_evidence(evidence: Mapping[str, Any]) -> int:
    return await (await get_db()).create_video_evidence(evidence)


async def list_session_video_evidence(session_id: int) -> List[Record]:
    return await (await get_db()).list_session_video_evidence(session_id)


async def list_alert_video_evidence(alert_id: int) -> List[Record]:
    return await (await get_db()).list_alert_video_evidence(alert_id)


# ===== FRAUD ANALYTICS OPERATIONS =====

async def upsert_fraud_analytics(analytics: Mapping[str, Any]) -> None:
    return await (await get_db()).upsert_fraud_analytics(analytics)


async def list_fraud_analytics_by_period(period: str) -> List[Record]:
    return await (await get_db()).list_fraud_analytics_by_period(period)


async def list_fraud_analytics_by_course(course_code: str) -> List[Record]:
    return await (await get_db()).list_fraud_analytics_by_course(course_code)


async def list_fraud_analytics_by_department(department: str) -> List[Record]:
    return await (await get_db()).list_fraud_analytics_by_department(department)


# ===== AUDIT LOG OPERATIONS =====

async def create_audit_log(entry: Mapping[str, Any]) -> int:
    return await (await get_db()).create_audit_log(entry)


async def list_audit_logs(entity_type: Optional[str] = None, entity_id: Optional[int] = None,
                          limit: int = DEFAULT_AUDIT_LIMIT) -> List[Record]:
    return await (await get_db()).list_audit_logs(entity_type, entity_id, limit)
