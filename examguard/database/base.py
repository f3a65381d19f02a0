"""
Persistence contract shared by every database adapter.

Records cross this boundary as plain dictionaries keyed by the field names
declared in ``examguard.database.fields``. "get" methods return ``None`` for
a missing row, "create" methods return the new id, "update" methods return
the number of rows touched, and every write either completes or raises.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

Record = Dict[str, Any]

DEFAULT_LIST_LIMIT = 50
DEFAULT_AUDIT_LIMIT = 100


class DatabaseAdapter(ABC):
    """Abstract persistence backend."""

    backend: str = "abstract"

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend can serve calls at all."""

    # User operations
    @abstractmethod
    async def upsert_user(self, user: Mapping[str, Any]) -> None:
        """Insert the user or update it in place, keyed by ``open_id``."""

    @abstractmethod
    async def get_user_by_open_id(self, open_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def update_user_role(self, user_id: int, role: str) -> int:
        ...

    # Exam operations
    @abstractmethod
    async def create_exam(self, exam: Mapping[str, Any]) -> int:
        ...

    @abstractmethod
    async def get_exam_by_id(self, exam_id: int) -> Optional[Record]:
        ...

    @abstractmethod
    async def list_exams(self, status: Optional[str] = None) -> List[Record]:
        ...

    # Exam session operations
    @abstractmethod
    async def create_exam_session(self, session: Mapping[str, Any]) -> int:
        ...

    @abstractmethod
    async def get_exam_session_by_id(self, session_id: int) -> Optional[Record]:
        ...

    @abstractmethod
    async def update_exam_session(self, session_id: int, updates: Mapping[str, Any]) -> int:
        """Apply a partial update; keys must be declared session fields."""

    @abstractmethod
    async def increment_suspicious_activity(self, session_id: int, amount: int = 1) -> int:
        """Add ``amount`` to the session's suspicious activity counter."""

    @abstractmethod
    async def list_active_exam_sessions(self) -> List[Record]:
        """Sessions in progress that have not ended, newest start first."""

    @abstractmethod
    async def list_student_exam_sessions(self, student_id: int, exam_id: Optional[int] = None) -> List[Record]:
        ...

    # Alert operations
    @abstractmethod
    async def create_alert(self, alert: Mapping[str, Any]) -> int:
        ...

    @abstractmethod
    async def get_alert_by_id(self, alert_id: int) -> Optional[Record]:
        ...

    @abstractmethod
    async def list_session_alerts(self, session_id: int) -> List[Record]:
        ...

    @abstractmethod
    async def acknowledge_alert(self, alert_id: int, acknowledged_by: int, notes: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def list_unacknowledged_alerts(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        """Unacknowledged alerts, most severe first, then newest first."""

    # Incident operations
    @abstractmethod
    async def create_incident(self, incident: Mapping[str, Any]) -> int:
        ...

    @abstractmethod
    async def get_incident_by_id(self, incident_id: int) -> Optional[Record]:
        ...

    @abstractmethod
    async def list_session_incidents(self, session_id: int) -> List[Record]:
        ...

    @abstractmethod
    async def update_incident(self, incident_id: int, updates: Mapping[str, Any]) -> int:
        ...

    @abstractmethod
    async def list_incidents(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[Record]:
        ...

    # Video evidence operations
    @abstractmethod
    async def create_video_evidence(self, evidence: Mapping[str, Any]) -> int:
        ...

    @abstractmethod
    async def list_session_video_evidence(self, session_id: int) -> List[Record]:
        ...

    @abstractmethod
    async def list_alert_video_evidence(self, alert_id: int) -> List[Record]:
        ...

    # Fraud analytics operations
    @abstractmethod
    async def upsert_fraud_analytics(self, analytics: Mapping[str, Any]) -> None:
        """Insert or update the row matching the analytics key."""

    @abstractmethod
    async def list_fraud_analytics_by_period(self, period: str) -> List[Record]:
        ...

    @abstractmethod
    async def list_fraud_analytics_by_course(self, course_code: str) -> List[Record]:
        ...

    @abstractmethod
    async def list_fraud_analytics_by_department(self, department: str) -> List[Record]:
        ...

    # Audit log operations
    @abstractmethod
    async def create_audit_log(self, entry: Mapping[str, Any]) -> int:
        ...

    @abstractmethod
    async def list_audit_logs(self, entity_type: Optional[str] = None, entity_id: Optional[int] = None,
                              limit: int = DEFAULT_AUDIT_LIMIT) -> List[Record]:
        ...

    # Diagnostics and lifecycle
    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def verify_schema(self) -> Dict[str, List[str]]:
        """
        Compare the live schema with the declared field tables.

        Returns:
            Mapping of table name to the expected columns it lacks; empty
            when the schema matches.
        """

    @abstractmethod
    async def close(self):
        ...

    def get_status(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "available": self.is_available,
        }
