"""
Database Models for the Exam Proctoring System

This module declares the relational schema: users, exams, exam sessions,
AI alerts, incidents, video evidence, fraud analytics and the audit log.
Physical column names are camelCase; Python attribute names are snake_case
and double as the field names every adapter returns.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Numeric, JSON, inspect
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from typing import Dict, Any
from enum import Enum

Base = declarative_base()


class UserRole(str, Enum):
    """User role enumeration."""
    USER = "user"
    ADMIN = "admin"
    PROCTOR = "proctor"
    STUDENT = "student"


class ExamStatus(str, Enum):
    """Exam status enumeration. COMPLETED and CANCELLED are terminal."""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DetectionSensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionStatus(str, Enum):
    """Exam session status enumeration."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    PAUSED = "paused"
    ABANDONED = "abandoned"
    FLAGGED = "flagged"


class AlertType(str, Enum):
    PHONE_DETECTED = "phone_detected"
    MULTIPLE_FACES = "multiple_faces"
    OFF_SCREEN_GAZE = "off_screen_gaze"
    SUSPICIOUS_AUDIO = "suspicious_audio"
    UNAUTHORIZED_PERSON = "unauthorized_person"
    UNUSUAL_BEHAVIOR = "unusual_behavior"
    NETWORK_ANOMALY = "network_anomaly"
    OTHER = "other"


class AlertSeverity(str, Enum):
    """Alert severity levels, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Sort key for "most severe first" listings
SEVERITY_RANK = {
    AlertSeverity.LOW.value: 1,
    AlertSeverity.MEDIUM.value: 2,
    AlertSeverity.HIGH.value: 3,
    AlertSeverity.CRITICAL.value: 4,
}


class IncidentType(str, Enum):
    CHEATING_CONFIRMED = "cheating_confirmed"
    UNAUTHORIZED_ASSISTANCE = "unauthorized_assistance"
    TECHNICAL_VIOLATION = "technical_violation"
    FALSE_POSITIVE = "false_positive"
    OTHER = "other"


class IncidentSeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class IncidentStatus(str, Enum):
    """Incident status enumeration."""
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    APPEALED = "appealed"
    DISMISSED = "dismissed"


class RecordMixin:
    """Plain-dict conversion shared by every model."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert the row to a dictionary keyed by field name."""
        return {
            attr.key: getattr(self, attr.key)
            for attr in inspect(self).mapper.column_attrs
        }


class User(RecordMixin, Base):
    """Core user table backing the auth flow."""
    __tablename__ = "users"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    open_id = Column("openId", String(64), unique=True, nullable=False)
    name = Column("name", Text, nullable=True)
    email = Column("email", String(320), unique=True, nullable=True)
    login_method = Column("loginMethod", String(64), nullable=True)
    role = Column("role", String(16), default=UserRole.USER.value, nullable=False)
    department = Column("department", String(255), nullable=True)
    student_id = Column("studentId", String(64), unique=True, nullable=True)
    profile_photo_url = Column("profilePhotoUrl", Text, nullable=True)
    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column("updatedAt", DateTime(timezone=True), server_default=func.now(),
                        onupdate=func.now(), nullable=False)
    last_signed_in = Column("lastSignedIn", DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(open_id='{self.open_id}', role='{self.role}')>"


class Exam(RecordMixin, Base):
    """Exam configuration model."""
    __tablename__ = "exams"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    title = Column("title", String(255), nullable=False)
    course_code = Column("courseCode", String(64), nullable=False, index=True)
    department = Column("department", String(255), nullable=False)
    description = Column("description", Text, nullable=True)
    duration = Column("duration", Integer, nullable=False)  # minutes
    total_questions = Column("totalQuestions", Integer, nullable=True)
    max_score = Column("maxScore", Numeric(10, 2), nullable=True)
    passing_score = Column("passingScore", Numeric(10, 2), nullable=True)

    # Timing
    scheduled_at = Column("scheduledAt", DateTime(timezone=True), nullable=False)
    end_at = Column("endAt", DateTime(timezone=True), nullable=True)

    status = Column("status", String(16), default=ExamStatus.DRAFT.value, nullable=False, index=True)
    detection_sensitivity = Column("detectionSensitivity", String(16),
                                   default=DetectionSensitivity.MEDIUM.value, nullable=False)
    requires_biometric = Column("requiresBiometric", Boolean, default=True, nullable=False)
    allowed_devices = Column("allowedDevices", JSON, nullable=True)
    created_by = Column("createdBy", Integer, nullable=False)

    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column("updatedAt", DateTime(timezone=True), server_default=func.now(),
                        onupdate=func.now(), nullable=False)
    deleted_at = Column("deletedAt", DateTime(timezone=True), nullable=True)  # soft delete

    def __repr__(self):
        return f"<Exam(course='{self.course_code}', title='{self.title}')>"


class ExamSession(RecordMixin, Base):
    """Individual student exam attempt."""
    __tablename__ = "examSessions"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    exam_id = Column("examId", Integer, nullable=False, index=True)
    student_id = Column("studentId", Integer, nullable=False, index=True)

    # Timing
    started_at = Column("startedAt", DateTime(timezone=True), nullable=False)
    ended_at = Column("endedAt", DateTime(timezone=True), nullable=True)
    submitted_at = Column("submittedAt", DateTime(timezone=True), nullable=True)

    status = Column("status", String(16), default=SessionStatus.NOT_STARTED.value, nullable=False, index=True)

    # Authentication
    biometric_verified = Column("biometricVerified", Boolean, default=False, nullable=False)
    biometric_verified_at = Column("biometricVerifiedAt", DateTime(timezone=True), nullable=True)

    # Results
    score = Column("score", Numeric(10, 2), nullable=True)
    percentage_score = Column("percentageScore", Numeric(5, 2), nullable=True)
    passed = Column("passed", Boolean, nullable=True)

    # Recording and environment
    video_recording_url = Column("videoRecordingUrl", Text, nullable=True)
    video_metadata = Column("videoMetadata", JSON, nullable=True)
    ip_address = Column("ipAddress", String(45), nullable=True)
    user_agent = Column("userAgent", Text, nullable=True)

    # Monitoring; only ever incremented
    suspicious_activity_count = Column("suspiciousActivityCount", Integer, default=0, nullable=False)

    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column("updatedAt", DateTime(timezone=True), server_default=func.now(),
                        onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<ExamSession(id={self.id}, status='{self.status}')>"


class Alert(RecordMixin, Base):
    """AI-generated alert for suspicious activity."""
    __tablename__ = "alerts"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    session_id = Column("sessionId", Integer, nullable=False, index=True)

    alert_type = Column("alertType", String(32), nullable=False)
    severity = Column("severity", String(16), default=AlertSeverity.MEDIUM.value, nullable=False)
    confidence_score = Column("confidenceScore", Numeric(5, 2), nullable=False)  # 0-100
    description = Column("description", Text, nullable=True)

    # Evidence
    video_clip_url = Column("videoClipUrl", Text, nullable=True)
    video_clip_start_time = Column("videoClipStartTime", Integer, nullable=True)  # seconds
    video_clip_duration = Column("videoClipDuration", Integer, nullable=True)  # seconds
    alert_metadata = Column("metadata", JSON, nullable=True)

    # Review
    acknowledged = Column("acknowledged", Boolean, default=False, nullable=False, index=True)
    acknowledged_by = Column("acknowledgedBy", Integer, nullable=True)
    acknowledged_at = Column("acknowledgedAt", DateTime(timezone=True), nullable=True)
    notes = Column("notes", Text, nullable=True)

    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column("updatedAt", DateTime(timezone=True), server_default=func.now(),
                        onupdate=func.now(), nullable=False)
    deleted_at = Column("deletedAt", DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Alert(type='{self.alert_type}', severity='{self.severity}')>"


class Incident(RecordMixin, Base):
    """Formal record of a confirmed or suspected violation."""
    __tablename__ = "incidents"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    session_id = Column("sessionId", Integer, nullable=False, index=True)

    incident_type = Column("incidentType", String(32), nullable=False)
    severity = Column("severity", String(16), default=IncidentSeverity.MODERATE.value, nullable=False)
    description = Column("description", Text, nullable=False)
    status = Column("status", String(16), default=IncidentStatus.PENDING.value, nullable=False, index=True)

    reported_by = Column("reportedBy", Integer, nullable=False)
    investigated_by = Column("investigatedBy", Integer, nullable=True)
    resolution = Column("resolution", Text, nullable=True)
    recommended_action = Column("recommendedAction", String(255), nullable=True)
    evidence_urls = Column("evidenceUrls", JSON, nullable=True)

    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column("updatedAt", DateTime(timezone=True), server_default=func.now(),
                        onupdate=func.now(), nullable=False)
    resolved_at = Column("resolvedAt", DateTime(timezone=True), nullable=True)
    deleted_at = Column("deletedAt", DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Incident(type='{self.incident_type}', status='{self.status}')>"


class VideoEvidence(RecordMixin, Base):
    """Stored video clip metadata."""
    __tablename__ = "videoEvidence"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    session_id = Column("sessionId", Integer, nullable=False, index=True)
    alert_id = Column("alertId", Integer, nullable=True, index=True)
    incident_id = Column("incidentId", Integer, nullable=True)

    video_url = Column("videoUrl", Text, nullable=False)
    file_size = Column("fileSize", Integer, nullable=True)  # bytes
    duration = Column("duration", Integer, nullable=True)  # seconds
    start_time = Column("startTime", Integer, nullable=True)  # seconds from session start
    end_time = Column("endTime", Integer, nullable=True)
    content_type = Column("contentType", String(64), default="video/mp4", nullable=False)
    storage_key = Column("storageKey", String(512), nullable=False)
    retention_days = Column("retentionDays", Integer, default=90, nullable=False)
    expires_at = Column("expiresAt", DateTime(timezone=True), nullable=True)

    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<VideoEvidence(session_id={self.session_id}, key='{self.storage_key}')>"


class FraudAnalytics(RecordMixin, Base):
    """Fraud trend aggregation keyed by period and course or department."""
    __tablename__ = "fraudAnalytics"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    exam_id = Column("examId", Integer, nullable=True)
    course_code = Column("courseCode", String(64), nullable=True, index=True)
    department = Column("department", String(255), nullable=True, index=True)
    period = Column("period", String(32), nullable=True, index=True)  # e.g. "2024-01"

    total_exam_sessions = Column("totalExamSessions", Integer, default=0, nullable=False)
    flagged_sessions = Column("flaggedSessions", Integer, default=0, nullable=False)
    confirmed_incidents = Column("confirmedIncidents", Integer, default=0, nullable=False)
    dismissed_incidents = Column("dismissedIncidents", Integer, default=0, nullable=False)
    fraud_rate = Column("fraudRate", Numeric(5, 2), default=0, nullable=False)  # percentage
    common_alert_types = Column("commonAlertTypes", JSON, nullable=True)
    average_confidence_score = Column("averageConfidenceScore", Numeric(5, 2), nullable=True)
    average_session_score = Column("averageSessionScore", Numeric(5, 2), nullable=True)
    pass_rate = Column("passRate", Numeric(5, 2), nullable=True)

    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column("updatedAt", DateTime(timezone=True), server_default=func.now(),
                        onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<FraudAnalytics(period='{self.period}', course='{self.course_code}')>"


class AuditLog(RecordMixin, Base):
    """Audit trail of important actions."""
    __tablename__ = "auditLogs"

    id = Column("id", Integer, primary_key=True, autoincrement=True)
    user_id = Column("userId", Integer, nullable=False, index=True)
    action = Column("action", String(255), nullable=False)  # e.g. "incident_resolved"
    entity_type = Column("entityType", String(64), nullable=True)
    entity_id = Column("entityId", Integer, nullable=True)
    old_value = Column("oldValue", JSON, nullable=True)
    new_value = Column("newValue", JSON, nullable=True)
    description = Column("description", Text, nullable=True)
    ip_address = Column("ipAddress", String(45), nullable=True)
    user_agent = Column("userAgent", Text, nullable=True)

    created_at = Column("createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<AuditLog(action='{self.action}', user_id={self.user_id})>"


MODELS_BY_ENTITY = {
    "user": User,
    "exam": Exam,
    "exam_session": ExamSession,
    "alert": Alert,
    "incident": Incident,
    "video_evidence": VideoEvidence,
    "fraud_analytics": FraudAnalytics,
    "audit_log": AuditLog,
}
