from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, Integer, String, Text

from db import Base


class User(Base):
    __tablename__ = "users"

    userId = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    fullName = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="ACTIVE", index=True)
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Role(Base):
    __tablename__ = "roles"

    roleCode = Column(String, primary_key=True)
    roleName = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="ACTIVE")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="")
    userId = Column(String, nullable=False, index=True)
    email = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, default="")
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
    revokedBy = Column(String, nullable=False, default="")


class Candidate(Base):
    __tablename__ = "candidates"

    candidateId = Column(String, primary_key=True)
    firstName = Column(Text, nullable=False, default="")
    lastName = Column(Text, nullable=False, default="")
    email = Column(Text, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="NEW", index=True)
    # Capability to self-book one interview; lookups are exact-match, so re-issuing kills the old value.
    schedulingToken = Column(String, nullable=False, default="", index=True)
    schedulingTokenIssuedAt = Column(Text, nullable=False, default="")
    prerequisiteCourseCompleted = Column(Boolean, nullable=False, default=False)
    hiredAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Interview(Base):
    __tablename__ = "interviews"
    __table_args__ = (
        Index("ix_interviews_status_scheduled", "status", "scheduledAt"),
        Index("ix_interviews_candidate_status", "candidateId", "status"),
    )

    interviewId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, index=True)
    scheduledAt = Column(String, nullable=False)  # ISO UTC, second precision
    durationMinutes = Column(Integer, nullable=False, default=30)
    interviewerName = Column(Text, nullable=False, default="")
    meetingUrl = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="SCHEDULED")  # SCHEDULED|COMPLETED|NO_SHOW|CANCELED
    decision = Column(String, nullable=False, default="PENDING")  # PENDING|OFFERED|REJECTED
    reminderSentAt = Column(Text, nullable=False, default="")
    bookedVia = Column(String, nullable=False, default="")  # ADMIN|PUBLIC
    notes = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class ScheduleResource(Base):
    """Row lock target that serializes conflict-check + insert for one shared resource."""

    __tablename__ = "schedule_resources"

    resourceKey = Column(String, primary_key=True)
    label = Column(Text, nullable=False, default="")
    lastBookedAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class OnboardingTask(Base):
    __tablename__ = "onboarding_tasks"
    __table_args__ = (Index("ix_onboarding_tasks_candidate_sort", "candidateId", "sortOrder"),)

    taskId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, index=True)
    taskType = Column(String, nullable=False)  # DOCUMENT_REVIEW|PREREQUISITE_COURSE_UPLOAD|SIGNATURE
    title = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    documentDownloadUrl = Column(Text, nullable=False, default="")
    sortOrder = Column(Integer, nullable=False, default=0)
    isCompleted = Column(Boolean, nullable=False, default=False)
    completedAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"
    __table_args__ = (Index("ix_audit_entity", "entityType", "entityId"),)

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="")
    entityId = Column(String, nullable=False, default="")
    action = Column(String, nullable=False, default="", index=True)
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="")
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="")
    actorRole = Column(String, nullable=False, default="")
    actorEmail = Column(Text, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    correlationId = Column(String, nullable=False, default="")
    metaJson = Column(Text, nullable=False, default="")


class EmailLog(Base):
    __tablename__ = "email_log"

    emailId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, default="", index=True)
    templateType = Column(String, nullable=False, default="")  # REACH_OUT|INTERVIEW_INVITE|INTERVIEW_BOOKED_ADMIN|INTERVIEW_REMINDER|OFFER|REJECTION
    referenceId = Column(String, nullable=False, default="", index=True)  # interviewId for reminders
    toEmail = Column(Text, nullable=False, default="")
    subject = Column(Text, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="")  # SENT|LOGGED|FAILED
    error = Column(Text, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
