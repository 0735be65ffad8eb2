"""SQLAlchemy ORM models for clients, access control, messaging, and billing."""

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON, Boolean, Date, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint, Uuid, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadrelay.db.base import Base
from leadrelay.db.enums import (
    ClientScope, ClientStatus, EscalationStatus,
    LeadStage, NpsStatus, PaymentStatus, InvoiceStatus, ReviewResponseStatus,
)
from leadrelay.db.types import EncryptedString
from leadrelay.utils.dates import utcnow


def _pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def _created_at() -> Mapped[datetime]:
    return mapped_column(default=utcnow, server_default=func.now(), nullable=False)


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# Tenants & People
# =============================================================================

class Client(Base):
    """
    A business managed by the agency.

    Every lead, conversation, and portal membership is scoped by client_id.
    """
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = _pk()
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    timezone: Mapped[str] = mapped_column(String(50), default="America/Edmonton", nullable=False)
    google_business_url: Mapped[str | None] = mapped_column(String(500))
    twilio_number: Mapped[str | None] = mapped_column(String(20), index=True)
    status: Mapped[str] = mapped_column(String(20), default=ClientStatus.PENDING.value, nullable=False)

    # Usage
    messages_sent_this_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_message_limit: Mapped[int | None] = mapped_column(Integer, default=10000)

    # Weekly summary (day: 0=Sunday … 6=Saturday)
    weekly_summary_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    weekly_summary_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    weekly_summary_time: Mapped[str | None] = mapped_column(String(5), default="08:00")
    last_weekly_summary_at: Mapped[datetime | None] = mapped_column()

    # Feature flags
    missed_call_sms_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ai_response_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ai_agent_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_escalation_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    voice_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    flows_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    lead_scoring_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reputation_monitoring_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_review_response_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    calendar_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hot_transfer_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_links_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    photo_requests_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    multi_language_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Owner notification channels
    notification_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notification_sms: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Google Business Profile OAuth
    google_access_token: Mapped[str | None] = mapped_column(EncryptedString)
    google_refresh_token: Mapped[str | None] = mapped_column(EncryptedString)
    google_token_expires_at: Mapped[datetime | None] = mapped_column()

    # ElevenLabs voice for AI calls
    voice_id: Mapped[str | None] = mapped_column(String(100))

    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Person(Base):
    """A human identity that can hold memberships on either side of the platform."""
    __tablename__ = "people"

    id: Mapped[uuid.UUID] = _pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    phone: Mapped[str | None] = mapped_column(String(20), unique=True)
    last_login_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class User(Base):
    """Agency dashboard login identity (email magic link)."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = _pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    # Pre-RBAC admin flag; users without a person record fall back to it
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    person_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("people.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = _created_at()

    person: Mapped["Person | None"] = relationship()


class AuthSession(Base):
    """Agency login session. Only the SHA256 of the cookie token is stored."""
    __tablename__ = "auth_sessions"

    id: Mapped[uuid.UUID] = _pk()
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = _created_at()


class VerificationToken(Base):
    """Agency sign-in magic link token."""
    __tablename__ = "verification_tokens"

    id: Mapped[uuid.UUID] = _pk()
    identifier: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)


class MagicLinkToken(Base):
    """Single-use client portal login link."""
    __tablename__ = "magic_link_tokens"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = _created_at()


class OtpCode(Base):
    """One-time login code sent by SMS or email."""
    __tablename__ = "otp_codes"
    __table_args__ = (
        Index("idx_otp_codes_phone_created", "phone", "created_at"),
        Index("idx_otp_codes_email_created", "email", "created_at"),
    )

    id: Mapped[uuid.UUID] = _pk()
    person_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("people.id", ondelete="CASCADE")
    )
    phone: Mapped[str | None] = mapped_column(String(20))
    email: Mapped[str | None] = mapped_column(String(255))
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column()
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = _created_at()


# =============================================================================
# Access Control
# =============================================================================

class RoleTemplate(Base):
    """Named permission bundle for agency or client memberships."""
    __tablename__ = "role_templates"

    id: Mapped[uuid.UUID] = _pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    permissions: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    is_built_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class ClientMembership(Base):
    """A person's access to one client's portal."""
    __tablename__ = "client_memberships"
    __table_args__ = (
        UniqueConstraint("person_id", "client_id", name="uq_client_memberships_person_client"),
        Index(
            "uq_client_memberships_owner",
            "client_id",
            unique=True,
            postgresql_where=text("is_owner"),
            sqlite_where=text("is_owner = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = _pk()
    person_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_template_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("role_templates.id"), nullable=False
    )
    # {"grant": [...], "revoke": [...]}
    permission_overrides: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    is_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    receive_escalations: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    receive_hot_transfers: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Bumped to invalidate outstanding portal cookies
    session_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    person: Mapped["Person"] = relationship()
    client: Mapped["Client"] = relationship()
    role_template: Mapped["RoleTemplate"] = relationship()


class AgencyMembership(Base):
    """A person's access to the agency dashboard."""
    __tablename__ = "agency_memberships"

    id: Mapped[uuid.UUID] = _pk()
    person_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("people.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    role_template_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("role_templates.id"), nullable=False
    )
    client_scope: Mapped[str] = mapped_column(String(20), default=ClientScope.ALL.value, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    session_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    person: Mapped["Person"] = relationship()
    role_template: Mapped["RoleTemplate"] = relationship()
    assignments: Mapped[list["AgencyClientAssignment"]] = relationship(
        back_populates="membership", cascade="all, delete-orphan"
    )


class AgencyClientAssignment(Base):
    __tablename__ = "agency_client_assignments"
    __table_args__ = (
        UniqueConstraint("agency_membership_id", "client_id", name="uq_agency_assignment"),
    )

    id: Mapped[uuid.UUID] = _pk()
    agency_membership_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("agency_memberships.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = _created_at()

    membership: Mapped["AgencyMembership"] = relationship(back_populates="assignments")


class AuditLog(Base):
    """Security-relevant actions (logins, team and role changes)."""
    __tablename__ = "audit_log"
    __table_args__ = (
        Index("idx_audit_log_client_created", "client_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = _pk()
    person_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("people.id", ondelete="SET NULL")
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("clients.id", ondelete="SET NULL")
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str | None] = mapped_column(String(50))
    resource_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = _created_at()


# =============================================================================
# Leads & Messaging
# =============================================================================

class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("client_id", "phone", name="uq_leads_client_phone"),
    )

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    source: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(30), default="new", nullable=False)
    stage: Mapped[str] = mapped_column(String(30), default=LeadStage.NEW.value, nullable=False)
    stage_changed_at: Mapped[datetime | None] = mapped_column()
    action_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    action_required_reason: Mapped[str | None] = mapped_column(String(255))
    opted_out: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(100))
    score: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Conversation(Base):
    """A single inbound or outbound message on a lead thread."""
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = _pk()
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    message_type: Mapped[str] = mapped_column(String(30), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    twilio_sid: Mapped[str | None] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = _created_at()


class ScheduledMessage(Base):
    __tablename__ = "scheduled_messages"
    __table_args__ = (
        Index("idx_scheduled_messages_due", "sent", "cancelled", "send_at"),
    )

    id: Mapped[uuid.UUID] = _pk()
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    sequence_type: Mapped[str | None] = mapped_column(String(50))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    send_at: Mapped[datetime] = mapped_column(nullable=False)
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column()
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column()
    cancelled_reason: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = _created_at()


class BlockedNumber(Base):
    __tablename__ = "blocked_numbers"
    __table_args__ = (
        UniqueConstraint("client_id", "phone", name="uq_blocked_numbers_client_phone"),
    )

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = _created_at()


class DailyStats(Base):
    """Per-client daily counters, upserted by the messaging jobs."""
    __tablename__ = "daily_stats"
    __table_args__ = (
        UniqueConstraint("client_id", "date", name="uq_daily_stats_client_date"),
    )

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    messages_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    missed_calls_captured: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    forms_responded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    appointments_reminded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    estimates_followed_up: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reviews_requested: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payments_reminded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversations_started: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="scheduled", nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    lead: Mapped["Lead"] = relationship()


class NpsSurvey(Base):
    __tablename__ = "nps_surveys"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("appointments.id", ondelete="SET NULL")
    )
    sent_via: Mapped[str] = mapped_column(String(10), default="sms", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=NpsStatus.SENT.value, nullable=False)
    score: Mapped[int | None] = mapped_column(Integer)
    comment: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column()


# =============================================================================
# Escalations
# =============================================================================

class EscalationRule(Base):
    """
    Per-client rule for routing escalations.

    conditions: {"triggers": [{"type": "keyword", "value": "refund"}, {"type": "pricing_question"}]}
    action: {"assignTo": "round_robin" | <membership id>, "notifyVia": ["sms", "email"], "autoResponse": "..."}
    """
    __tablename__ = "escalation_rules"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    action: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    times_triggered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_triggered_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = _created_at()


class Escalation(Base):
    """Lead handed from AI to a human (priority 1 is most urgent)."""
    __tablename__ = "escalation_queue"
    __table_args__ = (
        Index("idx_escalation_queue_client_status", "client_id", "status"),
    )

    id: Mapped[uuid.UUID] = _pk()
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    reason_details: Mapped[str | None] = mapped_column(Text)
    trigger_message_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    priority: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    conversation_summary: Mapped[str | None] = mapped_column(Text)
    suggested_response: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=EscalationStatus.PENDING.value, nullable=False)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("client_memberships.id", ondelete="SET NULL")
    )
    assigned_at: Mapped[datetime | None] = mapped_column()
    first_response_at: Mapped[datetime | None] = mapped_column()
    resolved_at: Mapped[datetime | None] = mapped_column()
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("client_memberships.id", ondelete="SET NULL")
    )
    resolution: Mapped[str | None] = mapped_column(String(30))
    resolution_notes: Mapped[str | None] = mapped_column(Text)
    return_to_ai: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sla_deadline: Mapped[datetime | None] = mapped_column()
    sla_breach: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    lead: Mapped["Lead"] = relationship()
    assignee: Mapped["ClientMembership | None"] = relationship(foreign_keys=[assigned_to])


# =============================================================================
# Agency ↔ Client Communication
# =============================================================================

class AgencyMessage(Base):
    """SMS/email between the agency number and a client owner."""
    __tablename__ = "agency_messages"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    channel: Mapped[str] = mapped_column(String(10), default="sms", nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    subject: Mapped[str | None] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    prompt_type: Mapped[str | None] = mapped_column(String(50))
    action_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    action_status: Mapped[str | None] = mapped_column(String(20))
    client_reply: Mapped[str | None] = mapped_column(Text)
    in_reply_to: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    twilio_sid: Mapped[str | None] = mapped_column(String(64))
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = _created_at()


class NotificationPreferences(Base):
    __tablename__ = "notification_preferences"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    email_daily_summary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quiet_hours_start: Mapped[str] = mapped_column(String(5), default="22:00", nullable=False)
    quiet_hours_end: Mapped[str] = mapped_column(String(5), default="07:00", nullable=False)
    urgent_override: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class SystemSetting(Base):
    """Platform-wide key/value settings (e.g. agency_twilio_number)."""
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = _updated_at()


# =============================================================================
# Billing
# =============================================================================

class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = _pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    price_monthly: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    features: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    trial_days: Mapped[int] = mapped_column(Integer, default=14, nullable=False)
    stripe_price_id: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = _created_at()


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    plan_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("plans.id"))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(100))
    current_period_end: Mapped[datetime | None] = mapped_column()
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    canceled_at: Mapped[datetime | None] = mapped_column()
    coupon_code: Mapped[str | None] = mapped_column(String(50))
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class BillingEvent(Base):
    __tablename__ = "billing_events"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    stripe_event_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    created_at: Mapped[datetime] = _created_at()


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = _pk()
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(100))
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)  # percent | amount
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    duration: Mapped[str | None] = mapped_column(String(20))  # once | repeating | forever
    duration_months: Mapped[int | None] = mapped_column(Integer)
    max_redemptions: Mapped[int | None] = mapped_column(Integer)
    times_redeemed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    valid_from: Mapped[datetime | None] = mapped_column()
    valid_until: Mapped[datetime | None] = mapped_column()
    applicable_plans: Mapped[list[str] | None] = mapped_column(JSON)
    first_time_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = _created_at()


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    invoice_number: Mapped[str | None] = mapped_column(String(50))
    description: Mapped[str | None] = mapped_column(Text)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    paid_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=InvoiceStatus.PENDING.value, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL")
    )
    type: Mapped[str] = mapped_column(String(20), default="full", nullable=False)  # full | deposit
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    description: Mapped[str | None] = mapped_column(Text)
    stripe_payment_link_id: Mapped[str | None] = mapped_column(String(100), index=True)
    stripe_payment_link_url: Mapped[str | None] = mapped_column(String(500))
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column()
    link_expires_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = _created_at()


# =============================================================================
# Telephony & Reviews
# =============================================================================

class ActiveCall(Base):
    """Inbound call awaiting a final status check (missed-call detection)."""
    __tablename__ = "active_calls"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    call_sid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    caller_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    twilio_number: Mapped[str] = mapped_column(String(20), nullable=False)
    received_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column()


class Review(Base):
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = _pk()
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # google | yelp | ...
    # Google: accounts/{account}/locations/{location}/reviews/{review}
    external_id: Mapped[str | None] = mapped_column(String(500))
    author_name: Mapped[str | None] = mapped_column(String(255))
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str | None] = mapped_column(Text)
    has_response: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    response_text: Mapped[str | None] = mapped_column(Text)
    response_date: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class ReviewResponse(Base):
    __tablename__ = "review_responses"

    id: Mapped[uuid.UUID] = _pk()
    review_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    response_text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ReviewResponseStatus.DRAFT.value, nullable=False)
    posted_at: Mapped[datetime | None] = mapped_column()
    post_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    review: Mapped["Review"] = relationship()
