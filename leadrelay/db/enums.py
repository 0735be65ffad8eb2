"""Enum definitions for application constants."""

from enum import Enum


class ClientStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class RoleScope(str, Enum):
    """Which side of the platform a role template applies to."""
    AGENCY = "agency"
    CLIENT = "client"


class ClientScope(str, Enum):
    """Which clients an agency member can see."""
    ALL = "all"
    ASSIGNED = "assigned"


class LeadStage(str, Enum):
    NEW = "new"
    QUALIFYING = "qualifying"
    NURTURING = "nurturing"
    ESCALATED = "escalated"
    BOOKED = "booked"
    LOST = "lost"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class EscalationStatus(str, Enum):
    """
    Escalation lifecycle.

    pending → assigned → in_progress → resolved
    """
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"

    @classmethod
    def open_values(cls) -> list[str]:
        return [cls.PENDING.value, cls.ASSIGNED.value, cls.IN_PROGRESS.value]


class EscalationResolution(str, Enum):
    HANDLED = "handled"
    CONVERTED = "converted"
    LOST = "lost"
    RETURNED_TO_AI = "returned_to_ai"
    NO_ACTION = "no_action"


class AgencyMessageStatus(str, Enum):
    """Action prompt lifecycle for agency ↔ client SMS."""
    PENDING = "pending"
    REPLIED = "replied"
    EXECUTED = "executed"
    EXPIRED = "expired"


class AgencyMessageCategory(str, Enum):
    WEEKLY_DIGEST = "weekly_digest"
    ACTION_PROMPT = "action_prompt"
    ALERT = "alert"
    ONBOARDING = "onboarding"
    REPLY = "reply"
    CUSTOM = "custom"


class NpsStatus(str, Enum):
    SENT = "sent"
    RESPONDED = "responded"
    EXPIRED = "expired"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class ReviewResponseStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    POSTED = "posted"


class AuditAction(str, Enum):
    """Audit log action strings."""
    AUTH_LOGIN = "auth.login"
    AUTH_BUSINESS_SWITCHED = "auth.business_switched"
    TEAM_MEMBER_ADDED = "team.member_added"
    TEAM_MEMBER_UPDATED = "team.member_updated"
    TEAM_MEMBER_DEACTIVATED = "team.member_deactivated"
    OWNER_TRANSFERRED = "owner.transferred"
    ROLE_CREATED = "role.created"
    ROLE_UPDATED = "role.updated"
    ROLE_DELETED = "role.deleted"
    AGENCY_MEMBER_ADDED = "agency.member_added"
    AGENCY_MEMBER_UPDATED = "agency.member_updated"
    CLIENT_CREATED = "client.created"
    CLIENT_UPDATED = "client.updated"
    CLIENT_CANCELLED = "client.cancelled"
