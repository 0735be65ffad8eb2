"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from leadrelay.db.enums import ClientScope


class ClientSessionPayload(BaseModel):
    """Decoded portal cookie payload (new format)."""
    personId: UUID
    clientId: UUID
    permissions: list[str]
    sessionVersion: int


class AgencySession(BaseModel):
    """
    Session context for agency dashboard requests.

    Returned by get_agency_session. Legacy admin users (no person record)
    get every agency permission with `is_legacy=True`.
    """
    user_id: UUID
    person_id: UUID | None = None
    membership_id: UUID | None = None
    permissions: set[str]
    client_scope: ClientScope = ClientScope.ALL
    assigned_client_ids: list[UUID] | None = None  # None = all clients
    is_legacy: bool = False


class PortalSession(BaseModel):
    """
    Session context for client portal requests.

    Permissions are resolved from the membership's current role template,
    not from the cookie.
    """
    client_id: UUID
    person_id: UUID | None = None
    membership_id: UUID | None = None
    permissions: set[str]
    is_owner: bool = False
    is_legacy: bool = False
