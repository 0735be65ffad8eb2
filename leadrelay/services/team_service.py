"""Team management for client portals and the agency.

Handles membership creation, role changes, deactivation, and ownership
transfer. Every change that alters what a cookie would grant bumps
`session_version` so stale portal sessions are rejected.
"""

import logging
from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session, joinedload

from leadrelay.core.exceptions import NotFoundError, PermissionDeniedError, ValidationFailedError
from leadrelay.db.enums import AuditAction, ClientScope, RoleScope
from leadrelay.db.models import (
    AgencyClientAssignment,
    AgencyMembership,
    Client,
    ClientMembership,
    Person,
    RoleTemplate,
)
from leadrelay.services import audit_service
from leadrelay.services.client_session_service import invalidate_client_session
from leadrelay.services.permission_service import get_role_template_by_slug, prevent_escalation
from leadrelay.utils.normalization import normalize_email, normalize_name, normalize_phone

logger = logging.getLogger(__name__)


@dataclass
class Granter:
    """Who is making a team change, and what they may hand out."""
    person_id: UUID | None
    permissions: set[str]
    bypass_escalation: bool = False  # business owner or legacy agency admin
    membership_id: UUID | None = None


# =============================================================================
# People
# =============================================================================

def find_or_create_person(
    db: Session,
    name: str,
    email: str | None = None,
    phone: str | None = None,
) -> Person:
    """Look up by email, then phone; create if neither matches."""
    email = normalize_email(email)
    phone = normalize_phone(phone) if phone else None
    if not email and not phone:
        raise ValidationFailedError("Email or phone is required")

    person = None
    if email:
        person = db.query(Person).filter(Person.email == email).first()
    if not person and phone:
        person = db.query(Person).filter(Person.phone == phone).first()
    if person:
        return person

    person = Person(name=normalize_name(name) or name, email=email, phone=phone)
    db.add(person)
    db.flush()
    return person


def _require_template(db: Session, role_template_id: UUID, scope: RoleScope) -> RoleTemplate:
    template = db.query(RoleTemplate).filter(RoleTemplate.id == role_template_id).first()
    if not template:
        raise NotFoundError("Role template not found")
    if template.scope != scope.value:
        raise ValidationFailedError(
            f"Invalid role template scope. Must be a{'n' if scope == RoleScope.AGENCY else ''} {scope.value} role."
        )
    return template


def _check_grant(granter: Granter, template_permissions: Iterable[str]) -> None:
    if granter.bypass_escalation:
        return
    prevent_escalation(granter.permissions, template_permissions)


# =============================================================================
# Client teams
# =============================================================================

def list_client_team(db: Session, client_id: UUID) -> list[ClientMembership]:
    """Owner first, then by join date."""
    return (
        db.query(ClientMembership)
        .options(
            joinedload(ClientMembership.person),
            joinedload(ClientMembership.role_template),
        )
        .filter(ClientMembership.client_id == client_id)
        .order_by(ClientMembership.is_owner.desc(), ClientMembership.created_at)
        .all()
    )


def serialize_client_member(membership: ClientMembership) -> dict:
    return {
        "id": str(membership.id),
        "personId": str(membership.person_id),
        "name": membership.person.name,
        "email": membership.person.email,
        "phone": membership.person.phone,
        "roleTemplateId": str(membership.role_template_id),
        "roleName": membership.role_template.name,
        "roleSlug": membership.role_template.slug,
        "isOwner": membership.is_owner,
        "isActive": membership.is_active,
        "receiveEscalations": membership.receive_escalations,
        "receiveHotTransfers": membership.receive_hot_transfers,
        "lastLoginAt": membership.person.last_login_at.isoformat() if membership.person.last_login_at else None,
        "createdAt": membership.created_at.isoformat(),
    }


def add_client_member(
    db: Session,
    client_id: UUID,
    granter: Granter,
    *,
    name: str,
    email: str | None,
    phone: str | None,
    role_template_id: UUID,
    receive_escalations: bool = False,
    request: Request | None = None,
) -> ClientMembership:
    template = _require_template(db, role_template_id, RoleScope.CLIENT)
    _check_grant(granter, template.permissions)

    person = find_or_create_person(db, name, email, phone)
    existing = (
        db.query(ClientMembership)
        .filter(ClientMembership.person_id == person.id, ClientMembership.client_id == client_id)
        .first()
    )
    if existing:
        raise ValidationFailedError("This person is already a member of this business")

    membership = ClientMembership(
        person_id=person.id,
        client_id=client_id,
        role_template_id=template.id,
        receive_escalations=receive_escalations,
    )
    db.add(membership)
    db.flush()

    audit_service.log_event(
        db,
        AuditAction.TEAM_MEMBER_ADDED,
        person_id=granter.person_id,
        client_id=client_id,
        resource_type="client_membership",
        resource_id=membership.id,
        details={"roleSlug": template.slug},
        request=request,
    )
    db.commit()
    db.refresh(membership)
    return membership


def update_client_member(
    db: Session,
    client_id: UUID,
    membership_id: UUID,
    granter: Granter,
    *,
    role_template_id: UUID | None = None,
    is_active: bool | None = None,
    receive_escalations: bool | None = None,
    receive_hot_transfers: bool | None = None,
    request: Request | None = None,
) -> ClientMembership:
    """
    Update one member of a client team.

    Raises:
        NotFoundError: membership not in this client
        PermissionDeniedError: target is the owner, is the granter, or escalation
    """
    membership = (
        db.query(ClientMembership)
        .filter(ClientMembership.id == membership_id, ClientMembership.client_id == client_id)
        .first()
    )
    if not membership:
        raise NotFoundError("Team member not found")
    if membership.is_owner:
        raise PermissionDeniedError("Cannot modify the business owner.")
    if granter.person_id and membership.person_id == granter.person_id:
        raise PermissionDeniedError("Cannot modify your own membership.")

    invalidate = False
    if role_template_id and role_template_id != membership.role_template_id:
        template = _require_template(db, role_template_id, RoleScope.CLIENT)
        _check_grant(granter, template.permissions)
        membership.role_template_id = template.id
        invalidate = True

    if is_active is not None and is_active != membership.is_active:
        membership.is_active = is_active
        if not is_active:
            invalidate = True
    if receive_escalations is not None:
        membership.receive_escalations = receive_escalations
    if receive_hot_transfers is not None:
        membership.receive_hot_transfers = receive_hot_transfers
    db.flush()

    if invalidate:
        invalidate_client_session(db, membership.id)

    action = (
        AuditAction.TEAM_MEMBER_DEACTIVATED if is_active is False else AuditAction.TEAM_MEMBER_UPDATED
    )
    audit_service.log_event(
        db,
        action,
        person_id=granter.person_id,
        client_id=client_id,
        resource_type="client_membership",
        resource_id=membership.id,
        details={
            "roleTemplateId": str(role_template_id) if role_template_id else None,
            "isActive": is_active,
        },
        request=request,
    )
    db.commit()
    db.refresh(membership)
    return membership


def transfer_ownership(
    db: Session,
    client_id: UUID,
    target_membership_id: UUID,
    confirm_name: str,
    *,
    actor_person_id: UUID | None = None,
    request: Request | None = None,
) -> None:
    """Make another active member the owner; the old owner becomes office manager."""
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise NotFoundError("Client not found")

    target = (
        db.query(ClientMembership)
        .options(joinedload(ClientMembership.person))
        .filter(
            ClientMembership.id == target_membership_id,
            ClientMembership.client_id == client_id,
        )
        .first()
    )
    if not target:
        raise NotFoundError("Target member not found")
    if not target.is_active:
        raise ValidationFailedError("Target member is inactive")
    if target.is_owner:
        raise ValidationFailedError("Target is already the owner")
    if confirm_name != target.person.name:
        raise ValidationFailedError("Confirmation name does not match the target member")

    owner_template = get_role_template_by_slug(db, "business_owner")
    manager_template = get_role_template_by_slug(db, "office_manager")
    if not owner_template or not manager_template:
        raise RuntimeError("Built-in role templates are not seeded")

    current_owner = (
        db.query(ClientMembership)
        .options(joinedload(ClientMembership.person))
        .filter(ClientMembership.client_id == client_id, ClientMembership.is_owner.is_(True))
        .first()
    )
    previous_name = None
    if current_owner:
        previous_name = current_owner.person.name
        current_owner.is_owner = False
        current_owner.role_template_id = manager_template.id
        current_owner.session_version = current_owner.session_version + 1
        # Release the partial unique index before the new owner is flagged
        db.flush()

    target.is_owner = True
    target.role_template_id = owner_template.id
    target.session_version = target.session_version + 1
    db.flush()

    audit_service.log_event(
        db,
        AuditAction.OWNER_TRANSFERRED,
        person_id=actor_person_id or target.person_id,
        client_id=client_id,
        resource_type="client_membership",
        resource_id=target.id,
        details={
            "previousOwnerName": previous_name,
            "newOwnerName": target.person.name,
            "clientName": client.business_name,
        },
        request=request,
    )
    db.commit()
    logger.info("Ownership of client %s transferred to membership %s", client_id, target.id)


# =============================================================================
# Agency team
# =============================================================================

def list_agency_team(db: Session) -> list[AgencyMembership]:
    return (
        db.query(AgencyMembership)
        .options(
            joinedload(AgencyMembership.person),
            joinedload(AgencyMembership.role_template),
            joinedload(AgencyMembership.assignments),
        )
        .order_by(AgencyMembership.created_at)
        .all()
    )


def serialize_agency_member(membership: AgencyMembership) -> dict:
    return {
        "id": str(membership.id),
        "personId": str(membership.person_id),
        "name": membership.person.name,
        "email": membership.person.email,
        "phone": membership.person.phone,
        "roleTemplateId": str(membership.role_template_id),
        "roleName": membership.role_template.name,
        "roleSlug": membership.role_template.slug,
        "clientScope": membership.client_scope,
        "assignedClientIds": [str(a.client_id) for a in membership.assignments],
        "isActive": membership.is_active,
        "createdAt": membership.created_at.isoformat(),
    }


def _set_assignments(db: Session, membership: AgencyMembership, client_ids: list[UUID]) -> None:
    found = {cid for (cid,) in db.query(Client.id).filter(Client.id.in_(client_ids)).all()} if client_ids else set()
    missing = set(client_ids) - found
    if missing:
        raise ValidationFailedError("One or more assigned clients do not exist")
    membership.assignments = [
        AgencyClientAssignment(client_id=cid) for cid in dict.fromkeys(client_ids)
    ]


def add_agency_member(
    db: Session,
    granter: Granter,
    *,
    name: str,
    email: str | None,
    phone: str | None,
    role_template_id: UUID,
    client_scope: ClientScope = ClientScope.ALL,
    assigned_client_ids: list[UUID] | None = None,
    request: Request | None = None,
) -> AgencyMembership:
    template = _require_template(db, role_template_id, RoleScope.AGENCY)
    _check_grant(granter, template.permissions)

    person = find_or_create_person(db, name, email, phone)
    if db.query(AgencyMembership).filter(AgencyMembership.person_id == person.id).first():
        raise ValidationFailedError("This person is already an agency member")

    membership = AgencyMembership(
        person_id=person.id,
        role_template_id=template.id,
        client_scope=client_scope.value,
    )
    db.add(membership)
    db.flush()
    if client_scope == ClientScope.ASSIGNED:
        _set_assignments(db, membership, assigned_client_ids or [])

    audit_service.log_event(
        db,
        AuditAction.AGENCY_MEMBER_ADDED,
        person_id=granter.person_id,
        resource_type="agency_membership",
        resource_id=membership.id,
        details={"roleSlug": template.slug, "clientScope": client_scope.value},
        request=request,
    )
    db.commit()
    db.refresh(membership)
    return membership


def update_agency_member(
    db: Session,
    membership_id: UUID,
    granter: Granter,
    *,
    role_template_id: UUID | None = None,
    client_scope: ClientScope | None = None,
    assigned_client_ids: list[UUID] | None = None,
    is_active: bool | None = None,
    request: Request | None = None,
) -> AgencyMembership:
    membership = db.query(AgencyMembership).filter(AgencyMembership.id == membership_id).first()
    if not membership:
        raise NotFoundError("Agency member not found")
    if granter.membership_id and membership.id == granter.membership_id:
        raise PermissionDeniedError("Cannot modify your own membership.")

    if role_template_id and role_template_id != membership.role_template_id:
        template = _require_template(db, role_template_id, RoleScope.AGENCY)
        _check_grant(granter, template.permissions)
        membership.role_template_id = template.id
    if client_scope is not None:
        membership.client_scope = client_scope.value
    if assigned_client_ids is not None or client_scope == ClientScope.ALL:
        target_ids = assigned_client_ids or []
        if membership.client_scope == ClientScope.ALL.value:
            target_ids = []
        _set_assignments(db, membership, target_ids)
    if is_active is not None:
        membership.is_active = is_active
    membership.session_version = membership.session_version + 1
    db.flush()

    audit_service.log_event(
        db,
        AuditAction.AGENCY_MEMBER_UPDATED,
        person_id=granter.person_id,
        resource_type="agency_membership",
        resource_id=membership.id,
        details={"isActive": is_active, "clientScope": membership.client_scope},
        request=request,
    )
    db.commit()
    db.refresh(membership)
    return membership
