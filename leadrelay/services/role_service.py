"""Role template CRUD for the agency settings screen."""

import logging
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from leadrelay.core.exceptions import NotFoundError, ValidationFailedError
from leadrelay.core.permissions import is_valid_permission
from leadrelay.db.enums import AuditAction, RoleScope
from leadrelay.db.models import AgencyMembership, ClientMembership, RoleTemplate
from leadrelay.services import audit_service
from leadrelay.utils.normalization import slugify

logger = logging.getLogger(__name__)


def list_roles(db: Session, scope: RoleScope | None = None) -> list[RoleTemplate]:
    """Built-in templates first, then alphabetical."""
    query = db.query(RoleTemplate)
    if scope:
        query = query.filter(RoleTemplate.scope == scope.value)
    return query.order_by(RoleTemplate.is_built_in.desc(), RoleTemplate.name).all()


def serialize_role(role: RoleTemplate) -> dict:
    return {
        "id": str(role.id),
        "name": role.name,
        "slug": role.slug,
        "description": role.description,
        "scope": role.scope,
        "permissions": sorted(role.permissions or []),
        "isBuiltIn": role.is_built_in,
    }


def _validate_permissions(permissions: list[str], scope: RoleScope) -> list[str]:
    invalid = sorted({p for p in permissions if not is_valid_permission(p, scope)})
    if invalid:
        raise ValidationFailedError(f"Invalid permissions for {scope.value} scope: {', '.join(invalid)}")
    return sorted(set(permissions))


def _get_custom_role(db: Session, role_id: UUID) -> RoleTemplate:
    role = db.query(RoleTemplate).filter(RoleTemplate.id == role_id).first()
    if not role:
        raise NotFoundError("Role template not found")
    if role.is_built_in:
        raise ValidationFailedError("Built-in role templates cannot be modified")
    return role


def create_role(
    db: Session,
    *,
    name: str,
    scope: RoleScope,
    permissions: list[str],
    description: str | None = None,
    actor_person_id: UUID | None = None,
    request: Request | None = None,
) -> RoleTemplate:
    slug = slugify(name)
    if not slug:
        raise ValidationFailedError("Role name must contain letters or numbers")
    if db.query(RoleTemplate).filter(RoleTemplate.slug == slug).first():
        raise ValidationFailedError(f"A role with slug '{slug}' already exists")

    role = RoleTemplate(
        name=name.strip(),
        slug=slug,
        description=description,
        scope=scope.value,
        permissions=_validate_permissions(permissions, scope),
        is_built_in=False,
    )
    db.add(role)
    db.flush()

    audit_service.log_event(
        db,
        AuditAction.ROLE_CREATED,
        person_id=actor_person_id,
        resource_type="role_template",
        resource_id=role.id,
        details={"slug": slug, "scope": scope.value},
        request=request,
    )
    db.commit()
    db.refresh(role)
    return role


def update_role(
    db: Session,
    role_id: UUID,
    *,
    name: str | None = None,
    description: str | None = None,
    permissions: list[str] | None = None,
    actor_person_id: UUID | None = None,
    request: Request | None = None,
) -> RoleTemplate:
    """Name and permissions of a custom template; the slug stays fixed."""
    role = _get_custom_role(db, role_id)
    if name is not None:
        role.name = name.strip()
    if description is not None:
        role.description = description
    if permissions is not None:
        role.permissions = _validate_permissions(permissions, RoleScope(role.scope))

    audit_service.log_event(
        db,
        AuditAction.ROLE_UPDATED,
        person_id=actor_person_id,
        resource_type="role_template",
        resource_id=role.id,
        details={"slug": role.slug},
        request=request,
    )
    db.commit()
    db.refresh(role)
    return role


def delete_role(
    db: Session,
    role_id: UUID,
    *,
    actor_person_id: UUID | None = None,
    request: Request | None = None,
) -> None:
    role = _get_custom_role(db, role_id)

    in_use = (
        db.query(ClientMembership.id).filter(ClientMembership.role_template_id == role.id).first()
        or db.query(AgencyMembership.id).filter(AgencyMembership.role_template_id == role.id).first()
    )
    if in_use:
        raise ValidationFailedError("Role template is assigned to members and cannot be deleted")

    audit_service.log_event(
        db,
        AuditAction.ROLE_DELETED,
        person_id=actor_person_id,
        resource_type="role_template",
        resource_id=role.id,
        details={"slug": role.slug, "name": role.name},
        request=request,
    )
    db.delete(role)
    db.commit()
    logger.info("Deleted role template %s", role.slug)
