"""Permission service for RBAC resolution, escalation checks, and template seeding.

Resolution: (role template permissions ∪ grants) − revokes
Missing permission: defaults to False (deny)
"""

import logging
from typing import Any, Iterable

from sqlalchemy.orm import Session

from leadrelay.core.exceptions import PermissionDeniedError, ValidationFailedError
from leadrelay.core.permissions import BUILT_IN_ROLES, is_valid_permission
from leadrelay.db.models import ClientMembership, RoleTemplate

logger = logging.getLogger(__name__)


# =============================================================================
# Permission Resolution
# =============================================================================

def resolve_permissions(
    base: Iterable[str],
    overrides: dict[str, Any] | None = None,
) -> set[str]:
    """Apply grant/revoke overrides to a role's permissions. Revoke always wins."""
    effective = set(base)
    if not overrides:
        return effective
    effective |= set(overrides.get("grant") or [])
    effective -= set(overrides.get("revoke") or [])
    return effective


def has_permission(permissions: Iterable[str], permission: str) -> bool:
    return permission in set(permissions)


def has_all_permissions(permissions: Iterable[str], required: Iterable[str]) -> bool:
    """True when every required permission is held (vacuously true for none)."""
    held = set(permissions)
    return all(p in held for p in required)


def has_any_permission(permissions: Iterable[str], required: Iterable[str]) -> bool:
    """True when at least one required permission is held (false for none)."""
    held = set(permissions)
    return any(p in held for p in required)


def prevent_escalation(granter_permissions: Iterable[str], target_permissions: Iterable[str]) -> None:
    """
    Refuse to hand out permissions the granter does not hold.

    Raises:
        PermissionDeniedError: listing the permissions the granter lacks
    """
    missing = set(target_permissions) - set(granter_permissions)
    if missing:
        raise PermissionDeniedError(
            f"Permission escalation denied: cannot grant {', '.join(sorted(missing))}"
        )


def validate_overrides(
    granter_permissions: Iterable[str],
    overrides: dict[str, Any] | None,
) -> None:
    """Validate a membership override payload. Only grants are escalation-checked."""
    if not overrides:
        return
    grants = list(overrides.get("grant") or [])
    revokes = list(overrides.get("revoke") or [])
    unknown = sorted(p for p in grants + revokes if not is_valid_permission(p))
    if unknown:
        raise ValidationFailedError(f"Unknown permissions: {', '.join(unknown)}")
    prevent_escalation(granter_permissions, grants)


def get_membership_permissions(membership: ClientMembership) -> set[str]:
    """Effective portal permissions for a membership, straight from its template."""
    base = membership.role_template.permissions if membership.role_template else []
    return resolve_permissions(base, membership.permission_overrides)


# =============================================================================
# Role Templates
# =============================================================================

def get_role_template_by_slug(db: Session, slug: str) -> RoleTemplate | None:
    return db.query(RoleTemplate).filter(RoleTemplate.slug == slug).first()


def seed_role_templates(db: Session) -> int:
    """Insert any missing built-in role templates. Returns number created."""
    existing = {slug for (slug,) in db.query(RoleTemplate.slug).all()}
    created = 0
    for definition in BUILT_IN_ROLES.values():
        if definition.slug in existing:
            continue
        db.add(
            RoleTemplate(
                name=definition.name,
                slug=definition.slug,
                description=definition.description,
                scope=definition.scope.value,
                permissions=sorted(definition.permissions),
                is_built_in=True,
            )
        )
        created += 1
    if created:
        db.commit()
        logger.info("Seeded %s built-in role templates", created)
    return created
