"""Permission registry and built-in role templates.

Permissions are scoped: `portal.*` keys apply to client portal memberships,
`agency.*` keys apply to agency dashboard memberships.

Precedence when resolving a membership: revoke > grant > role template
"""

from dataclasses import dataclass
from enum import Enum

from leadrelay.db.enums import RoleScope


@dataclass(frozen=True)
class PermissionDef:
    """Permission definition with metadata."""
    key: str
    label: str
    description: str
    category: str
    scope: RoleScope


class PermissionCategory(str, Enum):
    """Permission categories for UI grouping."""
    DASHBOARD = "Dashboard"
    LEADS = "Leads"
    CONVERSATIONS = "Conversations"
    ANALYTICS = "Analytics"
    KNOWLEDGE = "Knowledge Base"
    REVIEWS = "Reviews"
    TEAM = "Team"
    SETTINGS = "Settings"
    CLIENTS = "Clients"
    FLOWS = "Flows & Templates"
    AI = "AI"
    BILLING = "Billing"
    PHONES = "Phone Numbers"


def _portal(key: str, label: str, description: str, category: PermissionCategory) -> PermissionDef:
    return PermissionDef(key, label, description, category.value, RoleScope.CLIENT)


def _agency(key: str, label: str, description: str, category: PermissionCategory) -> PermissionDef:
    return PermissionDef(key, label, description, category.value, RoleScope.AGENCY)


# =============================================================================
# Permission Registry
# =============================================================================

_DEFINITIONS: list[PermissionDef] = [
    # Portal
    _portal("portal.dashboard", "View Dashboard", "Access the client dashboard", PermissionCategory.DASHBOARD),
    _portal("portal.leads.view", "View Leads", "See leads and their details", PermissionCategory.LEADS),
    _portal("portal.leads.edit", "Edit Leads", "Update leads and handle escalations", PermissionCategory.LEADS),
    _portal("portal.conversations.view", "View Conversations", "Read lead conversations", PermissionCategory.CONVERSATIONS),
    _portal("portal.analytics.view", "View Analytics", "See performance reports", PermissionCategory.ANALYTICS),
    _portal("portal.revenue.view", "View Revenue", "See revenue and payment data", PermissionCategory.ANALYTICS),
    _portal("portal.knowledge.view", "View Knowledge Base", "Read business knowledge entries", PermissionCategory.KNOWLEDGE),
    _portal("portal.knowledge.edit", "Edit Knowledge Base", "Change business knowledge entries", PermissionCategory.KNOWLEDGE),
    _portal("portal.reviews.view", "View Reviews", "See reviews and drafted responses", PermissionCategory.REVIEWS),
    _portal("portal.team.view", "View Team", "See team members", PermissionCategory.TEAM),
    _portal("portal.team.manage", "Manage Team", "Add, change, and remove team members", PermissionCategory.TEAM),
    _portal("portal.settings.view", "View Settings", "See business settings", PermissionCategory.SETTINGS),
    _portal("portal.settings.edit", "Edit Settings", "Change business settings and feature toggles", PermissionCategory.SETTINGS),
    _portal("portal.settings.ai", "AI Settings", "Change AI assistant behaviour", PermissionCategory.SETTINGS),
    # Agency
    _agency("agency.clients.view", "View Clients", "See client accounts", PermissionCategory.CLIENTS),
    _agency("agency.clients.create", "Create Clients", "Create client accounts", PermissionCategory.CLIENTS),
    _agency("agency.clients.edit", "Edit Clients", "Change client accounts and their teams", PermissionCategory.CLIENTS),
    _agency("agency.clients.delete", "Delete Clients", "Cancel client accounts", PermissionCategory.CLIENTS),
    _agency("agency.flows.view", "View Flows", "See automation flows", PermissionCategory.FLOWS),
    _agency("agency.flows.edit", "Edit Flows", "Change automation flows", PermissionCategory.FLOWS),
    _agency("agency.templates.edit", "Edit Templates", "Change message and email templates", PermissionCategory.FLOWS),
    _agency("agency.knowledge.edit", "Edit Knowledge", "Change client knowledge bases", PermissionCategory.KNOWLEDGE),
    _agency("agency.conversations.view", "View Conversations", "Read client conversations and messages", PermissionCategory.CONVERSATIONS),
    _agency("agency.conversations.respond", "Respond to Conversations", "Message clients and leads", PermissionCategory.CONVERSATIONS),
    _agency("agency.analytics.view", "View Analytics", "See agency and client reports", PermissionCategory.ANALYTICS),
    _agency("agency.abtests.manage", "Manage A/B Tests", "Create and stop message tests", PermissionCategory.FLOWS),
    _agency("agency.ai.edit", "Edit AI", "Change AI and voice configuration", PermissionCategory.AI),
    _agency("agency.billing.view", "View Billing", "See plans, subscriptions, and coupons", PermissionCategory.BILLING),
    _agency("agency.billing.manage", "Manage Billing", "Change plans, subscriptions, and coupons", PermissionCategory.BILLING),
    _agency("agency.team.manage", "Manage Agency Team", "Manage agency members and roles", PermissionCategory.TEAM),
    _agency("agency.settings.manage", "Manage Agency Settings", "Change agency settings and view the audit log", PermissionCategory.SETTINGS),
    _agency("agency.phones.manage", "Manage Phone Numbers", "Search, purchase, and release numbers", PermissionCategory.PHONES),
]

PERMISSION_REGISTRY: dict[str, PermissionDef] = {p.key: p for p in _DEFINITIONS}

PORTAL_PERMISSIONS: frozenset[str] = frozenset(
    p.key for p in _DEFINITIONS if p.scope == RoleScope.CLIENT
)
AGENCY_PERMISSIONS: frozenset[str] = frozenset(
    p.key for p in _DEFINITIONS if p.scope == RoleScope.AGENCY
)
ALL_PERMISSIONS: frozenset[str] = PORTAL_PERMISSIONS | AGENCY_PERMISSIONS


# =============================================================================
# Built-in Role Templates
# =============================================================================

@dataclass(frozen=True)
class RoleTemplateDef:
    slug: str
    name: str
    description: str
    scope: RoleScope
    permissions: frozenset[str]


BUILT_IN_ROLES: dict[str, RoleTemplateDef] = {
    "business_owner": RoleTemplateDef(
        "business_owner", "Business Owner",
        "Full access to the business portal", RoleScope.CLIENT,
        PORTAL_PERMISSIONS,
    ),
    "office_manager": RoleTemplateDef(
        "office_manager", "Office Manager",
        "Day-to-day operations without AI settings or team management", RoleScope.CLIENT,
        PORTAL_PERMISSIONS - {"portal.settings.ai", "portal.team.manage"},
    ),
    "team_member": RoleTemplateDef(
        "team_member", "Team Member",
        "Dashboard, leads, and conversations (read only)", RoleScope.CLIENT,
        frozenset({"portal.dashboard", "portal.leads.view", "portal.conversations.view"}),
    ),
    "agency_owner": RoleTemplateDef(
        "agency_owner", "Agency Owner",
        "Full access to the agency dashboard", RoleScope.AGENCY,
        AGENCY_PERMISSIONS,
    ),
    "agency_admin": RoleTemplateDef(
        "agency_admin", "Agency Admin",
        "Everything except billing and agency settings changes", RoleScope.AGENCY,
        AGENCY_PERMISSIONS - {"agency.billing.manage", "agency.settings.manage"},
    ),
    "account_manager": RoleTemplateDef(
        "account_manager", "Account Manager",
        "Manages assigned client accounts", RoleScope.AGENCY,
        frozenset({
            "agency.clients.view", "agency.clients.edit",
            "agency.flows.view", "agency.flows.edit",
            "agency.conversations.view", "agency.conversations.respond",
            "agency.analytics.view", "agency.knowledge.edit", "agency.ai.edit",
        }),
    ),
    "content_specialist": RoleTemplateDef(
        "content_specialist", "Content Specialist",
        "Templates and knowledge base content", RoleScope.AGENCY,
        frozenset({
            "agency.clients.view", "agency.conversations.view",
            "agency.templates.edit", "agency.knowledge.edit",
        }),
    ),
}


# =============================================================================
# Helper Functions
# =============================================================================

def get_all_permissions() -> list[PermissionDef]:
    """Get all permission definitions."""
    return list(PERMISSION_REGISTRY.values())


def get_permission(key: str) -> PermissionDef | None:
    return PERMISSION_REGISTRY.get(key)


def is_valid_permission(key: str, scope: RoleScope | str | None = None) -> bool:
    """Check if a permission key exists (optionally within a scope)."""
    definition = PERMISSION_REGISTRY.get(key)
    if definition is None:
        return False
    if scope is None:
        return True
    return definition.scope.value == RoleScope(scope).value


def permissions_for_scope(scope: RoleScope | str) -> frozenset[str]:
    if RoleScope(scope) == RoleScope.AGENCY:
        return AGENCY_PERMISSIONS
    return PORTAL_PERMISSIONS


def get_permissions_by_category(scope: RoleScope | str | None = None) -> dict[str, list[PermissionDef]]:
    """Get permissions grouped by category for UI."""
    result: dict[str, list[PermissionDef]] = {}
    for perm in PERMISSION_REGISTRY.values():
        if scope is not None and perm.scope.value != RoleScope(scope).value:
            continue
        result.setdefault(perm.category, []).append(perm)
    return result
