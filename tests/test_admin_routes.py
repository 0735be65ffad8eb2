"""Agency dashboard routes: clients, roles, coupons, and scoping."""
import pytest

from leadrelay.db.enums import ClientScope, ClientStatus
from leadrelay.db.models import AgencyClientAssignment, AgencyMembership, AuditLog, EscalationRule, Plan, RoleTemplate, User
from leadrelay.services import auth_service
from leadrelay.services.permission_service import get_role_template_by_slug


@pytest.fixture
def scoped_member(db, make_client, make_person):
    """Account manager who can only see one assigned client."""
    assigned = make_client(business_name="Assigned Roofing")
    other = make_client(business_name="Other Roofing")
    person = make_person(name="Alex Manager")
    membership = AgencyMembership(
        person_id=person.id,
        role_template_id=get_role_template_by_slug(db, "account_manager").id,
        client_scope=ClientScope.ASSIGNED.value,
    )
    db.add(membership)
    db.flush()
    db.add(AgencyClientAssignment(agency_membership_id=membership.id, client_id=assigned.id))
    user = User(email="alex@agency.test", name="Alex Manager", person_id=person.id)
    db.add(user)
    db.commit()
    token = auth_service.create_login_session(db, user.id)
    return token, assigned, other


# =============================================================================
# Authentication
# =============================================================================

@pytest.mark.asyncio
async def test_requires_agency_session(client):
    res = await client.get("/api/admin/clients")
    assert res.status_code == 401
    assert "error" in res.json()


@pytest.mark.asyncio
async def test_scoped_member_sees_only_assigned_clients(client, scoped_member):
    token, assigned, other = scoped_member
    client.cookies.set(auth_service.AGENCY_COOKIE_NAME, token)

    res = await client.get("/api/admin/clients")
    assert res.status_code == 200
    assert [c["id"] for c in res.json()["clients"]] == [str(assigned.id)]

    res = await client.get(f"/api/admin/clients/{other.id}")
    assert res.status_code == 403

    res = await client.get(f"/api/admin/clients/{assigned.id}")
    assert res.status_code == 200


@pytest.mark.asyncio
async def test_scoped_member_cannot_manage_roles(client, scoped_member):
    token, _, _ = scoped_member
    client.cookies.set(auth_service.AGENCY_COOKIE_NAME, token)
    res = await client.get("/api/admin/roles")
    assert res.status_code == 403


# =============================================================================
# Clients
# =============================================================================

@pytest.mark.asyncio
async def test_create_client(agency_client, db):
    res = await agency_client.post(
        "/api/admin/clients",
        json={
            "businessName": "Prairie Plumbing",
            "ownerName": "Jordan Lee",
            "email": " Jordan@Prairie.COM ",
            "phone": "(403) 555-0199",
        },
    )
    assert res.status_code == 201
    data = res.json()["client"]
    assert data["status"] == ClientStatus.PENDING.value
    assert data["phone"] == "+14035550199"
    assert data["email"] == "jordan@prairie.com"
    assert data["timezone"] == "America/Edmonton"
    assert data["features"]["missedCallSms"] is True

    assert db.query(AuditLog).filter(AuditLog.action == "client.created").count() == 1


@pytest.mark.asyncio
async def test_create_client_duplicate_email(agency_client, make_client):
    existing = make_client()
    res = await agency_client.post(
        "/api/admin/clients",
        json={
            "businessName": "Copycat",
            "ownerName": "Someone",
            "email": existing.email.upper(),
            "phone": "4035550111",
        },
    )
    assert res.status_code == 400
    assert res.json()["error"] == "A client with this email already exists"


@pytest.mark.asyncio
async def test_create_client_bad_phone(agency_client):
    res = await agency_client.post(
        "/api/admin/clients",
        json={"businessName": "X", "ownerName": "Y", "email": "x@y.com", "phone": "5550111"},
    )
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_list_clients_filters_by_status(agency_client, make_client):
    active = make_client()
    make_client(status=ClientStatus.PAUSED.value)

    res = await agency_client.get("/api/admin/clients", params={"status": "active"})
    assert res.status_code == 200
    assert [c["id"] for c in res.json()["clients"]] == [str(active.id)]


@pytest.mark.asyncio
async def test_update_client_fields_and_features(agency_client, make_client, db):
    target = make_client()
    res = await agency_client.patch(
        f"/api/admin/clients/{target.id}",
        json={"monthlyMessageLimit": 500, "features": {"aiAgent": True}},
    )
    assert res.status_code == 200
    data = res.json()["client"]
    assert data["monthlyMessageLimit"] == 500
    assert data["features"]["aiAgent"] is True

    db.refresh(target)
    assert target.ai_agent_enabled is True


@pytest.mark.asyncio
async def test_update_client_unknown_feature(agency_client, make_client):
    target = make_client()
    res = await agency_client.patch(f"/api/admin/clients/{target.id}", json={"features": {"teleport": True}})
    assert res.status_code == 400
    assert "teleport" in res.json()["error"]


@pytest.mark.asyncio
async def test_update_client_invalid_status(agency_client, make_client):
    target = make_client()
    res = await agency_client.patch(f"/api/admin/clients/{target.id}", json={"status": "exploded"})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_update_client_rejects_null_required_fields(agency_client, make_client, db):
    target = make_client(business_name="Acme Plumbing")
    res = await agency_client.patch(
        f"/api/admin/clients/{target.id}",
        json={"businessName": None, "weeklySummaryEnabled": None, "googleBusinessUrl": None},
    )
    assert res.status_code == 400
    assert res.json() == {"error": "Fields cannot be empty: business_name, weekly_summary_enabled"}
    db.refresh(target)
    assert target.business_name == "Acme Plumbing"


@pytest.mark.asyncio
async def test_update_client_clears_optional_field(agency_client, make_client, db):
    target = make_client(google_business_url="https://g.page/acme")
    res = await agency_client.patch(f"/api/admin/clients/{target.id}", json={"googleBusinessUrl": None})
    assert res.status_code == 200
    assert res.json()["client"]["googleBusinessUrl"] is None


@pytest.mark.asyncio
async def test_cancel_client(agency_client, make_client, db):
    target = make_client()
    res = await agency_client.delete(f"/api/admin/clients/{target.id}")
    assert res.status_code == 200
    assert res.json() == {"success": True}
    db.refresh(target)
    assert target.status == ClientStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_unknown_client_is_404(agency_client):
    res = await agency_client.get("/api/admin/clients/00000000-0000-0000-0000-000000000000")
    assert res.status_code == 404
    assert res.json() == {"error": "Client not found"}


@pytest.mark.asyncio
async def test_client_team_lists_owner(agency_client, portal_auth):
    res = await agency_client.get(f"/api/admin/clients/{portal_auth.client.id}/team")
    assert res.status_code == 200
    members = res.json()["members"]
    assert len(members) == 1
    assert members[0]["isOwner"] is True


# =============================================================================
# Roles
# =============================================================================

@pytest.mark.asyncio
async def test_list_roles_builtins_first(agency_client):
    res = await agency_client.get("/api/admin/roles", params={"scope": "client"})
    assert res.status_code == 200
    slugs = [r["slug"] for r in res.json()["roles"]]
    assert {"business_owner", "office_manager", "team_member"} <= set(slugs)
    assert "agency_owner" not in slugs


@pytest.mark.asyncio
async def test_permissions_grouped_by_category(agency_client):
    res = await agency_client.get("/api/admin/roles/permissions", params={"scope": "agency"})
    assert res.status_code == 200
    grouped = res.json()
    assert "Clients" in grouped
    keys = {p["key"] for p in grouped["Clients"]}
    assert "agency.clients.view" in keys


@pytest.mark.asyncio
async def test_create_update_delete_custom_role(agency_client, db):
    res = await agency_client.post(
        "/api/admin/roles",
        json={
            "name": "Front Desk",
            "scope": "client",
            "permissions": ["portal.leads.view", "portal.leads.view", "portal.dashboard"],
        },
    )
    assert res.status_code == 201
    role = res.json()["role"]
    assert role["slug"] == "front_desk"
    assert role["isBuiltIn"] is False
    assert role["permissions"] == sorted({"portal.leads.view", "portal.dashboard"})

    res = await agency_client.patch(f"/api/admin/roles/{role['id']}", json={"name": "Reception"})
    assert res.status_code == 200
    assert res.json()["role"]["name"] == "Reception"
    assert res.json()["role"]["slug"] == role["slug"]

    res = await agency_client.delete(f"/api/admin/roles/{role['id']}")
    assert res.status_code == 200
    assert db.query(RoleTemplate).filter(RoleTemplate.slug == role["slug"]).count() == 0


@pytest.mark.asyncio
async def test_create_role_rejects_cross_scope_permission(agency_client):
    res = await agency_client.post(
        "/api/admin/roles",
        json={"name": "Sneaky", "scope": "client", "permissions": ["agency.clients.delete"]},
    )
    assert res.status_code == 400
    assert "agency.clients.delete" in res.json()["error"]


@pytest.mark.asyncio
async def test_builtin_role_cannot_be_modified(agency_client, db):
    builtin = get_role_template_by_slug(db, "team_member")
    res = await agency_client.patch(f"/api/admin/roles/{builtin.id}", json={"name": "Renamed"})
    assert res.status_code == 400
    assert res.json()["error"] == "Built-in role templates cannot be modified"

    res = await agency_client.delete(f"/api/admin/roles/{builtin.id}")
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_role_in_use_cannot_be_deleted(agency_client, make_client, make_person, make_membership):
    res = await agency_client.post(
        "/api/admin/roles",
        json={"name": "Dispatcher", "scope": "client", "permissions": ["portal.leads.view"]},
    )
    role = res.json()["role"]
    make_membership(make_person(), make_client(), role_slug=role["slug"])

    res = await agency_client.delete(f"/api/admin/roles/{role['id']}")
    assert res.status_code == 400
    assert "assigned to members" in res.json()["error"]


# =============================================================================
# Coupons
# =============================================================================

@pytest.mark.asyncio
async def test_coupon_create_and_validate(agency_client):
    res = await agency_client.post(
        "/api/admin/coupons",
        json={"code": " spring25 ", "discountType": "percent", "discountValue": 25, "duration": "repeating", "durationMonths": 3},
    )
    assert res.status_code == 201
    coupon = res.json()["coupon"]
    assert coupon["code"] == "SPRING25"
    assert coupon["timesRedeemed"] == 0

    res = await agency_client.post("/api/admin/coupons/validate", json={"code": "spring25"})
    assert res.json() == {
        "valid": True,
        "discountType": "percent",
        "discountValue": 25,
        "duration": "repeating",
        "durationMonths": 3,
    }

    res = await agency_client.post("/api/admin/coupons", json={"code": "SPRING25", "discountType": "amount", "discountValue": 500})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_deactivated_coupon_is_invalid(agency_client):
    res = await agency_client.post("/api/admin/coupons", json={"code": "OLD", "discountType": "amount", "discountValue": 1000})
    coupon_id = res.json()["coupon"]["id"]

    res = await agency_client.patch(f"/api/admin/coupons/{coupon_id}", json={"isActive": False})
    assert res.json()["coupon"]["isActive"] is False

    res = await agency_client.post("/api/admin/coupons/validate", json={"code": "OLD"})
    assert res.json() == {"valid": False, "error": "This coupon is no longer active"}


# =============================================================================
# Plans
# =============================================================================

@pytest.mark.asyncio
async def test_plan_lifecycle(agency_client, db):
    res = await agency_client.post(
        "/api/admin/plans",
        json={"name": "Growth Plan", "priceMonthly": 49700, "features": {"aiAgent": True}},
    )
    assert res.status_code == 201
    plan = res.json()["plan"]
    assert (plan["slug"], plan["trialDays"], plan["isActive"]) == ("growth_plan", 14, True)

    res = await agency_client.patch(f"/api/admin/plans/{plan['id']}", json={"priceMonthly": 59700})
    assert res.json()["plan"]["priceMonthly"] == 59700

    res = await agency_client.delete(f"/api/admin/plans/{plan['id']}")
    assert res.status_code == 200
    assert db.query(Plan).one().is_active is False

    res = await agency_client.get("/api/admin/plans")
    assert res.json()["plans"] == []
    res = await agency_client.get("/api/admin/plans", params={"includeInactive": True})
    assert [p["slug"] for p in res.json()["plans"]] == ["growth_plan"]


@pytest.mark.asyncio
async def test_plan_slug_is_unique(agency_client):
    await agency_client.post("/api/admin/plans", json={"name": "Starter", "priceMonthly": 19700})
    res = await agency_client.post("/api/admin/plans", json={"name": "Starter", "priceMonthly": 9700})
    assert res.status_code == 400
    assert res.json() == {"error": "A plan with slug 'starter' already exists"}


@pytest.mark.asyncio
async def test_plans_need_billing_permission(client, scoped_member):
    token, _, _ = scoped_member
    client.cookies.set(auth_service.AGENCY_COOKIE_NAME, token)
    assert (await client.get("/api/admin/plans")).status_code == 403


# =============================================================================
# Escalation rules
# =============================================================================

FLOOD_RULE = {
    "name": "Flooding",
    "conditions": {"triggers": [{"type": "keyword", "value": "flood"}]},
    "action": {"notifyVia": ["sms", "email"], "assignTo": "round_robin"},
}


@pytest.mark.asyncio
async def test_escalation_rule_crud(agency_client, make_client, db):
    target = make_client()
    base = f"/api/admin/clients/{target.id}/escalation-rules"

    res = await agency_client.post(base, json=FLOOD_RULE)
    assert res.status_code == 201
    rule = res.json()["rule"]
    assert (rule["priority"], rule["enabled"], rule["timesTriggered"]) == (100, True, 0)

    await agency_client.post(base, json={**FLOOD_RULE, "name": "Pricing", "priority": 5})
    res = await agency_client.get(base)
    assert [r["name"] for r in res.json()["rules"]] == ["Pricing", "Flooding"]

    res = await agency_client.put(f"{base}/{rule['id']}", json={"enabled": False})
    assert res.json()["rule"]["enabled"] is False

    res = await agency_client.delete(f"{base}/{rule['id']}")
    assert res.json() == {"success": True}
    assert [r.name for r in db.query(EscalationRule).all()] == ["Pricing"]


@pytest.mark.asyncio
async def test_escalation_rule_validation(agency_client, make_client):
    target = make_client()
    base = f"/api/admin/clients/{target.id}/escalation-rules"

    res = await agency_client.post(base, json={**FLOOD_RULE, "conditions": {"triggers": []}})
    assert res.json() == {"error": "conditions.triggers must be a non-empty list"}

    res = await agency_client.post(
        base, json={**FLOOD_RULE, "conditions": {"triggers": [{"type": "keyword", "value": " "}]}}
    )
    assert res.json() == {"error": "Keyword triggers need a value"}

    res = await agency_client.post(base, json={**FLOOD_RULE, "action": {"notifyVia": ["pager"]}})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_escalation_rules_respect_client_scope(client, scoped_member, db):
    token, assigned, other = scoped_member
    client.cookies.set(auth_service.AGENCY_COOKIE_NAME, token)

    res = await client.post(f"/api/admin/clients/{assigned.id}/escalation-rules", json=FLOOD_RULE)
    assert res.status_code == 201
    res = await client.post(f"/api/admin/clients/{other.id}/escalation-rules", json=FLOOD_RULE)
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_rule_from_another_client_is_404(agency_client, make_client):
    owner, stranger = make_client(), make_client()
    res = await agency_client.post(f"/api/admin/clients/{owner.id}/escalation-rules", json=FLOOD_RULE)
    rule_id = res.json()["rule"]["id"]

    res = await agency_client.put(f"/api/admin/clients/{stranger.id}/escalation-rules/{rule_id}", json={"priority": 1})
    assert res.status_code == 404
