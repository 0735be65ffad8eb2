"""Client portal team management, feature toggles, and escalation handling."""
import uuid

import pytest

from leadrelay.db.models import Escalation, Lead, NotificationPreferences
from leadrelay.services.permission_service import get_role_template_by_slug


def _role_id(db, slug: str) -> str:
    return str(get_role_template_by_slug(db, slug).id)


@pytest.mark.asyncio
async def test_owner_lists_team_with_owner_first(portal_client, portal_auth, make_person, make_membership):
    make_membership(make_person(name="Zed Helper"), portal_auth.client)
    res = await portal_client.get("/api/client/team")
    assert res.status_code == 200
    members = res.json()["members"]
    assert members[0]["isOwner"] is True
    assert members[0]["roleSlug"] == "business_owner"
    assert [m["name"] for m in members] == ["Dana Owner", "Zed Helper"]


@pytest.mark.asyncio
async def test_owner_adds_member(portal_client, db):
    res = await portal_client.post(
        "/api/client/team",
        json={"name": "  Jo   Tech ", "phone": "403 555 0188", "roleTemplateId": _role_id(db, "office_manager")},
    )
    assert res.status_code == 201
    member = res.json()["member"]
    assert member["name"] == "Jo Tech"
    assert member["phone"] == "+14035550188"
    assert member["roleSlug"] == "office_manager"


@pytest.mark.asyncio
async def test_add_member_requires_contact(portal_client, db):
    res = await portal_client.post(
        "/api/client/team", json={"name": "No Contact", "roleTemplateId": _role_id(db, "team_member")}
    )
    assert res.status_code == 400
    assert res.json()["error"] == "Email or phone is required"


@pytest.mark.asyncio
async def test_add_member_rejects_agency_roles(portal_client, db):
    res = await portal_client.post(
        "/api/client/team",
        json={"name": "Jo", "email": "jo@example.com", "roleTemplateId": _role_id(db, "agency_admin")},
    )
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_add_member_twice_is_rejected(portal_client, db):
    body = {"name": "Jo", "email": "jo@example.com", "roleTemplateId": _role_id(db, "team_member")}
    assert (await portal_client.post("/api/client/team", json=body)).status_code == 201
    res = await portal_client.post("/api/client/team", json=body)
    assert res.status_code == 400
    assert "already a member" in res.json()["error"]


@pytest.mark.asyncio
async def test_team_member_cannot_manage_team(client, db, portal_auth, make_person, make_membership, cookie_for):
    helper = make_membership(make_person(), portal_auth.client, role_slug="team_member")
    client.cookies.set("clientSessionId", cookie_for(helper))

    assert (await client.get("/api/client/team")).status_code == 403
    res = await client.post(
        "/api/client/team",
        json={"name": "Jo", "email": "jo@example.com", "roleTemplateId": _role_id(db, "team_member")},
    )
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_manager_cannot_grant_permissions_they_lack(client, db, portal_auth, make_person, make_membership, cookie_for):
    template = get_role_template_by_slug(db, "office_manager")
    template.permissions = sorted(set(template.permissions) | {"portal.team.manage"})
    db.commit()
    manager = make_membership(make_person(), portal_auth.client, role_slug="office_manager")
    client.cookies.set("clientSessionId", cookie_for(manager))

    res = await client.post(
        "/api/client/team",
        json={"name": "Jo", "email": "jo@example.com", "roleTemplateId": _role_id(db, "business_owner")},
    )
    assert res.status_code == 403
    assert "portal.settings.ai" in res.json()["error"]


@pytest.mark.asyncio
async def test_owner_membership_cannot_be_modified(portal_client, portal_auth):
    res = await portal_client.patch(f"/api/client/team/{portal_auth.membership.id}", json={"isActive": False})
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_role_change_invalidates_member_session(portal_client, db, portal_auth, make_person, make_membership):
    helper = make_membership(make_person(), portal_auth.client, role_slug="team_member")
    res = await portal_client.patch(
        f"/api/client/team/{helper.id}", json={"roleTemplateId": _role_id(db, "office_manager")}
    )
    assert res.status_code == 200
    assert res.json()["member"]["roleSlug"] == "office_manager"
    db.refresh(helper)
    assert helper.session_version == 2


@pytest.mark.asyncio
async def test_remove_member_deactivates(portal_client, db, portal_auth, make_person, make_membership):
    helper = make_membership(make_person(), portal_auth.client)
    res = await portal_client.delete(f"/api/client/team/{helper.id}")
    assert res.status_code == 200
    db.refresh(helper)
    assert helper.is_active is False
    assert helper.session_version == 2


@pytest.mark.asyncio
async def test_unknown_member_is_404(portal_client):
    res = await portal_client.patch(f"/api/client/team/{uuid.uuid4()}", json={"isActive": False})
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_feature_toggles(portal_client):
    res = await portal_client.get("/api/client/features")
    assert res.status_code == 200
    assert res.json()["missedCallSmsEnabled"] is True
    assert "missedCallSms" in res.json()["enabledFeatures"]
    assert "paymentLinks" not in res.json()["enabledFeatures"]

    res = await portal_client.put("/api/client/features", json={"missedCallSmsEnabled": False})
    assert res.status_code == 200
    assert res.json()["missedCallSmsEnabled"] is False


@pytest.mark.asyncio
async def test_notification_preferences_default_then_saved(portal_client, db, portal_auth):
    res = await portal_client.get("/api/client/notifications")
    assert res.json() == {
        "emailDailySummary": False,
        "quietHoursEnabled": False,
        "quietHoursStart": "22:00",
        "quietHoursEnd": "07:00",
        "urgentOverride": True,
    }
    assert db.query(NotificationPreferences).count() == 0

    res = await portal_client.put(
        "/api/client/notifications",
        json={"emailDailySummary": True, "quietHoursEnabled": True, "quietHoursStart": "21:30"},
    )
    assert res.status_code == 200
    prefs = db.query(NotificationPreferences).one()
    assert (prefs.email_daily_summary, prefs.quiet_hours_start, prefs.quiet_hours_end) == (True, "21:30", "07:00")


@pytest.mark.asyncio
async def test_notification_quiet_hours_must_be_hhmm(portal_client):
    res = await portal_client.put("/api/client/notifications", json={"quietHoursStart": "25:00"})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_team_member_cannot_change_notifications(client, portal_auth, make_person, make_membership, cookie_for):
    helper = make_membership(make_person(), portal_auth.client, role_slug="team_member")
    client.cookies.set("clientSessionId", cookie_for(helper))
    res = await client.put("/api/client/notifications", json={"emailDailySummary": True})
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_escalation_take_over_and_resolve(portal_client, db, portal_auth):
    lead = Lead(client_id=portal_auth.client.id, phone="+14035550111", name="Pat Lead", stage="escalated")
    db.add(lead)
    db.commit()
    escalation = Escalation(lead_id=lead.id, client_id=portal_auth.client.id, reason="pricing_question")
    db.add(escalation)
    db.commit()

    res = await portal_client.get("/api/client/escalations")
    assert res.status_code == 200
    assert res.json()["summary"]["pending"] == 1

    res = await portal_client.post(f"/api/client/escalations/{escalation.id}/take-over")
    assert res.status_code == 200
    db.refresh(escalation)
    assert escalation.status == "in_progress"
    assert escalation.assigned_to == portal_auth.membership.id

    res = await portal_client.post(
        f"/api/client/escalations/{escalation.id}/resolve", json={"resolution": "converted"}
    )
    assert res.status_code == 200
    db.refresh(escalation)
    db.refresh(lead)
    assert escalation.status == "resolved"
    assert lead.stage == "booked"


@pytest.mark.asyncio
async def test_escalations_of_other_clients_are_hidden(portal_client, db, make_client):
    other = make_client()
    lead = Lead(client_id=other.id, phone="+14035550112")
    db.add(lead)
    db.commit()
    escalation = Escalation(lead_id=lead.id, client_id=other.id, reason="complaint")
    db.add(escalation)
    db.commit()

    res = await portal_client.post(f"/api/client/escalations/{escalation.id}/take-over")
    assert res.status_code == 404
