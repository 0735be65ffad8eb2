"""Agency sign-in, agency team, agency messaging, and escalation assignment."""
import re
from urllib.parse import parse_qs, urlparse

import pytest

from leadrelay.db.enums import EscalationStatus
from leadrelay.db.models import AgencyMembership, AuthSession, Escalation, Lead, User
from leadrelay.services import auth_service
from leadrelay.services.permission_service import get_role_template_by_slug


def _link_params(html: str) -> dict[str, str]:
    url = re.search(r'http://test/api/auth/verify\?[^"<\s]+', html).group(0).replace("&amp;", "&")
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


# =============================================================================
# Sign-in
# =============================================================================

@pytest.mark.asyncio
async def test_signin_link_round_trip(client, db, sent_emails):
    res = await client.post("/api/auth/signin", json={"email": " Ops@Agency.test "})
    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert sent_emails[0]["to"] == "ops@agency.test"

    params = _link_params(sent_emails[0]["html"])
    res = await client.get("/api/auth/verify", params=params)
    assert res.status_code == 302
    assert res.headers["location"] == "http://test/dashboard"
    assert auth_service.AGENCY_COOKIE_NAME in res.headers["set-cookie"]

    user = db.query(User).filter(User.email == "ops@agency.test").one()
    assert db.query(AuthSession).filter(AuthSession.user_id == user.id).count() == 1

    # Links are single use
    res = await client.get("/api/auth/verify", params=params)
    assert res.headers["location"] == "http://test/login?error=invalid_token"


@pytest.mark.asyncio
async def test_signin_requires_valid_email(client, sent_emails):
    res = await client.post("/api/auth/signin", json={"email": "not-an-email"})
    assert res.status_code == 400
    assert res.json() == {"error": "Valid email is required"}
    assert sent_emails == []


@pytest.mark.asyncio
async def test_verify_without_params(client):
    res = await client.get("/api/auth/verify")
    assert res.status_code == 302
    assert res.headers["location"].endswith("error=missing_params")


@pytest.mark.asyncio
async def test_signout_revokes_session(agency_client, db):
    assert db.query(AuthSession).count() == 1
    res = await agency_client.post("/api/auth/signout")
    assert res.status_code == 200
    assert db.query(AuthSession).count() == 0

    res = await agency_client.get("/api/admin/clients")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_plain_user_without_membership_is_rejected(client, db):
    user = User(email="nobody@agency.test")
    db.add(user)
    db.commit()
    client.cookies.set(auth_service.AGENCY_COOKIE_NAME, auth_service.create_login_session(db, user.id))
    res = await client.get("/api/admin/clients")
    assert res.status_code == 401


# =============================================================================
# Agency team
# =============================================================================

@pytest.mark.asyncio
async def test_add_scoped_agency_member(agency_client, db, make_client):
    assigned = make_client()
    role = get_role_template_by_slug(db, "account_manager")

    res = await agency_client.post(
        "/api/admin/team",
        json={
            "name": "Jamie  Rivera",
            "email": "Jamie@Agency.test",
            "roleTemplateId": str(role.id),
            "clientScope": "assigned",
            "assignedClientIds": [str(assigned.id)],
        },
    )
    assert res.status_code == 201
    member = res.json()["member"]
    assert member["roleSlug"] == "account_manager"
    assert member["clientScope"] == "assigned"
    assert member["assignedClientIds"] == [str(assigned.id)]

    res = await agency_client.get("/api/admin/team")
    assert [m["id"] for m in res.json()["members"]] == [member["id"]]

    res = await agency_client.patch(f"/api/admin/team/{member['id']}", json={"clientScope": "all"})
    assert res.status_code == 200
    assert res.json()["member"]["assignedClientIds"] == []


@pytest.mark.asyncio
async def test_agency_member_needs_contact_and_agency_role(agency_client, db):
    agency_role = get_role_template_by_slug(db, "agency_admin")
    res = await agency_client.post("/api/admin/team", json={"name": "Ghost", "roleTemplateId": str(agency_role.id)})
    assert res.status_code == 400

    client_role = get_role_template_by_slug(db, "team_member")
    res = await agency_client.post(
        "/api/admin/team",
        json={"name": "Wrong Scope", "email": "ws@agency.test", "roleTemplateId": str(client_role.id)},
    )
    assert res.status_code == 400
    assert db.query(AgencyMembership).count() == 0


# =============================================================================
# Agency messaging
# =============================================================================

@pytest.mark.asyncio
async def test_agency_settings_number(agency_client):
    res = await agency_client.put("/api/admin/agency/settings", json={"agencyTwilioNumber": "587-555-0000"})
    assert res.json() == {"agencyTwilioNumber": "+15875550000"}
    res = await agency_client.get("/api/admin/agency/settings")
    assert res.json() == {"agencyTwilioNumber": "+15875550000"}

    res = await agency_client.put("/api/admin/agency/settings", json={"agencyTwilioNumber": "12"})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_send_prompt_and_list_messages(agency_client, make_client, sent_sms):
    await agency_client.put("/api/admin/agency/settings", json={"agencyTwilioNumber": "+15875550000"})
    target = make_client()

    res = await agency_client.post(
        "/api/admin/agency/messages",
        json={"clientId": str(target.id), "kind": "prompt", "promptType": "schedule_callback", "message": "Call back Pat? Reply YES"},
    )
    assert res.status_code == 201
    assert sent_sms[0].to == target.phone

    res = await agency_client.get("/api/admin/agency/messages", params={"clientId": str(target.id)})
    page = res.json()
    assert page["total"] == 1
    assert page["items"][0]["actionStatus"] == "pending"
    assert page["items"][0]["promptType"] == "schedule_callback"


@pytest.mark.asyncio
async def test_prompt_type_must_be_known(agency_client, make_client):
    res = await agency_client.post(
        "/api/admin/agency/messages",
        json={"clientId": str(make_client().id), "kind": "prompt", "promptType": "launch_rocket", "message": "?"},
    )
    assert res.status_code == 400
    assert res.json()["error"].startswith("promptType must be one of")


@pytest.mark.asyncio
async def test_unsent_message_is_reported(agency_client, make_client):
    # No agency number configured
    res = await agency_client.post(
        "/api/admin/agency/messages",
        json={"clientId": str(make_client().id), "kind": "alert", "message": "Heads up"},
    )
    assert res.status_code == 400


# =============================================================================
# Escalations
# =============================================================================

@pytest.mark.asyncio
async def test_assign_escalation(agency_client, db, portal_auth, make_client, make_person, make_membership):
    lead = Lead(client_id=portal_auth.client.id, phone="+14035550800")
    db.add(lead)
    db.flush()
    escalation = Escalation(lead_id=lead.id, client_id=portal_auth.client.id, reason="complaint")
    db.add(escalation)
    db.commit()

    outsider = make_membership(make_person(), make_client())
    res = await agency_client.post(
        f"/api/admin/escalations/{escalation.id}/assign", json={"memberId": str(outsider.id)}
    )
    assert res.status_code == 400

    res = await agency_client.post(
        f"/api/admin/escalations/{escalation.id}/assign", json={"memberId": str(portal_auth.membership.id)}
    )
    assert res.status_code == 200
    data = res.json()["escalation"]
    assert data["status"] == EscalationStatus.ASSIGNED.value
    assert data["assigneeName"] == "Dana Owner"

    res = await agency_client.get(f"/api/admin/clients/{portal_auth.client.id}/escalations")
    assert res.json()["summary"]["assigned"] == 1
