"""Client portal login: OTP verification, business selection, sessions, magic links."""
from datetime import timedelta

import pytest

from leadrelay.core.security import create_pending_person_token
from leadrelay.db.models import AuditLog, OtpCode
from leadrelay.services import client_session_service, magic_link_service
from leadrelay.services.client_session_service import COOKIE_NAME, PENDING_COOKIE_NAME
from leadrelay.utils.dates import utcnow

PHONE = "+14035550123"


def set_cookie_value(res, name: str) -> str | None:
    """Value from a Set-Cookie header, or None when absent."""
    for header in res.headers.get_list("set-cookie"):
        key, _, rest = header.partition("=")
        if key.strip() == name:
            return rest.split(";", 1)[0].strip('"')
    return None


def issue_code(db, person, code="246810"):
    db.add(OtpCode(person_id=person.id, phone=PHONE, code=code, expires_at=utcnow() + timedelta(minutes=5)))
    db.commit()


@pytest.mark.asyncio
async def test_send_otp_rejects_malformed_phone(client):
    res = await client.post("/api/client/auth/send-otp", json={"identifier": "555", "method": "phone"})
    assert res.status_code == 400
    assert res.json() == {"error": "Invalid identifier"}


@pytest.mark.asyncio
async def test_send_otp_does_not_reveal_unknown_numbers(client, sent_sms):
    res = await client.post("/api/client/auth/send-otp", json={"identifier": "4035550000", "method": "phone"})
    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert sent_sms == []


@pytest.mark.asyncio
async def test_verify_with_single_business_logs_in(client, db, make_client, make_person, make_membership):
    acme = make_client()
    person = make_person(name="Riley Tech", phone=PHONE)
    make_membership(person, acme)
    issue_code(db, person)

    res = await client.post(
        "/api/client/auth/verify-otp",
        json={"identifier": "403-555-0123", "code": "246810", "method": "phone"},
    )
    assert res.status_code == 200
    assert res.json() == {"success": True, "clientId": str(acme.id)}
    cookie = set_cookie_value(res, COOKIE_NAME)
    assert cookie

    client.cookies.set(COOKIE_NAME, cookie)
    session = (await client.get("/api/client/auth/session")).json()
    assert session["clientId"] == str(acme.id)
    assert session["personName"] == "Riley Tech"
    assert session["isOwner"] is False
    assert "portal.leads.view" in session["permissions"]
    assert "portal.team.manage" not in session["permissions"]

    db.refresh(person)
    assert person.last_login_at is not None
    assert db.query(AuditLog).filter(AuditLog.action == "auth.login").count() == 1


@pytest.mark.asyncio
async def test_wrong_code_reports_attempts_remaining(client, db, make_client, make_person, make_membership):
    person = make_person(phone=PHONE)
    make_membership(person, make_client())
    issue_code(db, person)

    res = await client.post(
        "/api/client/auth/verify-otp",
        json={"identifier": PHONE, "code": "000000", "method": "phone"},
    )
    assert res.status_code == 401
    assert res.json() == {"error": "wrong_code", "attemptsRemaining": 4}


@pytest.mark.asyncio
async def test_multiple_businesses_require_selection(client, db, make_client, make_person, make_membership):
    first = make_client(business_name="Alpha Roofing")
    second = make_client(business_name="Bravo HVAC")
    person = make_person(phone=PHONE)
    make_membership(person, first)
    make_membership(person, second, role_slug="office_manager")
    issue_code(db, person)

    res = await client.post(
        "/api/client/auth/verify-otp",
        json={"identifier": PHONE, "code": "246810", "method": "phone"},
    )
    body = res.json()
    assert body["requiresBusinessSelection"] is True
    assert [b["businessName"] for b in body["businesses"]] == ["Alpha Roofing", "Bravo HVAC"]
    assert set_cookie_value(res, COOKIE_NAME) is None
    pending = set_cookie_value(res, PENDING_COOKIE_NAME)
    assert pending

    client.cookies.set(PENDING_COOKIE_NAME, pending)
    res = await client.post("/api/client/auth/select-business", json={"clientId": str(second.id)})
    assert res.status_code == 200
    assert res.json()["clientId"] == str(second.id)
    assert set_cookie_value(res, COOKIE_NAME)


@pytest.mark.asyncio
async def test_select_business_requires_verified_person(client, make_client):
    res = await client.post("/api/client/auth/select-business", json={"clientId": str(make_client().id)})
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_select_business_rejects_non_member(client, make_client, make_person, make_membership):
    person = make_person(phone=PHONE)
    make_membership(person, make_client())
    outsider = make_client()

    client.cookies.set(PENDING_COOKIE_NAME, create_pending_person_token(person.id))
    res = await client.post("/api/client/auth/select-business", json={"clientId": str(outsider.id)})
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_switch_business(portal_client, portal_auth, make_client, make_membership):
    other = make_client(business_name="Second Shop")
    make_membership(portal_auth.person, other, role_slug="office_manager")

    res = await portal_client.post("/api/client/auth/switch-business", json={"clientId": str(other.id)})
    assert res.status_code == 200
    portal_client.cookies.set(COOKIE_NAME, set_cookie_value(res, COOKIE_NAME))

    session = (await portal_client.get("/api/client/auth/session")).json()
    assert session["clientId"] == str(other.id)
    assert session["isOwner"] is False
    assert len(session["businesses"]) == 2


@pytest.mark.asyncio
async def test_session_requires_cookie(client):
    assert (await client.get("/api/client/auth/session")).status_code == 401


@pytest.mark.asyncio
async def test_tampered_cookie_is_rejected_and_cleared(client, portal_auth):
    client.cookies.set(COOKIE_NAME, portal_auth.cookie[:-4] + "0000")
    res = await client.get("/api/client/auth/session")
    assert res.status_code == 401
    assert any(h.startswith(f"{COOKIE_NAME}=") for h in res.headers.get_list("set-cookie"))


@pytest.mark.asyncio
async def test_bumped_session_version_invalidates_cookie(portal_client, portal_auth, db):
    assert (await portal_client.get("/api/client/auth/session")).status_code == 200
    client_session_service.invalidate_client_session(db, portal_auth.membership.id)
    db.commit()
    assert (await portal_client.get("/api/client/auth/session")).status_code == 401


@pytest.mark.asyncio
async def test_logout_clears_cookies(portal_client):
    res = await portal_client.post("/api/client/auth/logout")
    assert res.status_code == 200
    cleared = res.headers.get_list("set-cookie")
    assert any(h.startswith(f"{COOKIE_NAME}=") for h in cleared)
    assert any(h.startswith(f"{PENDING_COOKIE_NAME}=") for h in cleared)


@pytest.mark.asyncio
async def test_magic_link_logs_in_as_owner_once(client, db, portal_auth):
    url = magic_link_service.create_magic_link(db, portal_auth.client.id)
    db.commit()
    token = url.split("token=", 1)[1]

    res = await client.get("/api/client/auth/magic", params={"token": token})
    assert res.status_code == 302
    assert res.headers["location"] == "http://test/client"
    assert set_cookie_value(res, COOKIE_NAME)

    again = await client.get("/api/client/auth/magic", params={"token": token})
    assert again.status_code == 302
    assert again.headers["location"].endswith("/client/login?error=link_expired")


@pytest.mark.asyncio
async def test_magic_link_for_paused_client_redirects_to_login(client, db, portal_auth):
    portal_auth.client.status = "paused"
    db.commit()
    url = magic_link_service.create_magic_link(db, portal_auth.client.id)
    db.commit()

    res = await client.get("/api/client/auth/magic", params={"token": url.split("token=", 1)[1]})
    assert res.status_code == 302
    assert res.headers["location"] == "http://test/client/login?error=link_expired"
    assert set_cookie_value(res, COOKIE_NAME) is None


@pytest.mark.asyncio
async def test_magic_link_without_owner_issues_legacy_cookie(client, db, make_client):
    acme = make_client()
    url = magic_link_service.create_magic_link(db, acme.id)
    db.commit()

    res = await client.get("/api/client/auth/magic", params={"token": url.split("token=", 1)[1]})
    cookie = set_cookie_value(res, COOKIE_NAME)
    client.cookies.set(COOKIE_NAME, cookie)

    session = (await client.get("/api/client/auth/session")).json()
    assert session["isLegacy"] is True
    assert session["personId"] is None
