"""Agency dashboard sign-in via emailed magic links."""

import html
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from leadrelay.core.async_utils import run_async
from leadrelay.core.config import settings
from leadrelay.core.deps import get_db
from leadrelay.core.rate_limit import AUTH_LIMIT, limiter
from leadrelay.services import auth_service, email_service
from leadrelay.utils.normalization import is_valid_email, normalize_email

router = APIRouter()
logger = logging.getLogger(__name__)


class SignInRequest(BaseModel):
    email: str | None = None


def _login_redirect(error: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.app_url}/login?error={error}", status_code=302)


@router.post("/signin")
@limiter.limit(AUTH_LIMIT)
def signin(request: Request, body: SignInRequest, db: Session = Depends(get_db)):
    """Email a one-time sign-in link. Always succeeds for valid addresses."""
    email = normalize_email(body.email)
    if not email or not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Valid email is required")

    token = auth_service.create_signin_token(db, email)
    url = auth_service.build_signin_url(email, token)
    content = email_service.render_layout(
        "Sign in to LeadRelay",
        "<p>Click the button below to sign in. This link expires in "
        f"{settings.AGENCY_MAGIC_LINK_HOURS} hours.</p>"
        f'<p style="color:#888;font-size:12px">Or paste this link: {html.escape(url)}</p>',
        url,
        "Sign In",
    )
    result = run_async(
        email_service.send_email(to=email, subject="Sign in to LeadRelay", html=content), timeout=30
    )
    if not result["success"]:
        logger.error("Sign-in email failed: %s", result.get("error"))
    return {"success": True}


@router.get("/verify")
def verify(token: str | None = None, email: str | None = None, db: Session = Depends(get_db)):
    if not token or not email:
        return _login_redirect("missing_params")

    try:
        user = auth_service.redeem_signin_token(db, normalize_email(email) or email, token)
        session_token = auth_service.create_login_session(db, user.id)
    except auth_service.SignInTokenError as exc:
        return _login_redirect(exc.code)
    except Exception:
        db.rollback()
        logger.exception("Agency sign-in verification failed")
        return _login_redirect("server_error")

    response = RedirectResponse(url=f"{settings.app_url}/dashboard", status_code=302)
    response.set_cookie(
        key=auth_service.AGENCY_COOKIE_NAME,
        value=session_token,
        max_age=60 * 60 * 24 * settings.AGENCY_SESSION_DAYS,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    return response


@router.post("/signout")
def signout(request: Request, response: Response, db: Session = Depends(get_db)):
    auth_service.revoke_login_session(db, request.cookies.get(auth_service.AGENCY_COOKIE_NAME))
    response.delete_cookie(auth_service.AGENCY_COOKIE_NAME, path="/")
    return {"success": True}
