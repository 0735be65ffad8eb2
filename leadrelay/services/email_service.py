"""Transactional email via the Resend API.

Used for OTP codes, sign-in links, summaries, reminders, and escalation
notices. Failures are returned, not raised; callers log and move on.
"""

from __future__ import annotations

import html as html_module
import logging
import re
from typing import Any

import httpx

from leadrelay.core.config import settings
from leadrelay.services.http_service import (
    DEFAULT_RETRY_STATUSES,
    DEFAULT_TIMEOUT_SECONDS,
    error_detail,
    request_with_retries,
)

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_MAX_ATTEMPTS = 3
RESEND_RETRY_BASE_DELAY = 0.5
RESEND_RETRY_MAX_DELAY = 4.0


def html_to_text(content: str) -> str:
    """Plain-text alternative for inbox previews."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<br\s*/?>|</p>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*", "\n", text).strip()
    return html_module.unescape(text)


def email_configured() -> bool:
    return bool(settings.RESEND_API_KEY)


async def send_email(
    *,
    to: str,
    subject: str,
    html: str,
    text: str | None = None,
    idempotency_key: str | None = None,
) -> dict[str, Any]:
    """
    Send one email.

    Returns:
        {"success": True, "id": ...} or {"success": False, "error": ...}
    """
    api_key = settings.RESEND_API_KEY
    if not api_key:
        logger.warning("Email not sent: RESEND_API_KEY not configured")
        return {"success": False, "error": "Email not configured"}

    payload: dict[str, object] = {
        "from": settings.EMAIL_FROM,
        "to": [to],
        "subject": subject,
        "html": html,
        "text": text or html_to_text(html),
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key

    try:
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as client:

            async def request_fn() -> httpx.Response:
                return await client.post(RESEND_SEND_URL, headers=headers, json=payload)

            response = await request_with_retries(
                request_fn,
                max_attempts=RESEND_MAX_ATTEMPTS,
                base_delay=RESEND_RETRY_BASE_DELAY,
                max_delay=RESEND_RETRY_MAX_DELAY,
                retry_statuses=DEFAULT_RETRY_STATUSES,
                label="Resend send",
            )
    except httpx.RequestError as exc:
        logger.error("Resend request failed: %s", exc.__class__.__name__)
        return {"success": False, "error": "Email provider unreachable"}

    if 200 <= response.status_code < 300:
        data = response.json()
        return {"success": True, "id": data.get("id")}

    # 409 = idempotency replay; the original send went through
    if response.status_code == 409:
        return {"success": True, "id": None}

    detail = error_detail(response)
    logger.error("Resend API error %s", response.status_code)
    if detail:
        return {"success": False, "error": f"Resend API error: {response.status_code} ({detail})"}
    return {"success": False, "error": f"Resend API error: {response.status_code}"}


def render_layout(title: str, body_html: str, cta_url: str | None = None, cta_label: str | None = None) -> str:
    """Minimal branded wrapper shared by every LeadRelay email."""
    button = ""
    if cta_url:
        button = (
            f'<p style="margin:24px 0"><a href="{html_module.escape(cta_url)}" '
            'style="background:#1f4ed8;color:#fff;padding:12px 20px;border-radius:6px;'
            f'text-decoration:none">{html_module.escape(cta_label or "Open")}</a></p>'
        )
    return (
        '<div style="font-family:Arial,sans-serif;max-width:560px;margin:0 auto;color:#111">'
        f"<h2>{html_module.escape(title)}</h2>{body_html}{button}"
        '<p style="color:#888;font-size:12px">LeadRelay</p></div>'
    )
