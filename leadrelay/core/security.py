"""Token, signing, and cookie helpers for agency and client sessions."""

import base64
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ConfigurationError


PENDING_PERSON_AUDIENCE = "client-business-selection"
PENDING_PERSON_MINUTES = 10


def generate_token(nbytes: int = 32) -> str:
    """Random hex token for magic links and session cookies."""
    return secrets.token_hex(nbytes)


def hash_token(token: str) -> str:
    """SHA256 of a token for storage and lookup."""
    return hashlib.sha256(token.encode()).hexdigest()


def constant_time_equals(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode(), b.encode())


# =============================================================================
# Client session cookie signing (payload.sighex)
# =============================================================================

def _signing_secret() -> bytes:
    secret = settings.CLIENT_SESSION_SECRET
    if not secret:
        raise ConfigurationError("CLIENT_SESSION_SECRET environment variable is required")
    return secret.encode()


def sign_payload(payload: str) -> str:
    """Append an HMAC-SHA256 hex signature: `payload.sighex`."""
    sig = hmac.new(_signing_secret(), payload.encode(), hashlib.sha256).hexdigest()
    return f"{payload}.{sig}"


def verify_payload(value: str | None) -> str | None:
    """Return the payload of a signed value, or None if the signature is wrong."""
    if not value:
        return None
    payload, sep, provided = value.rpartition(".")
    if not sep or not payload:
        return None
    expected = hmac.new(_signing_secret(), payload.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, provided.lower()):
        return None
    return payload


def encode_session_payload(data: dict) -> str:
    """Base64 JSON, matching the cookie format the portal frontend expects."""
    raw = json.dumps(data, separators=(",", ":"), sort_keys=True)
    return base64.b64encode(raw.encode()).decode()


def decode_session_payload(payload: str) -> dict | None:
    """Decode a base64 JSON payload; None for legacy (bare client id) payloads."""
    try:
        decoded = json.loads(base64.b64decode(payload, validate=True).decode())
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(decoded, dict):
        return None
    return decoded


# =============================================================================
# Pending business selection (short-lived JWT)
# =============================================================================

def create_pending_person_token(person_id: UUID) -> str:
    """Token proving OTP verification, used to pick a business afterwards."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(person_id),
        "aud": PENDING_PERSON_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(minutes=PENDING_PERSON_MINUTES),
    }
    return jwt.encode(payload, _signing_secret(), algorithm="HS256")


def decode_pending_person_token(token: str | None) -> UUID | None:
    """Return the person id, or None when missing, expired, or tampered."""
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            _signing_secret(),
            algorithms=["HS256"],
            audience=PENDING_PERSON_AUDIENCE,
        )
        return UUID(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        return None
