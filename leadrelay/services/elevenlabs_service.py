"""ElevenLabs voice catalogue and text-to-speech."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from leadrelay.core.config import settings
from leadrelay.core.exceptions import DownstreamError
from leadrelay.services.http_service import DEFAULT_TIMEOUT_SECONDS, request_with_retries

logger = logging.getLogger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
DEFAULT_MODEL_ID = "eleven_monolingual_v1"


def _headers(**extra: str) -> dict[str, str]:
    return {"xi-api-key": settings.ELEVENLABS_API_KEY, **extra}


def _voice(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "voice_id": data.get("voice_id"),
        "name": data.get("name"),
        "category": data.get("category"),
        "labels": data.get("labels") or {},
        "preview_url": data.get("preview_url") or "",
    }


async def list_voices() -> list[dict[str, Any]]:
    """
    Raises:
        DownstreamError: ElevenLabs returned a non-2xx status
    """
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as http:
        response = await request_with_retries(
            lambda: http.get(f"{ELEVENLABS_BASE_URL}/voices", headers=_headers()),
            label="ElevenLabs voices",
        )
    if not response.is_success:
        logger.error("ElevenLabs voice list failed: %s", response.status_code)
        raise DownstreamError(f"ElevenLabs API error: {response.status_code}")
    return [_voice(v) for v in response.json().get("voices", [])]


async def get_voice(voice_id: str) -> dict[str, Any] | None:
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as http:
        response = await request_with_retries(
            lambda: http.get(f"{ELEVENLABS_BASE_URL}/voices/{voice_id}", headers=_headers()),
            label="ElevenLabs voice",
        )
    if not response.is_success:
        return None
    return _voice(response.json())


async def synthesize_speech(
    voice_id: str,
    text: str,
    stability: float = 0.5,
    similarity_boost: float = 0.75,
    model_id: str = DEFAULT_MODEL_ID,
) -> bytes:
    """Render `text` as mp3 audio."""
    payload = {
        "text": text,
        "model_id": model_id,
        "voice_settings": {"stability": stability, "similarity_boost": similarity_boost},
    }
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as http:
        response = await request_with_retries(
            lambda: http.post(
                f"{ELEVENLABS_BASE_URL}/text-to-speech/{voice_id}",
                headers=_headers(Accept="audio/mpeg"),
                json=payload,
            ),
            label="ElevenLabs TTS",
        )
    if not response.is_success:
        raise DownstreamError(f"ElevenLabs TTS error: {response.status_code}")
    return response.content
