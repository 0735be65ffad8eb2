"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    person_id: str | None = None,
    client_id: str | None = None,
    job: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict for `extra=`."""
    context: dict[str, Any] = {}
    if person_id:
        context["person_id"] = person_id
    if client_id:
        context["client_id"] = client_id
    if job:
        context["job"] = job
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
