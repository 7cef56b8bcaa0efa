"""Utilities for safe structured logging fields."""

from __future__ import annotations

import hashlib
from typing import Any


def safe_log_identifier(value: Any, *, prefix: str) -> str:
    """Return a deterministic non-reversible token for log correlation fields."""
    text = str(value or "").strip()
    if not text:
        return f"{prefix}-missing"

    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}-{digest}"


def tracking_field_names(metadata: dict[str, Any] | None) -> str:
    """List populated tracking fields of order metadata without their values.

    Tracking data carries client IPs and ad cookies, so logs only record which
    fields were captured.
    """
    tracking = (metadata or {}).get("tracking")
    if not isinstance(tracking, dict):
        return "none"
    names = sorted(key for key, value in tracking.items() if value not in (None, ""))
    return ",".join(names) or "none"
