from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

DEFAULT_PRIORITY = 3

ALLOWED_FIELDS = {"body", "title", "group", "priority", "tags", "url", "extras"}

REDACTED_HEADERS = {"x-beacon-ingest-key", "authorization"}


@dataclass(frozen=True)
class Message:
    """Canonical ingest payload plus request metadata; never mutated after construction."""

    id: str
    received_at: str
    body: str
    ingest_endpoint_id: str
    title: Optional[str] = None
    group: Optional[str] = None
    priority: int = DEFAULT_PRIORITY
    tags: tuple[str, ...] = ()
    url: Optional[str] = None
    extras: dict[str, Any] = field(default_factory=dict)
    content_type: str = ""
    remote_ip: str = ""
    user_agent: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)


def parse_priority(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
        return int(value) if value.is_integer() else None
    return None


def validate_payload(raw: Any) -> str | None:
    """Return the first failure reason, or None when the payload is acceptable."""
    if not isinstance(raw, dict):
        return "invalid_json_object"

    for key in raw:
        if key not in ALLOWED_FIELDS:
            return f"unknown_field:{key}"

    body = raw.get("body")
    if not isinstance(body, str) or not body.strip():
        return "missing_body"

    if raw.get("title") is not None and not isinstance(raw.get("title"), str):
        return "invalid_title"

    if raw.get("group") is not None and not isinstance(raw.get("group"), str):
        return "invalid_group"

    if raw.get("priority") is not None:
        priority = parse_priority(raw.get("priority"))
        if priority is None or priority < 1 or priority > 5:
            return "invalid_priority"

    if raw.get("tags") is not None and not isinstance(raw.get("tags"), list):
        return "invalid_tags"

    if raw.get("url") is not None and not isinstance(raw.get("url"), str):
        return "invalid_url"

    if raw.get("extras") is not None and not isinstance(raw.get("extras"), dict):
        return "invalid_extras"

    return None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_message(
    payload: dict[str, Any],
    *,
    ingest_endpoint_id: str,
    content_type: str = "",
    remote_ip: str = "",
    user_agent: str = "",
    headers: Mapping[str, str] | None = None,
    query: Mapping[str, str] | None = None,
) -> Message:
    """Build a Message from a payload that already passed ``validate_payload``."""
    priority = parse_priority(payload.get("priority")) if payload.get("priority") is not None else None
    return Message(
        id=str(uuid.uuid4()),
        received_at=utc_now_iso(),
        body=payload["body"],
        ingest_endpoint_id=ingest_endpoint_id,
        title=payload.get("title") or None,
        group=payload.get("group") or None,
        priority=priority if priority is not None else DEFAULT_PRIORITY,
        tags=tuple(str(tag) for tag in payload.get("tags") or []),
        url=payload.get("url") or None,
        extras=dict(payload.get("extras") or {}),
        content_type=content_type,
        remote_ip=remote_ip,
        user_agent=user_agent,
        headers={k: v for k, v in (headers or {}).items() if k.lower() not in REDACTED_HEADERS},
        query=dict(query or {}),
    )
