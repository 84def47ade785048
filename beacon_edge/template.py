from __future__ import annotations

import json
import re
from typing import Any, Mapping

from beacon_edge.message import DEFAULT_PRIORITY, Message
from beacon_edge.routing import Endpoint

VAR_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_.]+)\s*\}\}")


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def lookup(path: str, context: Any) -> Any:
    current = context
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


def render_string(text: str, context: Any) -> str:
    return VAR_RE.sub(lambda m: stringify(lookup(m.group(1), context)), text)


def render_template(value: Any, context: Any) -> Any:
    """Substitute ``{{ dotted.path }}`` tokens through strings, lists and mappings."""
    if isinstance(value, str):
        return render_string(value, context)
    if isinstance(value, list):
        return [render_template(item, context) for item in value]
    if isinstance(value, dict):
        return {key: render_template(item, context) for key, item in value.items()}
    return value


def build_template_context(message: Message, endpoint: Endpoint) -> dict[str, Any]:
    return {
        "message": {
            "id": str(message.id or ""),
            "received_at": message.received_at or "",
            "title": message.title or "",
            "body": message.body or "",
            "group": message.group or "",
            "priority": str(message.priority if message.priority is not None else DEFAULT_PRIORITY),
            "tags": ",".join(str(tag) for tag in message.tags),
            "url": message.url or "",
            "extras": {str(k): stringify(v) for k, v in message.extras.items()},
        },
        "request": {
            "content_type": message.content_type or "",
            "remote_ip": message.remote_ip or "",
            "user_agent": message.user_agent or "",
            "headers": dict(message.headers),
            "query": dict(message.query),
        },
        "ingest_endpoint": {
            "id": str(endpoint.id or ""),
            "name": endpoint.name or "",
        },
    }
