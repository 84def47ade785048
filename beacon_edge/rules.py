"""Filter evaluation for routing rules.

Every dimension present in a filter is checked independently and the
results are AND-ed; a dimension that is absent always passes.
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping, Optional

from beacon_edge.message import DEFAULT_PRIORITY, Message


def _as_mapping(raw: Any) -> Mapping[str, Any]:
    return raw if isinstance(raw, Mapping) else {}


def _parse_bound(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    if isinstance(raw, (int, float)):
        return int(raw)
    match = re.match(r"^\s*([+-]?\d+)", str(raw))
    if match is None:
        return None
    return int(match.group(1))


def _endpoint_ok(ids: Any, message: Message) -> bool:
    allowed = {str(item) for item in ids} if isinstance(ids, (list, tuple, set)) else set()
    return str(message.ingest_endpoint_id or "") in allowed


def _contains_ok(contains: Any, message: Message) -> bool:
    hay = (message.body or "").lower()
    needles = [str(item).lower() for item in contains] if isinstance(contains, list) else []
    needles = [needle for needle in needles if needle.strip()]
    if not needles:
        return True
    return any(needle in hay for needle in needles)


def _regex_ok(pattern: Any, message: Message) -> bool:
    try:
        compiled = re.compile(str(pattern), re.IGNORECASE)
    except re.error:
        return False
    return compiled.search(message.body or "") is not None


def _priority_ok(priority_filter: Mapping[str, Any], message: Message) -> bool:
    priority = message.priority or DEFAULT_PRIORITY

    if priority_filter.get("min") is not None:
        lower = _parse_bound(priority_filter.get("min"))
        if lower is not None and priority < lower:
            return False

    if priority_filter.get("max") is not None:
        upper = _parse_bound(priority_filter.get("max"))
        if upper is not None and priority > upper:
            return False

    return True


def _tags_ok(tags: list[Any], message: Message) -> bool:
    message_tags = {str(tag).lower() for tag in message.tags}
    return any(str(tag).lower() in message_tags for tag in tags)


def matches(filter_json: Any, message: Message) -> bool:
    f = _as_mapping(filter_json)

    if f.get("ingest_endpoint_ids") is not None and not _endpoint_ok(f.get("ingest_endpoint_ids"), message):
        return False

    body_filter = _as_mapping(f.get("body"))
    if body_filter.get("contains") is not None and not _contains_ok(body_filter.get("contains"), message):
        return False

    regex = body_filter.get("regex")
    if regex is not None and str(regex).strip() and not _regex_ok(regex, message):
        return False

    if not _priority_ok(_as_mapping(f.get("priority")), message):
        return False

    tags = f.get("tags")
    if isinstance(tags, list) and tags and not _tags_ok(tags, message):
        return False

    group = f.get("group")
    if group is not None and (message.group or "") != str(group):
        return False

    return True
