"""Credential checks and forwarding-loop bound shared by both modes."""

from __future__ import annotations

import re
from typing import Any, Iterable

from beacon_edge.config import EdgeConfig
from beacon_edge.errors import ConfigError, LoopDetected, NotAuthenticated

INGEST_KEY_HEADER = "X-Beacon-Ingest-Key"
HOP_HEADER = "X-Beacon-Edge-Hop"

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def constant_time_equal(a: Any, b: Any) -> bool:
    """Compare two secrets without an early exit on the first differing byte.

    Only the length check is allowed to return early.
    """
    left = str(a or "").encode("utf-8")
    right = str(b or "").encode("utf-8")
    if len(left) != len(right):
        return False
    acc = 0
    for x, y in zip(left, right):
        acc |= x ^ y
    return acc == 0


def any_key_matches(presented: Any, allowed_keys: Iterable[str]) -> bool:
    value = str(presented or "").strip()
    if not value:
        return False
    matched = False
    for key in allowed_keys:
        # no break: every configured key is compared
        if constant_time_equal(value, key):
            matched = True
    return matched


def normalize_endpoint_id(value: Any) -> str:
    return str(value or "").replace("-", "")


def authenticate_edge(presented_key: Any, endpoint_id: str, config: EdgeConfig) -> None:
    if not config.ingest_keys:
        raise ConfigError("missing EDGE_INGEST_KEYS")
    if not any_key_matches(presented_key, config.ingest_keys):
        raise NotAuthenticated()
    if config.expect_endpoint_id and config.expect_endpoint_id != endpoint_id:
        raise NotAuthenticated()


def parse_hop(raw: Any) -> int:
    if raw is None:
        return 0
    match = _LEADING_INT_RE.match(str(raw))
    if match is None:
        return 0
    return int(match.group(1))


def next_hop_count(raw: Any, max_hops: int) -> int:
    hop_count = parse_hop(raw) + 1
    if hop_count > max_hops:
        raise LoopDetected()
    return hop_count
