from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from beacon_edge.errors import ConfigError

DEFAULT_MAX_HOPS = 5


def env_str_any(env: Mapping[str, str], names: list[str]) -> str:
    """Return the first non-blank value among ``names`` and their hyphenated spellings."""
    for name in names:
        for key in (name, name.replace("_", "-")):
            raw = env.get(key)
            if raw is not None and str(raw).strip():
                return str(raw).strip()
    return ""


def parse_csv_list(raw: Any) -> list[str]:
    if not isinstance(raw, str):
        return []
    return [item.strip() for item in raw.split(",") if item and item.strip()]


def parse_int(raw: Any, fallback: int) -> int:
    try:
        return int(str(raw).strip())
    except Exception:
        return fallback


def parse_non_negative_float(raw: Any, fallback: float) -> float:
    try:
        value = float(str(raw).strip())
    except Exception:
        return fallback
    if value < 0:
        return fallback
    return value


def resolve_upstream_ingest_url(env: Mapping[str, str]) -> str:
    url = env_str_any(env, ["UPSTREAM_INGEST_URL"])
    if url:
        return url

    base = env_str_any(env, ["UPSTREAM_BASE_URL"])
    endpoint_id = env_str_any(env, ["UPSTREAM_ENDPOINT_ID"])
    if base and endpoint_id:
        return f"{base.rstrip('/')}/api/ingest/{endpoint_id}"
    return ""


@dataclass(frozen=True)
class EdgeConfig:
    port: int
    log_level: str
    ingest_keys: tuple[str, ...]
    expect_endpoint_id: str
    max_hops: int
    edge_name: str
    upstream_ingest_key: str
    upstream_ingest_url: str
    config_path: str
    config_ttl_seconds: float
    dispatch_timeout_seconds: float

    def require_upstream(self) -> tuple[str, str]:
        if not self.upstream_ingest_key:
            raise ConfigError("missing UPSTREAM_INGEST_KEY")
        if not self.upstream_ingest_url:
            raise ConfigError("missing UPSTREAM_INGEST_URL")
        return self.upstream_ingest_key, self.upstream_ingest_url


def load_config_from_env(env: Mapping[str, str]) -> EdgeConfig:
    """Build the immutable edge configuration.

    Missing secrets are not fatal here: they surface per request as
    ``misconfigured`` so that ``/healthz`` keeps answering.
    """
    return EdgeConfig(
        port=parse_int(env_str_any(env, ["PORT"]), 8080),
        log_level=(env_str_any(env, ["LOG_LEVEL"]) or "INFO").upper(),
        ingest_keys=tuple(parse_csv_list(env_str_any(env, ["EDGE_INGEST_KEYS"]))),
        expect_endpoint_id=env_str_any(env, ["EDGE_EXPECT_ENDPOINT_ID"]),
        max_hops=parse_int(env_str_any(env, ["EDGE_MAX_HOPS"]), DEFAULT_MAX_HOPS),
        edge_name=env_str_any(env, ["EDGE_NAME"]),
        upstream_ingest_key=env_str_any(env, ["UPSTREAM_INGEST_KEY"]),
        upstream_ingest_url=resolve_upstream_ingest_url(env),
        config_path=env_str_any(env, ["EDGE_CONFIG_PATH"]),
        config_ttl_seconds=parse_non_negative_float(env_str_any(env, ["EDGE_CONFIG_TTL_SECONDS"]), 60.0),
        dispatch_timeout_seconds=parse_non_negative_float(
            env_str_any(env, ["EDGE_DISPATCH_TIMEOUT_SECONDS"]), 10.0
        ),
    )
