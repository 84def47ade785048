"""Routing configuration snapshot and the store it is fetched from."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

from beacon_edge.errors import ConfigError

CONFIG_KEY = "config"


@dataclass(frozen=True)
class Endpoint:
    id: str
    name: str
    secret: str


@dataclass(frozen=True)
class Channel:
    id: str
    type: str
    name: str
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    filter: dict[str, Any]
    channel_id: str
    payload_template: Any


@dataclass(frozen=True)
class RoutingConfig:
    endpoints: tuple[Endpoint, ...]
    channels: tuple[Channel, ...]
    rules: tuple[Rule, ...]
    version: str = ""

    def find_endpoint(self, endpoint_id: str) -> Optional[Endpoint]:
        wanted = endpoint_id.replace("-", "")
        for endpoint in self.endpoints:
            if endpoint.id.replace("-", "") == wanted:
                return endpoint
        return None

    def channel_map(self) -> dict[str, Channel]:
        return {channel.id: channel for channel in self.channels}


def _as_list(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def _as_str(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw)


def parse_routing_config(raw: Any) -> RoutingConfig:
    if not isinstance(raw, dict):
        raise ConfigError("edge config must be a JSON object")

    endpoints = tuple(
        Endpoint(id=_as_str(item.get("id")), name=_as_str(item.get("name")), secret=_as_str(item.get("token_hash")))
        for item in _as_list(raw.get("ingest_endpoints"))
        if item.get("id")
    )
    channels = tuple(
        Channel(
            id=_as_str(item.get("id")),
            type=_as_str(item.get("type")).strip().lower(),
            name=_as_str(item.get("name")),
            config=item.get("config") if isinstance(item.get("config"), dict) else {},
        )
        for item in _as_list(raw.get("channels"))
        if item.get("id")
    )
    rules = tuple(
        Rule(
            id=_as_str(item.get("id")),
            name=_as_str(item.get("name")),
            filter=item.get("filter") if isinstance(item.get("filter"), dict) else {},
            channel_id=_as_str(item.get("channel_id")),
            payload_template=item.get("payload_template") if item.get("payload_template") is not None else {},
        )
        for item in _as_list(raw.get("rules"))
    )
    return RoutingConfig(endpoints=endpoints, channels=channels, rules=rules, version=_as_str(raw.get("version")))


class ConfigStore(Protocol):
    """Key-value store holding the routing configuration document."""

    async def get(self, key: str) -> Any:
        ...


class StaticConfigStore:
    def __init__(self, documents: dict[str, Any]) -> None:
        self.documents = documents

    async def get(self, key: str) -> Any:
        return self.documents.get(key)


class JsonFileConfigStore:
    """Serves the routing document from a JSON file; every key maps to the same file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read(self) -> Any:
        if not self.path.is_file():
            return None
        return json.loads(self.path.read_text(encoding="utf-8"))

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self._read)


class RoutingConfigCache:
    def __init__(self, store: ConfigStore, ttl_seconds: float = 60.0) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.logger = logging.getLogger("beacon-edge.routing")
        self._cached: Optional[RoutingConfig] = None
        self._loaded_at = 0.0

    async def get(self, now: float | None = None) -> Optional[RoutingConfig]:
        """Return the current snapshot, or None when no usable config is available."""
        now = now if now is not None else time.monotonic()
        if self._cached is not None and self.ttl_seconds > 0 and now - self._loaded_at < self.ttl_seconds:
            return self._cached

        try:
            raw = await self.store.get(CONFIG_KEY)
        except Exception as exc:
            self.logger.error("config store read failed", extra={"error": str(exc)})
            return None
        if not raw:
            return None

        try:
            snapshot = parse_routing_config(raw)
        except ConfigError as exc:
            self.logger.error("config store returned an invalid document", extra={"error": exc.message})
            return None

        self._cached = snapshot
        self._loaded_at = now
        return snapshot
