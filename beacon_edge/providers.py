"""Bark and ntfy request builders plus the outbound transport they are sent through."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

import httpx

from beacon_edge.message import DEFAULT_PRIORITY, Message

NTFY_PRIORITY_NAMES = {1: "min", 2: "low", 3: "default", 4: "high", 5: "urgent"}


class ProviderConfigError(ValueError):
    """Raised while building a provider request, before any network access."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class Transport(Protocol):
    async def send(self, url: str, method: str, headers: Mapping[str, str], body: bytes) -> int:
        ...


class HttpxTransport:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def send(self, url: str, method: str, headers: Mapping[str, str], body: bytes) -> int:
        response = await self.client.request(method, url, headers=dict(headers), content=body)
        await response.aclose()
        return response.status_code


class FirstWriterHeaders:
    """Ordered, case-insensitive header mapping where the first value offered for a name sticks."""

    def __init__(self) -> None:
        self._items: dict[str, tuple[str, str]] = {}

    def offer(self, name: str, value: Optional[str]) -> None:
        if value is None:
            return
        self._items.setdefault(name.lower(), (name, value))

    def get(self, name: str) -> Optional[str]:
        item = self._items.get(name.lower())
        return item[1] if item else None

    def as_dict(self) -> dict[str, str]:
        return {name: value for name, value in self._items.values()}


def _as_dict(raw: Any) -> dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


def coerce_header_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return str(value)


def _join_tags(tags: Any) -> str:
    return ",".join(text for text in (str(tag).strip() for tag in tags) if text)


# Bark


def build_bark_push_url(server_base_url: str) -> str:
    base = (server_base_url or "").strip().rstrip("/")
    if base.endswith("/push"):
        base = base[: -len("/push")]
    return base.rstrip("/") + "/push"


def build_bark_payload(channel_config: Mapping[str, Any], rendered: Any, message: Message) -> dict[str, Any]:
    payload: dict[str, Any] = dict(_as_dict(channel_config.get("default_payload_json")))

    if isinstance(rendered, dict):
        payload.update(rendered)

    if not payload.get("body") and message.body:
        payload["body"] = message.body
    if not payload.get("title") and message.title:
        payload["title"] = message.title

    if channel_config.get("device_key") is not None:
        payload["device_key"] = channel_config["device_key"]
    if channel_config.get("device_keys") is not None:
        payload["device_keys"] = channel_config["device_keys"]

    return payload


def build_bark_request(channel_config: Mapping[str, Any], rendered: Any, message: Message) -> ProviderRequest:
    server_base_url = str(channel_config.get("server_base_url") or "").strip()
    if not server_base_url:
        raise ProviderConfigError("missing_server_base_url")

    payload = build_bark_payload(channel_config, rendered, message)
    return ProviderRequest(
        url=build_bark_push_url(server_base_url),
        headers={"Content-Type": "application/json"},
        body=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
    )


# ntfy


def _ntfy_tags(rendered_tags: Any, message: Message) -> Optional[str]:
    if isinstance(rendered_tags, list):
        return _join_tags(rendered_tags) or None
    scalar = coerce_header_value(rendered_tags)
    if scalar is not None:
        return scalar
    return _join_tags(message.tags) or None


def _ntfy_priority(rendered_priority: Any, message: Message) -> Optional[str]:
    scalar = coerce_header_value(rendered_priority)
    if scalar is not None:
        return scalar
    if message.priority and message.priority != DEFAULT_PRIORITY:
        return NTFY_PRIORITY_NAMES.get(message.priority)
    return None


def _ntfy_authorization(channel_config: Mapping[str, Any]) -> Optional[str]:
    token = str(channel_config.get("access_token") or "").strip()
    if token:
        return f"Bearer {token}"
    username = str(channel_config.get("username") or "").strip()
    password = str(channel_config.get("password") or "").strip()
    if username and password:
        encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"
    return None


def build_ntfy_request(channel_config: Mapping[str, Any], rendered: Any, message: Message) -> ProviderRequest:
    server_base_url = str(channel_config.get("server_base_url") or "").strip()
    topic = str(channel_config.get("topic") or "").strip()
    if not server_base_url:
        raise ProviderConfigError("missing_server_base_url")
    if not topic:
        raise ProviderConfigError("missing_topic")

    url = server_base_url.rstrip("/") + "/" + topic.lstrip("/")
    fields = _as_dict(rendered)

    body_value = next(
        (fields[key] for key in ("body", "message", "text") if fields.get(key) is not None),
        None,
    )
    body = coerce_header_value(body_value)
    if body is None:
        body = message.body or ""

    headers = FirstWriterHeaders()
    for name, value in _as_dict(channel_config.get("default_headers_json")).items():
        name = str(name).strip()
        if name:
            headers.offer(name, coerce_header_value(value))

    headers.offer("Title", coerce_header_value(fields.get("title")) or message.title or None)
    headers.offer("Tags", _ntfy_tags(fields.get("tags"), message))
    headers.offer("Priority", _ntfy_priority(fields.get("priority"), message))
    headers.offer("Click", coerce_header_value(fields.get("click")))
    headers.offer("Icon", coerce_header_value(fields.get("icon")))
    headers.offer("Attach", coerce_header_value(fields.get("attach")))
    if fields.get("markdown") is True:
        headers.offer("Markdown", "true")
    headers.offer("Authorization", _ntfy_authorization(channel_config))

    return ProviderRequest(url=url, headers=headers.as_dict(), body=body.encode("utf-8"))


BUILDERS = {
    "bark": build_bark_request,
    "ntfy": build_ntfy_request,
}
