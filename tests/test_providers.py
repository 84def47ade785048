from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from beacon_edge.message import Message
from beacon_edge.providers import (
    FirstWriterHeaders,
    HttpxTransport,
    ProviderConfigError,
    build_bark_payload,
    build_bark_push_url,
    build_bark_request,
    build_ntfy_request,
)

NTFY = {"server_base_url": "https://ntfy.sh", "topic": "t"}


def _message(**overrides) -> Message:
    fields = {"id": "m", "received_at": "2026-01-01T00:00:00Z", "body": "x", "ingest_endpoint_id": "ep"}
    fields.update(overrides)
    return Message(**fields)


@pytest.mark.parametrize("base", ["https://h", "https://h/", "https://h/push", "https://h/push/", " https://h// "])
def test_bark_push_url_normalizes_and_is_idempotent(base) -> None:
    once = build_bark_push_url(base)
    assert once == "https://h/push"
    assert build_bark_push_url(once) == once


def test_bark_payload_merges_defaults_and_rendered() -> None:
    payload = build_bark_payload(
        {"device_key": "dk", "default_payload_json": {"sound": "bell", "body": "default"}},
        {"body": "rendered body", "title": "rendered title"},
        _message(body="msg body", title="msg title"),
    )
    assert payload == {"sound": "bell", "body": "rendered body", "title": "rendered title", "device_key": "dk"}


def test_bark_payload_falls_back_to_message() -> None:
    payload = build_bark_payload({"device_key": "dk"}, {}, _message(body="msg body", title="msg title"))
    assert payload["body"] == "msg body"
    assert payload["title"] == "msg title"


def test_bark_payload_ignores_non_mapping_render() -> None:
    payload = build_bark_payload({}, ["not", "a", "mapping"], _message(body="b"))
    assert payload == {"body": "b"}


def test_bark_device_keys_always_win() -> None:
    payload = build_bark_payload(
        {"device_key": "dk", "device_keys": ["a", "b"], "default_payload_json": {"device_key": "default"}},
        {"device_key": "rendered", "device_keys": []},
        _message(),
    )
    assert payload["device_key"] == "dk"
    assert payload["device_keys"] == ["a", "b"]


def test_bark_request() -> None:
    request = build_bark_request({"server_base_url": "https://bark.example.com/", "device_key": "dk"}, {}, _message())
    assert request.url == "https://bark.example.com/push"
    assert request.method == "POST"
    assert request.headers == {"Content-Type": "application/json"}
    assert json.loads(request.body) == {"body": "x", "device_key": "dk"}


def test_bark_request_requires_server() -> None:
    with pytest.raises(ProviderConfigError, match="missing_server_base_url"):
        build_bark_request({"device_key": "dk"}, {}, _message())


def test_ntfy_url_and_body() -> None:
    request = build_ntfy_request(
        {"server_base_url": "https://ntfy.sh/", "topic": "/test-topic"}, {"body": "hello"}, _message(body="fallback")
    )
    assert request.url == "https://ntfy.sh/test-topic"
    assert request.body == b"hello"


def test_ntfy_body_resolution_order() -> None:
    assert build_ntfy_request(NTFY, {"message": "m", "text": "t"}, _message()).body == b"m"
    assert build_ntfy_request(NTFY, {"text": "t"}, _message()).body == b"t"
    assert build_ntfy_request(NTFY, {}, _message(body="fallback")).body == b"fallback"
    assert build_ntfy_request(NTFY, "scalar", _message(body="fallback")).body == b"fallback"


def test_ntfy_missing_server_and_topic_are_distinct() -> None:
    with pytest.raises(ProviderConfigError, match="missing_server_base_url"):
        build_ntfy_request({"topic": "t"}, {}, _message())
    with pytest.raises(ProviderConfigError, match="missing_topic"):
        build_ntfy_request({"server_base_url": "https://ntfy.sh", "topic": "  "}, {}, _message())


def test_ntfy_bearer_token_beats_basic_auth() -> None:
    request = build_ntfy_request(
        {**NTFY, "access_token": "tok123", "username": "u", "password": "p"}, {"body": "hi"}, _message()
    )
    assert request.headers["Authorization"] == "Bearer tok123"


def test_ntfy_basic_auth() -> None:
    request = build_ntfy_request({**NTFY, "username": "u", "password": "p"}, {}, _message())
    assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"u:p").decode()


def test_ntfy_priority_mapping() -> None:
    assert build_ntfy_request(NTFY, {}, _message(priority=5)).headers["Priority"] == "urgent"
    assert build_ntfy_request(NTFY, {}, _message(priority=1)).headers["Priority"] == "min"
    assert "Priority" not in build_ntfy_request(NTFY, {}, _message(priority=3)).headers
    assert build_ntfy_request(NTFY, {"priority": 4}, _message(priority=1)).headers["Priority"] == "4"


def test_ntfy_title_and_tags() -> None:
    headers = build_ntfy_request(NTFY, {"title": "My Title", "tags": ["a", " ", "b"]}, _message(title="t")).headers
    assert headers["Title"] == "My Title"
    assert headers["Tags"] == "a,b"

    fallback = build_ntfy_request(NTFY, {"title": "  "}, _message(title="msg", tags=("x", "y"))).headers
    assert fallback["Title"] == "msg"
    assert fallback["Tags"] == "x,y"

    assert build_ntfy_request(NTFY, {"tags": "warning"}, _message(tags=("x",))).headers["Tags"] == "warning"


def test_ntfy_passthrough_headers() -> None:
    headers = build_ntfy_request(
        NTFY,
        {"click": "https://c", "icon": "https://i", "attach": "https://a", "markdown": True},
        _message(),
    ).headers
    assert headers["Click"] == "https://c"
    assert headers["Icon"] == "https://i"
    assert headers["Attach"] == "https://a"
    assert headers["Markdown"] == "true"

    assert "Markdown" not in build_ntfy_request(NTFY, {"markdown": "true"}, _message()).headers


def test_ntfy_default_headers_win() -> None:
    headers = build_ntfy_request(
        {**NTFY, "default_headers_json": {"title": "Default", "Icon": "https://icon", "X-Empty": " ", "X-N": None}},
        {"title": "Rendered", "icon": "https://other"},
        _message(),
    ).headers
    assert headers["title"] == "Default"
    assert "Title" not in headers
    assert headers["Icon"] == "https://icon"
    assert "X-Empty" not in headers
    assert "X-N" not in headers


def test_first_writer_headers() -> None:
    headers = FirstWriterHeaders()
    headers.offer("Title", None)
    headers.offer("Title", "first")
    headers.offer("TITLE", "second")
    headers.offer("Tags", "a")
    assert headers.get("title") == "first"
    assert headers.as_dict() == {"Title": "first", "Tags": "a"}


def test_httpx_transport_returns_status() -> None:
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, str(request.url), request.headers.get("Title"), await request.aread()))
        return httpx.Response(202)

    async def run() -> int:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpxTransport(client).send("https://ntfy.sh/t", "POST", {"Title": "x"}, b"hi")

    assert asyncio.run(run()) == 202
    assert seen == [("POST", "https://ntfy.sh/t", "x", b"hi")]
