"""Lite mode: the edge node terminates ingest requests and notifies channels itself."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from beacon_edge.dispatch import dispatch_message
from beacon_edge.errors import (
    BadRequest,
    ConfigError,
    GatewayError,
    NotAuthenticated,
    PayloadTooLarge,
    UnsupportedMediaType,
    ValidationFailed,
)
from beacon_edge.guard import INGEST_KEY_HEADER, constant_time_equal
from beacon_edge.message import build_message, validate_payload
from beacon_edge.providers import Transport
from beacon_edge.relay import client_ip
from beacon_edge.routing import RoutingConfigCache

MAX_BODY_BYTES = 1024 * 1024


def media_type(request: Request) -> str:
    return (request.headers.get("content-type") or "").split(";")[0].strip().lower()


async def read_capped_body(request: Request, limit: int = MAX_BODY_BYTES) -> bytes:
    declared = request.headers.get("content-length")
    if declared is not None and declared.strip().isdigit() and int(declared) > limit:
        raise PayloadTooLarge()

    chunks: list[bytes] = []
    size = 0
    try:
        async for chunk in request.stream():
            size += len(chunk)
            if size > limit:
                raise PayloadTooLarge()
            chunks.append(chunk)
    except ClientDisconnect as exc:
        raise BadRequest("failed to read body") from exc
    return b"".join(chunks)


def parse_json_body(raw: bytes) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (ValueError, RecursionError) as exc:
        raise BadRequest("invalid JSON") from exc


class LiteGateway:
    def __init__(self, routing: RoutingConfigCache, transport: Transport) -> None:
        self.routing = routing
        self.transport = transport
        self.logger = logging.getLogger("beacon-edge.lite")

    async def ingest(self, request: Request, endpoint_id: str) -> JSONResponse:
        try:
            return await self._ingest(request, endpoint_id)
        except GatewayError as exc:
            self.logger.warning("ingest rejected", extra={"code": exc.code, "endpointId": endpoint_id})
            raise

    async def _ingest(self, request: Request, endpoint_id: str) -> JSONResponse:
        content_type = media_type(request)
        if content_type != "application/json":
            raise UnsupportedMediaType()

        routing = await self.routing.get()
        if routing is None:
            raise ConfigError("edge config not loaded")

        endpoint = routing.find_endpoint(endpoint_id)
        if endpoint is None:
            raise NotAuthenticated()

        presented = (request.headers.get(INGEST_KEY_HEADER) or "").strip()
        if not presented or not constant_time_equal(presented, endpoint.secret):
            raise NotAuthenticated()

        payload = parse_json_body(await read_capped_body(request))

        reason = validate_payload(payload)
        if reason is not None:
            raise ValidationFailed(reason)

        message = build_message(
            payload,
            ingest_endpoint_id=endpoint.id,
            content_type=content_type,
            remote_ip=client_ip(request),
            user_agent=request.headers.get("user-agent") or "",
            headers=dict(request.headers),
            query=dict(request.query_params),
        )

        outcome = await dispatch_message(message, endpoint, routing, self.transport)
        self.logger.info(
            "ingest accepted",
            extra={
                "messageId": message.id,
                "matchedRules": outcome.matched_rules,
                "dispatched": len(outcome.results),
                "configVersion": routing.version,
            },
        )
        return JSONResponse(status_code=201, content=outcome.to_dict(message.id))
