from __future__ import annotations

import logging
from typing import Iterable, Mapping
from urllib.parse import urlencode

import httpx
from fastapi import Request
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from beacon_edge.config import EdgeConfig
from beacon_edge.errors import GatewayError, UpstreamUnavailable
from beacon_edge.guard import HOP_HEADER, INGEST_KEY_HEADER, authenticate_edge, next_hop_count

EDGE_NAME_HEADER = "X-Beacon-Edge-Name"
CLIENT_IP_HEADER = "X-Beacon-Edge-Client-IP"

COPIED_HEADERS = ("Content-Type", "User-Agent", "Accept")
CLIENT_IP_SOURCES = ("CF-Connecting-IP", "True-Client-IP")
HOP_BY_HOP_HEADERS = {b"connection", b"keep-alive", b"transfer-encoding"}


def build_upstream_url(upstream_ingest_url: str, inbound_params: Iterable[tuple[str, str]]) -> httpx.URL:
    url = httpx.URL(upstream_ingest_url)
    extra = list(inbound_params)
    if not extra:
        return url
    # appended after the upstream's own query, never regrouped by key
    appended = urlencode(extra).encode("ascii")
    query = url.query + b"&" + appended if url.query else appended
    return url.copy_with(query=query)


def client_ip(request: Request) -> str:
    for name in CLIENT_IP_SOURCES:
        value = (request.headers.get(name) or "").strip()
        if value:
            return value
    if request.client is not None and request.client.host:
        return request.client.host
    return ""


def build_forward_headers(
    inbound_headers: Mapping[str, str],
    *,
    upstream_key: str,
    hop_count: int,
    edge_name: str = "",
    client_ip: str = "",
) -> dict[str, str]:
    headers: dict[str, str] = {}
    for name in COPIED_HEADERS:
        value = inbound_headers.get(name)
        if value:
            headers[name] = value

    headers[INGEST_KEY_HEADER] = upstream_key
    headers[HOP_HEADER] = str(hop_count)
    if edge_name:
        headers[EDGE_NAME_HEADER] = edge_name
    if client_ip:
        headers[CLIENT_IP_HEADER] = client_ip
        headers["X-Forwarded-For"] = client_ip
    return headers


class EdgeRelay:
    """Full-mode handler: checks the caller, then streams the request upstream."""

    def __init__(self, config: EdgeConfig, client: httpx.AsyncClient) -> None:
        self.config = config
        self.client = client
        self.logger = logging.getLogger("beacon-edge.relay")

    def _check(self, request: Request, endpoint_id: str) -> tuple[str, str, int]:
        authenticate_edge(request.headers.get(INGEST_KEY_HEADER), endpoint_id, self.config)
        hop_count = next_hop_count(request.headers.get(HOP_HEADER), self.config.max_hops)
        upstream_key, upstream_url = self.config.require_upstream()
        return upstream_key, upstream_url, hop_count

    async def forward(self, request: Request, endpoint_id: str) -> StreamingResponse:
        try:
            upstream_key, upstream_url, hop_count = self._check(request, endpoint_id)
        except GatewayError as exc:
            self.logger.warning("request rejected", extra={"code": exc.code, "endpointId": endpoint_id})
            raise

        target = build_upstream_url(upstream_url, request.query_params.multi_items())
        headers = build_forward_headers(
            request.headers,
            upstream_key=upstream_key,
            hop_count=hop_count,
            edge_name=self.config.edge_name,
            client_ip=client_ip(request),
        )

        upstream_request = self.client.build_request(
            request.method,
            target,
            headers=headers,
            content=request.stream(),
        )
        try:
            upstream = await self.client.send(upstream_request, stream=True, follow_redirects=False)
        except httpx.HTTPError as exc:
            self.logger.error("upstream request failed", extra={"error": str(exc) or type(exc).__name__})
            raise UpstreamUnavailable() from exc

        self.logger.info("request forwarded", extra={"status": upstream.status_code, "hop": hop_count})
        return passthrough_response(upstream)


def passthrough_response(upstream: httpx.Response) -> StreamingResponse:
    response = StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    response.raw_headers = [
        (name.lower(), value)
        for name, value in upstream.headers.raw
        if name.lower() not in HOP_BY_HOP_HEADERS
    ]
    return response
