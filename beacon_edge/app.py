from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Mapping, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from beacon_edge.config import EdgeConfig, load_config_from_env
from beacon_edge.errors import GatewayError
from beacon_edge.lite import LiteGateway
from beacon_edge.providers import HttpxTransport
from beacon_edge.relay import EdgeRelay
from beacon_edge.routing import ConfigStore, JsonFileConfigStore, RoutingConfigCache

INGEST_PATHS = (
    "/api/ingest/{endpoint_id}",
    "/api/ingest/{endpoint_id}/",
    "/api/i/{endpoint_id}",
    "/api/i/{endpoint_id}/",
)

HTTP_ERROR_CODES = {
    404: ("not_found", "not found"),
    405: ("method_not_allowed", "method not allowed"),
}


def error_response(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"code": code, "message": message})


class AppState:
    def __init__(
        self,
        config: EdgeConfig,
        client: httpx.AsyncClient,
        lite: Optional[LiteGateway] = None,
        relay: Optional[EdgeRelay] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.lite = lite
        self.relay = relay

    @property
    def mode(self) -> str:
        return "lite" if self.lite is not None else "full"


def create_app(
    env: Optional[Mapping[str, str]] = None,
    config_store: Optional[ConfigStore] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the edge application.

    The node runs in lite mode when a routing config store is available
    (passed in, or ``EDGE_CONFIG_PATH`` set); otherwise it relays upstream.
    """
    config = load_config_from_env(os.environ if env is None else env)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger = logging.getLogger("beacon-edge")

    client = httpx.AsyncClient(
        timeout=config.dispatch_timeout_seconds or None,
        follow_redirects=False,
        transport=http_transport,
    )

    if config_store is None and config.config_path:
        config_store = JsonFileConfigStore(config.config_path)

    if config_store is not None:
        routing = RoutingConfigCache(config_store, ttl_seconds=config.config_ttl_seconds)
        state = AppState(config, client, lite=LiteGateway(routing, HttpxTransport(client)))
    else:
        state = AppState(config, client, relay=EdgeRelay(config, client))

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await client.aclose()

    app = FastAPI(title="beacon-edge", version="1.0.0", lifespan=lifespan)
    app.state.edge = state

    @app.get("/healthz")
    async def healthz() -> JSONResponse:
        content: dict[str, Any] = {"ok": True}
        if state.mode == "lite":
            content["mode"] = "lite"
        return JSONResponse(status_code=200, content=content)

    async def ingest(endpoint_id: str, request: Request) -> Response:
        if state.lite is not None:
            return await state.lite.ingest(request, endpoint_id)
        return await state.relay.forward(request, endpoint_id)

    for path in INGEST_PATHS:
        app.add_api_route(path, ingest, methods=["POST"])

    @app.exception_handler(GatewayError)
    async def on_gateway_error(_: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status, content=exc.to_body())

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        code, message = HTTP_ERROR_CODES.get(exc.status_code, ("http_error", str(exc.detail)))
        return error_response(exc.status_code, code, message)

    @app.exception_handler(Exception)
    async def on_error(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("request failed: %s", exc)
        return error_response(500, "internal_error", "internal error")

    logger.info(
        "beacon-edge started",
        extra={
            "mode": state.mode,
            "maxHops": config.max_hops,
            "edgeName": config.edge_name,
        },
    )

    return app


def main() -> None:
    config = load_config_from_env(os.environ)
    uvicorn.run("beacon_edge.app:app", host="0.0.0.0", port=config.port)


app = create_app()
