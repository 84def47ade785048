from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from beacon_edge.message import Message
from beacon_edge.providers import BUILDERS, ProviderConfigError, ProviderRequest, Transport
from beacon_edge.routing import Channel, Endpoint, Rule, RoutingConfig
from beacon_edge.rules import matches
from beacon_edge.template import build_template_context, render_template

logger = logging.getLogger("beacon-edge.dispatch")


@dataclass(frozen=True)
class DispatchResult:
    rule_id: str
    channel_id: str
    channel_type: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "rule": self.rule_id,
            "channel": self.channel_id,
            "type": self.channel_type,
            "ok": self.ok,
        }
        if self.error is not None:
            out["error"] = self.error
        else:
            out["status"] = self.status
        return out


@dataclass
class DispatchOutcome:
    matched_rules: int
    results: list[DispatchResult] = field(default_factory=list)

    def to_dict(self, message_id: str) -> dict[str, Any]:
        return {
            "message_id": message_id,
            "matched_rules": self.matched_rules,
            "dispatched": len(self.results),
            "results": [result.to_dict() for result in self.results],
        }


def describe_error(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


async def send_one(
    rule: Rule,
    channel: Channel,
    request: ProviderRequest,
    transport: Transport,
    results: list[DispatchResult],
) -> None:
    try:
        status = await transport.send(request.url, request.method, request.headers, request.body)
    except Exception as exc:
        error = describe_error(exc)
        logger.warning(
            "channel dispatch failed",
            extra={"rule": rule.id, "channel": channel.id, "type": channel.type, "error": error},
        )
        results.append(DispatchResult(rule.id, channel.id, channel.type, ok=False, error=error))
        return

    ok = 200 <= status < 300
    if not ok:
        logger.warning(
            "channel rejected notification",
            extra={"rule": rule.id, "channel": channel.id, "type": channel.type, "status": status},
        )
    results.append(DispatchResult(rule.id, channel.id, channel.type, ok=ok, status=status))


async def dispatch_message(
    message: Message,
    endpoint: Endpoint,
    routing: RoutingConfig,
    transport: Transport,
) -> DispatchOutcome:
    """Send ``message`` to the channel of every matching rule.

    Rules are evaluated in config order. Sends run concurrently and every one
    of them settles before this returns; results are appended as they settle,
    so their order is not the rule order. Failures are recorded per result and
    never raised.
    """
    matched = [rule for rule in routing.rules if matches(rule.filter, message)]
    outcome = DispatchOutcome(matched_rules=len(matched))

    channels = routing.channel_map()
    context = build_template_context(message, endpoint)
    pending = []

    for rule in matched:
        channel = channels.get(rule.channel_id)
        if channel is None:
            continue
        builder = BUILDERS.get(channel.type)
        if builder is None:
            continue

        rendered = render_template(rule.payload_template, context)
        try:
            request = builder(channel.config, rendered, message)
        except ProviderConfigError as exc:
            outcome.results.append(DispatchResult(rule.id, channel.id, channel.type, ok=False, error=exc.code))
            continue

        pending.append(send_one(rule, channel, request, transport, outcome.results))

    if pending:
        await asyncio.gather(*pending)
    return outcome
