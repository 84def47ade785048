"""Request-level failures, each carrying its HTTP status and machine code."""

from __future__ import annotations


class GatewayError(RuntimeError):
    status = 500
    code = "internal_error"
    default_message = "internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_body(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ConfigError(GatewayError):
    status = 500
    code = "misconfigured"
    default_message = "misconfigured"


class NotAuthenticated(GatewayError):
    status = 401
    code = "not_authenticated"
    default_message = "unauthorized"


class LoopDetected(GatewayError):
    status = 508
    code = "loop_detected"
    default_message = "too many hops"


class UnsupportedMediaType(GatewayError):
    status = 415
    code = "unsupported_media_type"
    default_message = "Content-Type must be application/json"


class PayloadTooLarge(GatewayError):
    status = 413
    code = "payload_too_large"
    default_message = "max 1MB"


class BadRequest(GatewayError):
    status = 400
    code = "bad_request"
    default_message = "bad request"


class ValidationFailed(GatewayError):
    status = 422
    code = "validation_error"
    default_message = "validation failed"


class UpstreamUnavailable(GatewayError):
    status = 502
    code = "bad_gateway"
    default_message = "upstream unavailable"
