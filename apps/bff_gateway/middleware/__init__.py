"""ASGI middleware for the BFF gateway."""

from apps.bff_gateway.middleware.request_gate import RequestGate
from apps.bff_gateway.middleware.security_headers import SecurityHeadersMiddleware

__all__ = ["RequestGate", "SecurityHeadersMiddleware"]
