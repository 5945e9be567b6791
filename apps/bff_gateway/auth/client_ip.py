"""Originating client address for audit logging.

Resolved once per request by the request gate and carried on
``RequestContext.client_ip``; login, logout, eviction and CSRF rejection
logs all read it from there.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable

from starlette.types import Scope

from apps.bff_gateway.config import TrustedProxy

UNKNOWN_CLIENT = "unknown"

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class ClientIpResolver:
    """Picks the client address out of the peer and ``X-Forwarded-For``.

    The forwarded header is honoured only when the TCP peer is one of the
    trusted proxies. It is then read right-to-left, skipping trusted hops
    and malformed entries; the first remaining address is the client.
    """

    def __init__(self, trusted_proxies: Iterable[TrustedProxy] = ()) -> None:
        self.trusted_networks: tuple[IPNetwork, ...] = tuple(
            ipaddress.ip_network(str(proxy), strict=False) for proxy in trusted_proxies
        )

    def is_trusted(self, address: str) -> bool:
        try:
            parsed = ipaddress.ip_address(address)
        except ValueError:
            return False
        return any(parsed in network for network in self.trusted_networks)

    def resolve(self, peer: str | None, forwarded_for: str | None = None) -> str:
        if not peer:
            return UNKNOWN_CLIENT
        if not forwarded_for or not self.is_trusted(peer):
            return peer

        hops = [hop.strip() for hop in forwarded_for.split(",")]
        for hop in reversed(hops):
            if not hop or self.is_trusted(hop):
                continue
            try:
                ipaddress.ip_address(hop)
            except ValueError:
                continue
            return hop
        return peer

    def from_scope(self, scope: Scope) -> str:
        client = scope.get("client")
        peer = client[0] if client else None
        forwarded_for: str | None = None
        for name, value in scope.get("headers", []):
            if name == b"x-forwarded-for":
                forwarded_for = value.decode("latin-1")
                break
        return self.resolve(peer, forwarded_for)


__all__ = ["ClientIpResolver", "UNKNOWN_CLIENT"]
