"""Helpers for pulling audit context out of an incoming request."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)

# Peers allowed to supply X-Real-IP (a reverse proxy on the same host)
TRUSTED_PROXY_HOSTS = frozenset({"127.0.0.1", "::1", "localhost"})

UNKNOWN_IP = "unknown"


def _normalize_ip(value: str) -> str | None:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def get_client_ip(request: Request) -> str:
    """Best-known address of the caller, for throttling and audit rows.

    X-Real-IP is honored only when the direct peer is a local reverse
    proxy. X-Forwarded-For is never trusted since any client can set it.
    Returns "unknown" when the transport exposes no peer address.
    """
    peer = request.client.host if request.client else None

    if peer in TRUSTED_PROXY_HOSTS:
        header = request.headers.get("X-Real-IP")
        if header:
            forwarded = _normalize_ip(header)
            if forwarded:
                return forwarded
            logger.warning(f"Ignoring malformed X-Real-IP from proxy: {header!r}")

    return peer or UNKNOWN_IP


def get_request_path(request: Request) -> str:
    """Path plus query string, as used in audit records."""
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return path
