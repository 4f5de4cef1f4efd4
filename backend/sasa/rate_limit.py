"""Rate limiting configuration for the Sasa backend.

Authenticated callers are limited per user id so several users behind one
NAT do not share a budget. Anonymous requests fall back to the client IP,
honoring X-Forwarded-For only from trusted proxies.
"""

import ipaddress
import os

from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

# Override with TRUSTED_PROXY_CIDRS env var (comma-separated CIDRs).
_DEFAULT_TRUSTED_CIDRS = [
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "::1/128",
]

_trusted_networks: list | None = None


def _load_trusted_cidrs() -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
    cidrs = [s.strip() for s in raw.split(",") if s.strip()] if raw else _DEFAULT_TRUSTED_CIDRS
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            continue
    return networks


def _is_trusted_proxy(ip_str: str) -> bool:
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = _load_trusted_cidrs()
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _trusted_networks)


def get_client_ip(request) -> str:
    """Resolve client IP, only honoring X-Forwarded-For from trusted proxies."""
    direct_ip = get_remote_address(request)

    if _is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip

    return direct_ip


def get_rate_limit_key(request) -> str:
    """Key by token subject when a bearer token is present, else by IP.

    The signature is not verified here; an invalid token still fails auth
    in the route, it just gets its own bucket first.
    """
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        try:
            subject = jwt.get_unverified_claims(header[7:].strip()).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"user:{subject}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(key_func=get_rate_limit_key)
