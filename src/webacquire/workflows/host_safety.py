"""Refuse targets that resolve to private, internal or denylisted addresses."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from .fetcher_config import DENYLIST_HOSTS, DENYLIST_SUFFIXES
from .fetcher_utils import domain_matches, idna_normalize

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[Sequence[str]]]

REASON_INVALID_HOST = "invalid_host"
REASON_DENYLISTED = "denylisted_host"
REASON_DNS_FAILED = "dns_resolution_failed"

_METADATA_ADDRESSES = frozenset({
    ipaddress.ip_address("169.254.169.254"),
    ipaddress.ip_address("fd00:ec2::254"),
})


@dataclass(frozen=True)
class HostCheck:
    blocked: bool
    reason: Optional[str] = None
    addresses: tuple = ()


def classify_address(address: str) -> Optional[str]:
    """Return a block reason for a non-public IP literal, else None."""

    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return REASON_INVALID_HOST
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if ip in _METADATA_ADDRESSES:
        return "metadata_address"
    if ip.is_loopback:
        return "loopback_address"
    if ip.is_link_local:
        return "link_local_address"
    if ip.is_private:
        return "private_address"
    if ip.is_multicast:
        return "multicast_address"
    if ip.is_unspecified:
        return "unspecified_address"
    if ip.is_reserved:
        return "reserved_address"
    return None


def _literal_ip(host: str) -> Optional[str]:
    candidate = host.strip("[]")
    try:
        ipaddress.ip_address(candidate.split("%", 1)[0])
    except ValueError:
        return None
    return candidate


async def _system_resolver(host: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


class HostSafetyFilter:
    """Predicate over hostnames; resolves names and inspects every address.

    ``check`` never raises: resolution failures and malformed input come back
    as ``HostCheck(blocked=True, reason=...)``.
    """

    def __init__(
        self,
        *,
        denylist: Iterable[str] = (),
        resolver: Optional[Resolver] = None,
    ) -> None:
        self._denylist = tuple(DENYLIST_HOSTS) + tuple(DENYLIST_SUFFIXES) + tuple(
            idna_normalize(h) for h in denylist if h
        )
        self._resolver: Resolver = resolver or _system_resolver

    async def check(self, hostname: str) -> HostCheck:
        literal = _literal_ip(hostname or "")
        if literal is not None:
            reason = classify_address(literal)
            return HostCheck(blocked=reason is not None, reason=reason, addresses=(literal,))

        host = idna_normalize(hostname)
        if not host or any(ch in host for ch in "/@: "):
            return HostCheck(blocked=True, reason=REASON_INVALID_HOST)
        if domain_matches(host, self._denylist):
            return HostCheck(blocked=True, reason=REASON_DENYLISTED)

        try:
            addresses = tuple(dict.fromkeys(await self._resolver(host)))
        except Exception as exc:
            logger.info("DNS resolution failed for %s: %s", host, exc.__class__.__name__)
            return HostCheck(blocked=True, reason=REASON_DNS_FAILED)
        if not addresses:
            return HostCheck(blocked=True, reason=REASON_DNS_FAILED)

        for address in addresses:
            reason = classify_address(address)
            if reason is not None:
                logger.warning("Refusing %s: resolves to %s (%s)", host, address, reason)
                return HostCheck(blocked=True, reason=reason, addresses=addresses)
        return HostCheck(blocked=False, addresses=addresses)


__all__ = ["HostCheck", "HostSafetyFilter", "classify_address", "REASON_DNS_FAILED"]
