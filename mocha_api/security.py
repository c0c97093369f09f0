"""Security Validator - Rejects dangerous URLs before any network activity.

Two checks run against every URL an execution is about to send:

1. Scheme: only http and https are allowed, unconditionally.
2. Target: loopback, private, link-local and unspecified addresses are
   refused unless the client allows localhost. The host is checked after
   resolution, so alternate spellings of 127.0.0.1 (2130706433, 0x7f000001,
   0177.0.0.1, 127.1, ::ffff:127.0.0.1) and names that resolve to a private
   address are caught too.

check_url() reports a violation as a value; validate_url() raises it.
"""

from __future__ import annotations

import ipaddress
import re
import socket
from typing import Callable
from urllib.parse import urlsplit

from mocha_api.errors import SecurityViolation

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
Resolver = Callable[[str], list[str]]

ALLOWED_SCHEMES = frozenset({"http", "https"})

# Names that always mean this machine, whatever the resolver says.
LOCAL_HOSTNAMES = frozenset({
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
})

# inet_aton accepts the legacy numeric forms (decimal, hex, octal, short).
# Only hand it strings made of those characters: glibc stops parsing at
# whitespace and would otherwise accept trailing junk.
_NUMERIC_HOST = re.compile(r"^[0-9a-fA-FxX.]+$")
_BAD_NETLOC_CHARS = re.compile(r"[\\\s\x00-\x1f\x7f]")


def resolve_host(host: str) -> list[str]:
    """Resolve a host name to its addresses. Unresolvable names yield []."""
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError, OSError):
        # The transport reports the DNS failure when it tries to connect.
        return []
    return [info[4][0] for info in infos]


def parse_ip_literal(host: str) -> IPAddress | None:
    """Parse ``host`` as an IP address, including legacy IPv4 spellings.

    Returns None when ``host`` is a name rather than an address.
    """
    host = host.rstrip(".")
    try:
        return ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        pass
    if _NUMERIC_HOST.match(host) and any(c.isdigit() for c in host):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    return None


def is_private_address(address: IPAddress) -> bool:
    """True for addresses that reach this machine or a private network."""
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
    )


def check_url(
    url: str,
    *,
    allow_localhost: bool = False,
    resolver: Resolver = resolve_host,
) -> SecurityViolation | None:
    """Return a SecurityViolation describing why ``url`` is refused, or None."""
    try:
        parts = urlsplit(url)
    except ValueError as e:
        return SecurityViolation(url, f"unparseable URL ({e})")

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return SecurityViolation(url, f"scheme {scheme or '(none)'!r} is not allowed")

    if _BAD_NETLOC_CHARS.search(parts.netloc):
        return SecurityViolation(url, "host contains invalid characters")

    try:
        host = parts.hostname
    except ValueError as e:
        return SecurityViolation(url, f"invalid host ({e})")
    if not host:
        return SecurityViolation(url, "URL has no host")

    if allow_localhost:
        return None

    host = host.rstrip(".")
    if host in LOCAL_HOSTNAMES or host.endswith(".localhost"):
        return SecurityViolation(url, f"host {host!r} is a loopback name")

    literal = parse_ip_literal(host)
    if literal is not None:
        if is_private_address(literal):
            return SecurityViolation(url, f"address {literal} is loopback or private")
        return None

    for resolved in resolver(host):
        address = parse_ip_literal(resolved)
        if address is not None and is_private_address(address):
            return SecurityViolation(
                url, f"host {host!r} resolves to loopback or private address {address}"
            )
    return None


def validate_url(
    url: str,
    *,
    allow_localhost: bool = False,
    resolver: Resolver = resolve_host,
) -> None:
    """Raise SecurityViolation if ``url`` must not be requested."""
    violation = check_url(url, allow_localhost=allow_localhost, resolver=resolver)
    if violation is not None:
        raise violation
