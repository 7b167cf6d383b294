"""Target URL safety checks for the forwarding proxy."""

import ipaddress
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

DEFAULT_ALLOWED_SCHEMES = ("http", "https")
DEFAULT_BLOCKED_HOSTS = ("localhost", "127.0.0.1", "::1")

_HEX_PART = re.compile(r"^0[xX][0-9a-fA-F]*$")
_OCTAL_PART = re.compile(r"^0[0-7]+$")
_DECIMAL_PART = re.compile(r"^[0-9]+$")


class InvalidHost(ValueError):
    """Raised when a hostname looks numeric but is not a valid address."""


def _parse_ipv4_part(part: str) -> int:
    if _HEX_PART.match(part):
        return int(part[2:] or "0", 16)
    if _OCTAL_PART.match(part):
        return int(part[1:], 8)
    if _DECIMAL_PART.match(part) and not (len(part) > 1 and part.startswith("0")):
        return int(part)
    raise InvalidHost(f"Invalid IPv4 part: {part!r}")


def _ends_in_number(parts: List[str]) -> bool:
    last = parts[-1]
    return bool(_DECIMAL_PART.match(last) or _HEX_PART.match(last))


def canonical_host(hostname: str) -> str:
    """Return the canonical form of ``hostname`` for deny-list comparison.

    Numeric IPv4 spellings accepted by browsers and by ``inet_aton`` collapse
    to a dotted quad, so ``127.1``, ``2130706433``, ``0x7f000001`` and
    ``0177.0.0.1`` all become ``127.0.0.1``. IPv6 literals are compressed and
    a single trailing dot on a name is dropped.

    Raises:
        InvalidHost: If the host ends in a number but is not a valid IPv4 address
    """
    host = hostname.lower().strip("[]")

    if ":" in host:
        try:
            return ipaddress.IPv6Address(host.split("%", 1)[0]).compressed
        except ValueError as e:
            raise InvalidHost(str(e)) from e

    if host.endswith(".") and len(host) > 1:
        host = host[:-1]
    parts = host.split(".")
    if not _ends_in_number(parts):
        return host

    if len(parts) > 4:
        raise InvalidHost(f"Too many IPv4 parts: {hostname!r}")
    numbers = [_parse_ipv4_part(part) for part in parts]
    # Leading parts are single bytes; the last part fills the remaining bytes
    if any(n > 255 for n in numbers[:-1]) or numbers[-1] >= 256 ** (5 - len(numbers)):
        raise InvalidHost(f"IPv4 address out of range: {hostname!r}")
    value = numbers[-1]
    for index, n in enumerate(numbers[:-1]):
        value += n * 256 ** (3 - index)
    return str(ipaddress.IPv4Address(value))


class SafetyValidator:
    """Decides whether a caller-supplied target URL may be fetched.

    The check is a scheme allow-list plus a fixed loopback hostname deny-list.
    Hostnames are canonicalised first, so numeric aliases of a blocked address
    are blocked too. It is not a private-network filter: ``10.0.0.0/8``,
    ``169.254.0.0/16`` and DNS names resolving to loopback all pass.

    Example:
        >>> validator = SafetyValidator({})
        >>> validator.is_safe_target("https://example.com")
        True
        >>> validator.is_safe_target("http://127.1/x")
        False
    """

    def __init__(self, security_config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize SafetyValidator with security configuration.

        Args:
            security_config: Configuration dictionary with ``allowed_schemes``
                and ``blocked_hosts`` lists
        """
        self.config = security_config or {}
        self.allowed_schemes = frozenset(
            s.lower() for s in self.config.get("allowed_schemes", DEFAULT_ALLOWED_SCHEMES)
        )
        self.blocked_hosts = self._normalize_hosts(self.config.get("blocked_hosts", DEFAULT_BLOCKED_HOSTS))

    @staticmethod
    def _normalize_hosts(values: Iterable[str]) -> frozenset:
        hosts = set()
        for value in values:
            try:
                hosts.add(canonical_host(value))
            except InvalidHost:
                hosts.add(value.lower().strip("[]"))
        return frozenset(hosts)

    def is_safe_target(self, target: Optional[str]) -> bool:
        """Return True if ``target`` is an http(s) URL to a non-loopback host.

        Args:
            target: The URL taken from the request's ``url`` parameter

        Returns:
            False for anything that does not parse into a scheme and hostname,
            for schemes outside the allow-list and for blocked hostnames
        """
        if not target or not isinstance(target, str):
            return False
        try:
            parts = urlsplit(target.strip())
            # Accessing port validates it; out-of-range or non-numeric ports raise
            parts.port
        except ValueError:
            return False

        if parts.scheme.lower() not in self.allowed_schemes:
            return False
        hostname = parts.hostname
        if not hostname:
            return False
        try:
            host = canonical_host(hostname)
        except InvalidHost:
            return False
        if host in self.blocked_hosts:
            return False
        return True


_default_validator = SafetyValidator()


def is_safe_target(target: Optional[str]) -> bool:
    """Check ``target`` against the default scheme and hostname lists."""
    return _default_validator.is_safe_target(target)
