"""
Outbound webhook URL validation.

Webhook jobs call user-supplied URLs from inside our network, so every URL is
checked before a request is made: scheme, blocked local hostnames, literal private
addresses, the optional host allowlist, and finally every address the
hostname resolves to.
"""

import ipaddress
import logging
import socket
from typing import Callable, Iterable, List, Optional
from urllib.parse import ParseResult, urlparse

from jobhub import config


logger = logging.getLogger("jobhub.webhooks")

ALLOWED_SCHEMES = ('http', 'https')

BLOCKED_HOSTNAMES = ('localhost',)
BLOCKED_HOST_SUFFIXES = ('.localhost', '.local')

PRIVATE_NETWORKS = [
    ipaddress.ip_network(cidr) for cidr in (
        # IPv4
        '0.0.0.0/8',
        '10.0.0.0/8',
        '127.0.0.0/8',
        '172.16.0.0/12',
        '192.168.0.0/16',
        '169.254.0.0/16',
        '100.64.0.0/10',
        '198.18.0.0/15',
        # IPv6
        '::1/128',
        '::/128',
        'fc00::/7',
        'fd00::/8',
        'fe80::/10',
    )
]

Resolver = Callable[[str], List[str]]


class WebhookUrlError(ValueError):
    """Raised when a webhook URL is not allowed."""


def is_private_address(address: str) -> bool:
    """
    Check whether an IP address is private, loopback, link-local or reserved.

    IPv4-mapped IPv6 addresses (::ffff:a.b.c.d) are checked as IPv4.

    Args:
        address: IPv4 or IPv6 address string

    Returns:
        True if the address falls in a blocked network
    """
    ip = ipaddress.ip_address(address.split('%', 1)[0])

    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    return any(ip.version == network.version and ip in network for network in PRIVATE_NETWORKS)


def host_matches_allowlist(hostname: str, patterns: Iterable[str]) -> bool:
    """
    Check a hostname against allowlist patterns.

    'example.com' matches only that host; '*.example.com' matches any
    subdomain of example.com but not example.com itself.
    """
    hostname = hostname.lower()
    for pattern in patterns:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if pattern.startswith('*.'):
            if hostname.endswith(pattern[1:]):
                return True
        elif hostname == pattern:
            return True
    return False


def resolve_host(hostname: str) -> List[str]:
    """Resolve a hostname to all of its A/AAAA addresses."""
    infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    return sorted({info[4][0] for info in infos})


def _literal_ip(hostname: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address(hostname))
    except ValueError:
        return None


def validate_webhook_url(
    raw_url: str,
    allowed_hosts: Optional[List[str]] = None,
    resolver: Resolver = None
) -> ParseResult:
    """
    Validate a webhook URL against the outbound request policy.

    Args:
        raw_url: URL from the job's action config
        allowed_hosts: Host allowlist; defaults to WEBHOOK_ALLOWED_HOSTS
        resolver: DNS resolver returning address strings (for tests)

    Returns:
        The parsed URL

    Raises:
        WebhookUrlError: If the URL violates any rule
    """
    try:
        parsed = urlparse(str(raw_url).strip())
        hostname = parsed.hostname or ''
    except ValueError as e:
        raise WebhookUrlError(f"Invalid webhook URL: {e}") from e

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise WebhookUrlError(
            f"Webhook URL must use http or https, got '{parsed.scheme or 'none'}'"
        )

    hostname = hostname.rstrip('.').lower()
    if not hostname:
        raise WebhookUrlError("Webhook URL must include a hostname")

    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(BLOCKED_HOST_SUFFIXES):
        raise WebhookUrlError(f"Webhook host is not allowed: {hostname}")

    literal = _literal_ip(hostname)
    if literal is not None and is_private_address(literal):
        raise WebhookUrlError(
            f"Webhook URL resolves to a private network address: {literal}"
        )

    if allowed_hosts is None:
        allowed_hosts = config.get_webhook_allowed_hosts()
    if allowed_hosts and not host_matches_allowlist(hostname, allowed_hosts):
        raise WebhookUrlError(f"Webhook host is not in the allowlist: {hostname}")

    if literal is not None:
        return parsed

    resolver = resolver or resolve_host
    try:
        addresses = resolver(hostname)
    except (OSError, UnicodeError) as e:
        raise WebhookUrlError(f"Could not resolve webhook host {hostname}: {e}") from e

    if not addresses:
        raise WebhookUrlError(f"Webhook host {hostname} did not resolve to any address")

    for address in addresses:
        if is_private_address(address):
            logger.warning(f"Blocked webhook to {hostname}: resolves to {address}")
            raise WebhookUrlError(
                f"Webhook URL resolves to a private network address: {address}"
            )

    return parsed
