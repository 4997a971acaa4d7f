"""
Security utilities for the OG image service.

Provides asset URL validation (logos, background images, image layers) to
prevent SSRF through user-supplied URLs.
"""

import ipaddress
from typing import Iterable, Optional
from urllib.parse import urlparse

from ..core.errors import BindingFailed

ALLOWED_SCHEMES = ("http", "https", "data")
MAX_DATA_URI_LENGTH = 2 * 1024 * 1024


def is_private_ip(host: str) -> bool:
    """
    Check if a host is a private/internal IP address.

    Args:
        host: Hostname or IP address

    Returns:
        True if host is a private IP, False otherwise
    """
    try:
        ip = ipaddress.ip_address(host)
        return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved
    except ValueError:
        # Not an IP literal; hostnames are checked against the allowlist instead
        return False


def validate_asset_url(url: str, allowed_hosts: Optional[Iterable[str]] = None) -> str:
    """
    Validate an asset URL before it is placed in a render tree.

    Args:
        url: The logo/background/image URL to validate
        allowed_hosts: Optional hostname allowlist; when given, http(s) hosts must be in it

    Returns:
        The URL, unchanged

    Raises:
        BindingFailed: If the URL is malformed, uses a forbidden scheme or
            points at a private address
    """
    if not url or not isinstance(url, str):
        raise BindingFailed("Asset URL must be a non-empty string")

    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError as e:
        raise BindingFailed(f"Invalid asset URL format: {str(e)}")

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise BindingFailed(
            f"Invalid asset URL scheme: {parsed.scheme or '(none)'}. "
            f"Only {', '.join(ALLOWED_SCHEMES)} are allowed."
        )

    if parsed.scheme == "data":
        if len(url) > MAX_DATA_URI_LENGTH:
            raise BindingFailed("Inline data URI is too large")
        if not parsed.path.startswith("image/"):
            raise BindingFailed("Inline data URI must contain an image")
        return url

    if not hostname:
        raise BindingFailed("Invalid asset URL: missing hostname")

    if hostname == "localhost" or is_private_ip(hostname):
        raise BindingFailed(f"Private addresses are not allowed: {hostname}")

    if allowed_hosts is not None:
        allowed = set(allowed_hosts)
        if hostname not in allowed:
            raise BindingFailed(
                f"Asset host '{hostname}' is not in the allowed list. "
                f"Allowed hosts: {', '.join(sorted(allowed))}"
            )

    return url
