"""Proxy settings for ccxt clients.

REST and WebSocket traffic use separate ccxt attributes; the scheme of the
configured URL decides which pair is set.
"""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

LOGGER = logging.getLogger(__name__)

_PROXY_ATTRIBUTES: dict[str, tuple[str, str]] = {
    "http": ("http_proxy", "ws_proxy"),
    "https": ("https_proxy", "ws_proxy"),
    "socks": ("socks_proxy", "ws_socks_proxy"),
    "socks5": ("socks_proxy", "ws_socks_proxy"),
    "socks5h": ("socks_proxy", "ws_socks_proxy"),
}


def apply_proxy_config(client: Any, proxy_url: str | None) -> bool:
    """Point ``client`` at ``proxy_url``; return whether a proxy was applied.

    Unsupported schemes and malformed URLs are logged and skipped so that a
    typo in the proxy setting never prevents a direct connection.
    """

    if not proxy_url:
        return False
    try:
        parsed = urlparse(proxy_url)
    except ValueError as exc:
        LOGGER.error("Invalid proxy URL format", extra={"proxy_url": proxy_url, "error": str(exc)})
        return False
    if not parsed.scheme or not parsed.hostname:
        LOGGER.error("Invalid proxy URL format", extra={"proxy_url": proxy_url})
        return False
    attributes = _PROXY_ATTRIBUTES.get(parsed.scheme.lower())
    if attributes is None:
        LOGGER.warning("Unsupported proxy protocol", extra={"protocol": parsed.scheme})
        return False
    for attribute in attributes:
        setattr(client, attribute, proxy_url)
    LOGGER.info("Applied proxy configuration", extra={"protocol": parsed.scheme})
    return True


__all__ = ["apply_proxy_config"]
