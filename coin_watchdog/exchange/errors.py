"""Stream failure classification.

ccxt raises typed exceptions for most failures, but streaming clients often
surface exchange rejections as plain ``ExchangeError`` (or even bare
exceptions) carrying the exchange's JSON message. Classification therefore
looks at the exception type first and falls back to message patterns.
"""
from __future__ import annotations

import re

import ccxt

from coin_watchdog.core.enums import ErrorClass
from coin_watchdog.core.errors import ConfigurationError

_AUTH_PATTERN = re.compile(r"invalid\s*api[\s_-]*key|api[\s_-]*key.*invalid|signature|passphrase", re.IGNORECASE)
_RATE_LIMIT_PATTERN = re.compile(r"rate[\s_-]*limit|too many (requests|visits)|\b429\b", re.IGNORECASE)
_NETWORK_PATTERN = re.compile(
    r"network|time[\s_-]*d?\s*out|timeout|econnreset|connection (reset|closed|refused|lost|aborted)|socket",
    re.IGNORECASE,
)


def classify_stream_error(exc: BaseException) -> ErrorClass:
    """Map ``exc`` onto a retry policy bucket."""

    if isinstance(exc, ccxt.AuthenticationError):
        return ErrorClass.FATAL_AUTH
    if isinstance(exc, (ccxt.NotSupported, ConfigurationError)):
        return ErrorClass.FATAL_CONFIG
    # Both derive from NetworkError, so they must be checked first.
    if isinstance(exc, (ccxt.RateLimitExceeded, ccxt.DDoSProtection)):
        return ErrorClass.TRANSIENT_BACKPRESSURE
    if isinstance(exc, (ccxt.NetworkError, ConnectionError, TimeoutError)):
        return ErrorClass.TRANSIENT_NETWORK

    message = str(exc)
    if _AUTH_PATTERN.search(message):
        return ErrorClass.FATAL_AUTH
    if _RATE_LIMIT_PATTERN.search(message):
        return ErrorClass.TRANSIENT_BACKPRESSURE
    if _NETWORK_PATTERN.search(message):
        return ErrorClass.TRANSIENT_NETWORK
    return ErrorClass.TRANSIENT_UNKNOWN


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


__all__ = ["classify_stream_error", "describe_error"]
