"""Error taxonomy for rank checks.

Every failure a SERP provider can produce is raised as a
:class:`RankCheckError` subclass with a stable ``code`` so callers (and the
batch runner's per-keyword rows) can tell a configuration problem from a
transient one.
"""

from typing import Optional

import httpx


class RankCheckError(Exception):
    """Base class for rank-check failures."""

    code = "RANK_CHECK_FAILED"
    retryable = False
    default_suggestion: Optional[str] = None

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion or self.default_suggestion

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
        }


class NetworkError(RankCheckError):
    """The provider could not be reached (DNS, proxy, bad endpoint)."""

    code = "NETWORK_ERROR"
    default_suggestion = "Check the provider endpoint, proxy and network settings."


class TransientNetworkError(NetworkError):
    """Connection reset or dropped mid-request; the only retried failure."""

    retryable = True
    default_suggestion = "The connection to the SERP provider dropped. Try again shortly."


class RankTimeoutError(RankCheckError):
    code = "TIMEOUT"
    default_suggestion = "The SERP provider took too long to respond. Please retry later."


class AuthenticationError(RankCheckError):
    code = "AUTH_FAILED"
    default_suggestion = "Check the SERP provider credentials."


class IPNotWhitelistedError(AuthenticationError):
    code = "IP_NOT_WHITELISTED"
    default_suggestion = "Add this server's IP address to the provider's whitelist."


class RateLimitError(RankCheckError):
    """Provider quota or per-minute limit exhausted."""

    code = "RATE_LIMITED"
    default_suggestion = "The provider rate limit was reached. Slow down or retry later."


class ProviderTaskError(RankCheckError):
    """Structured error reported by the SERP API itself."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider_code: Optional[int] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(message, suggestion)
        self.provider_code = provider_code


class MalformedResponseError(RankCheckError):
    code = "MALFORMED_RESPONSE"
    default_suggestion = "The provider returned an unexpected payload."


class ProviderNotConfiguredError(RankCheckError):
    code = "NOT_CONFIGURED"
    default_suggestion = "Set the provider credentials in .env before checking ranks."


def _from_status(status_code: int, detail: str) -> RankCheckError:
    lowered = detail.lower()
    if "whitelist" in lowered:
        return IPNotWhitelistedError(detail)
    if status_code in (401, 403):
        return AuthenticationError(detail)
    if status_code == 429:
        return RateLimitError(detail)
    if status_code in (408, 504):
        return RankTimeoutError(detail)
    return ProviderTaskError(detail, provider_code=status_code)


_RESET_MARKERS = ("socket hang up", "econnreset", "connection reset", "reset by peer")


def _looks_like_reset(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _RESET_MARKERS)


def classify_exception(exc: BaseException) -> RankCheckError:
    """Map any exception raised during a rank check onto the taxonomy.

    Timeouts are checked before transport errors because httpx timeouts are
    transport errors too.  Only a connection dropped after it was open is
    transient; unreachable hosts, proxies and unsupported URLs are not.
    """
    if isinstance(exc, RankCheckError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return RankTimeoutError(f"Request timed out: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        detail = f"HTTP {response.status_code}: {response.text[:200]}"
        return _from_status(response.status_code, detail)

    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError, ConnectionResetError)):
        return TransientNetworkError(f"Connection dropped: {message}")
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        if _looks_like_reset(message):
            return TransientNetworkError(f"Connection dropped: {message}")
        return NetworkError(f"Network error: {message}")
    if _looks_like_reset(message):
        return TransientNetworkError(message)
    return ProviderTaskError(message)
