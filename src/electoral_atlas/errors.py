"""Exception types raised by the aggregation, join and navigation engine.

Every error knows the HTTP status it maps to and how to serialize itself,
so the API layer and the API client agree on one error format:
``{"error": <message>, "code": <exception name>, "fallback": <hint>?}``.
"""

from typing import Any, Optional


class AtlasError(Exception):
    """Base class for all Electoral Atlas errors."""

    status_code = 500

    def to_payload(self) -> dict[str, Any]:
        return {"error": str(self), "code": type(self).__name__}


class InvalidLevel(AtlasError, ValueError):
    """Requested administrative level is outside 1-5."""

    status_code = 400

    def __init__(self, level: Any, message: Optional[str] = None):
        self.level = level
        super().__init__(
            message or f"Invalid administrative level: {level!r}. Level must be between 1 and 5"
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["level"] = self.level
        return payload


class InvalidDomain(AtlasError, ValueError):
    """Requested metric domain is not registered."""

    status_code = 400

    def __init__(self, domain: str, available: Optional[list[str]] = None):
        self.domain = domain
        self.available = available or []
        message = f"Unknown metric domain: {domain}"
        if self.available:
            message += f". Available domains: {', '.join(self.available)}"
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["domain"] = self.domain
        payload["available"] = self.available
        return payload


class InvalidCoordinates(AtlasError, ValueError):
    """Longitude/latitude are missing, malformed or outside the country extent."""

    status_code = 400


class NotFound(AtlasError, LookupError):
    """An election, census year, administrative unit or point match does not exist."""

    status_code = 404


class GeometryParseError(AtlasError, ValueError):
    """A stored polygon could not be parsed into GeoJSON."""

    status_code = 422

    def __init__(self, message: str, unit_id: Optional[int] = None):
        self.unit_id = unit_id
        super().__init__(message)


class SpatialIndexUnavailable(AtlasError):
    """The database cannot answer point-in-polygon queries."""

    status_code = 503
    DEFAULT_FALLBACK = "Use boundary-based navigation instead."

    def __init__(
        self, message: str = "Spatial query not supported", fallback: Optional[str] = None
    ):
        self.fallback = fallback or self.DEFAULT_FALLBACK
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["fallback"] = self.fallback
        return payload


class PrefetchFailure(AtlasError):
    """A background child-level fetch failed. Always logged, never surfaced."""

    def __init__(self, key: Any, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Prefetch failed for {key}: {cause}")


class FetchTimeout(AtlasError, TimeoutError):
    """A data fetch did not complete within its timeout after the single retry."""

    status_code = 504

    def __init__(self, url: str, attempts: int):
        self.url = url
        self.attempts = attempts
        super().__init__(f"Request to {url} timed out after {attempts} attempt(s)")


def error_from_payload(status_code: int, payload: Any) -> Optional[AtlasError]:
    """
    Rebuild the error an API response describes.

    Args:
        status_code: HTTP status of the response
        payload: Decoded JSON body (anything else is treated as empty)

    Returns:
        The matching AtlasError, or None when the response is not a known error
    """
    body = payload if isinstance(payload, dict) else {}
    message = str(body.get("error") or f"HTTP {status_code}")
    code = body.get("code")

    if "fallback" in body:
        return SpatialIndexUnavailable(message, body.get("fallback"))
    if code == "InvalidLevel":
        return InvalidLevel(body.get("level"), message)
    if code == "InvalidDomain":
        return InvalidDomain(str(body.get("domain")), body.get("available"))
    if code == "InvalidCoordinates":
        return InvalidCoordinates(message)
    if code == "GeometryParseError":
        return GeometryParseError(message)
    if status_code == 404 or code == "NotFound":
        return NotFound(message)
    return None
