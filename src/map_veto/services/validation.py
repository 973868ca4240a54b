"""Input checks shared by the session and library services."""

import ipaddress

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from map_veto.errors import ValidationError

MAX_NAME_LENGTH = 100
MAX_URL_LENGTH = 2048

_HTTP_URL = TypeAdapter(HttpUrl)
_INTERNAL_SUFFIXES = (".localhost", ".local", ".internal")


def validate_name(value: str, label: str) -> str:
    """Trim a display name and enforce its length bounds."""
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError("INVALID_NAME", f"{label} name cannot be empty.")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(
            "INVALID_NAME",
            f"{label} name cannot exceed {MAX_NAME_LENGTH} characters.",
        )
    return trimmed


def validate_url(value: str, label: str, allow_internal: bool = True) -> str:
    """Return a trimmed absolute HTTP(S) URL or raise INVALID_URL.

    With allow_internal false, localhost names and loopback, private or
    link-local address literals are rejected too.
    """
    trimmed = value.strip()
    if not trimmed or len(trimmed) > MAX_URL_LENGTH:
        raise ValidationError(
            "INVALID_URL",
            f"{label} must be an HTTP or HTTPS URL of at most "
            f"{MAX_URL_LENGTH} characters.",
        )
    try:
        url = _HTTP_URL.validate_python(trimmed)
    except PydanticValidationError as exc:
        raise ValidationError(
            "INVALID_URL", f"{label} must be a valid HTTP or HTTPS URL."
        ) from exc
    if not allow_internal and _is_internal_host(url.host or ""):
        raise ValidationError(
            "INVALID_URL", f"{label} cannot point to an internal address."
        )
    return trimmed


def _is_internal_host(host: str) -> bool:
    host = host.strip("[]").lower()
    if host == "localhost" or host.endswith(_INTERNAL_SUFFIXES):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )
