"""Error taxonomy shared by every service."""


class VetoError(Exception):
    """Base error carrying a stable machine-readable code."""

    default_code = "VETO_ERROR"

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message or self.code.replace("_", " ").capitalize()
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, object]:
        """Return the public error body."""
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(VetoError):
    """Malformed or out-of-range input, rejected before any mutation."""

    default_code = "INVALID_INPUT"


class ConflictError(VetoError):
    """Illegal state or turn-order violation; retry after re-reading state."""

    default_code = "CONFLICT"


class AuthError(VetoError):
    """Bad or expired token, or IP mismatch."""

    default_code = "INVALID_TOKEN"


class NotFoundError(VetoError):
    """Missing session, seat or map."""

    default_code = "NOT_FOUND"


class IntegrityError(VetoError):
    """Token collision or cascade inconsistency."""

    default_code = "INTEGRITY_ERROR"
