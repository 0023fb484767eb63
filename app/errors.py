"""
User Profiles API — Domain errors and store-error translation.

Service code raises these; ``app.api.errors`` turns them into the
``{status: "error", message, errors?}`` envelope.
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, IntegrityError


class AppError(Exception):
    """Base class for errors that map to a definite HTTP status."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RequestValidationFailed(AppError):
    """Inbound data failed validation.  ``errors`` lists every violation."""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: list[dict[str, str]] | None = None,
    ) -> None:
        super().__init__(message, status_code=400)
        self.errors = errors or []


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message, status_code=404)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict") -> None:
        super().__init__(message, status_code=409)


class InternalError(AppError):
    def __init__(self, message: str = "Internal Server Error") -> None:
        super().__init__(message, status_code=500)


# ──────────────────────────────────────────────────────────────────────────────
# Store error code → domain error kind
# ──────────────────────────────────────────────────────────────────────────────

# PostgreSQL SQLSTATE codes and SQLite extended result codes.
STORE_ERROR_KINDS: dict[str | int, type[AppError]] = {
    "23505": ConflictError,  # unique_violation
    2067: ConflictError,     # SQLITE_CONSTRAINT_UNIQUE
    1555: ConflictError,     # SQLITE_CONSTRAINT_PRIMARYKEY
}


def store_error_code(exc: BaseException) -> str | int | None:
    """Return the driver-level error code carried by ``exc``, if any."""
    orig = exc.orig if isinstance(exc, DBAPIError) else exc
    for attr in ("sqlstate", "pgcode", "sqlite_errorcode"):
        code = getattr(orig, attr, None)
        if code is not None:
            return code
    return None


def translate_store_error(
    exc: BaseException,
    *,
    conflict_message: str,
    fallback_message: str,
) -> AppError:
    """Map a persistence failure onto the domain error taxonomy.

    Unique-constraint violations become ``ConflictError``; everything else is
    an ``InternalError`` carrying ``fallback_message``.
    """
    kind = STORE_ERROR_KINDS.get(store_error_code(exc))
    if kind is None and isinstance(exc, IntegrityError):
        # Drivers that expose no code still name the constraint in the text.
        text = str(exc.orig).lower()
        if "unique" in text or "duplicate key" in text:
            kind = ConflictError

    if kind is ConflictError:
        return ConflictError(conflict_message)
    return InternalError(fallback_message)
