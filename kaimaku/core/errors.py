"""Application error taxonomy.

Every error carries the HTTP status it maps to; ``kaimaku.main`` renders
them as ``{"error": message}`` responses.
"""


class KaimakuError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(KaimakuError):
    """Bad input shape or range."""

    status_code = 400
    default_message = "Invalid request"


class CaptchaExpired(ValidationError):
    default_message = "CAPTCHA expired. Please refresh and try again."


class CaptchaFailed(ValidationError):
    default_message = "CAPTCHA verification failed"


class AuthError(KaimakuError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    default_message = "Not authenticated"


class AuthenticationRequired(AuthError):
    default_message = "Authentication required"


class SessionExpired(AuthError):
    default_message = "Session expired. Please login again"


class InvalidCredentials(AuthError):
    default_message = "Invalid username or password"


class CooldownActive(KaimakuError):
    """A gated action was attempted inside its cooldown window."""

    status_code = 429

    def __init__(self, remaining: float, action: str = "trying again"):
        self.remaining = remaining
        super().__init__(f"Please wait {remaining:.1f}s before {action}")


class NoResultsError(KaimakuError):
    status_code = 404
    default_message = "No results found. Try a different search term."


class UpstreamUnavailable(KaimakuError):
    """The catalog API is unreachable, rate-limiting us, or changed shape."""

    status_code = 503
    default_message = "The anime catalog is unavailable right now. Please try again."


class StoreError(KaimakuError):
    """Database failure or constraint violation."""

    status_code = 500
    default_message = "Storage failure"


class StoreUnavailable(StoreError):
    """Connection could not be acquired in time; safe to retry."""

    status_code = 503
    default_message = "Database is busy. Please try again."
