"""API error classes.

Every failure an onboarding request path can produce is one of these.
The exception handler in main.py renders them into the error envelope.

Failure kinds:
- NotFound: tracker or verification record absent, or tracker terminated
- Expired: incomplete tracker past its resume window
- Unauthorized: code mismatch, invalid or missing session
- RateLimited: verification attempts exhausted or resend too soon
- Conflict: step write that violates ordering or hits a frozen tracker
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for malformed identity values, codes, and unknown enum values.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401).

    Use for verification code mismatches and invalid credentials.
    """

    def __init__(
        self,
        message: str = "Authentication required",
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
            details=details,
        )


class SessionRequiredError(UnauthorizedError):
    """Onboarding session missing or no longer valid (401).

    The reason is kept server side for logging only; the client always
    sees the same message. The error handler clears the session cookie.

    Args:
        reason: Internal reason code (e.g., "TRACKER_TERMINATED").
    """

    def __init__(self, reason: str) -> None:
        APIError.__init__(
            self,
            code="SESSION_REQUIRED",
            message="Your session has ended. Please resume your application.",
            status_code=401,
        )
        self.reason = reason


class ForbiddenError(APIError):
    """Not allowed to access resource (403).

    Use for bad scheduler or admin bearer tokens.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Terminated trackers raise this too, so callers cannot tell a
    terminated applicant from one that never existed.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Conflicting state (409).

    Use for duplicate applications and step writes that would break
    step ordering. Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class ExpiredError(APIError):
    """Resume window has passed (410)."""

    def __init__(self, message: str = "Your application has expired") -> None:
        super().__init__(
            code="EXPIRED",
            message=message,
            status_code=410,
        )


class RateLimitedError(APIError):
    """Too many attempts (429).

    Args:
        message: Message shown to the applicant.
        retry_after_seconds: Seconds until the caller may try again, if known.
    """

    def __init__(self, message: str, retry_after_seconds: int | None = None) -> None:
        details = None
        if retry_after_seconds is not None:
            details = [{"retry_after_seconds": retry_after_seconds}]
        super().__init__(
            code="RATE_LIMITED",
            message=message,
            status_code=429,
            details=details,
        )
        self.retry_after_seconds = retry_after_seconds


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
