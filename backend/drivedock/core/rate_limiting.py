"""Rate limiting configuration using slowapi.

Security: Throttles the unauthenticated resume endpoints so identity
numbers and verification codes cannot be brute forced from one address.
Per-code attempt counting in the resume service is the second layer.

Usage in routers:
    from drivedock.core.rate_limiting import limiter

    @router.post("/resume/send-code")
    @limiter.limit(settings.rate_limit_resume)
    async def send_resume_code(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from drivedock.core.config import settings


def _rate_limit_key_func(request: Request) -> str:
    """Key by client address.

    Resume endpoints run before any session exists, so there is no
    subject to key on.
    """
    return f"ip:{get_remote_address(request)}"


# Global limiter instance
# In-memory storage (single instance); configure RATELIMIT_STORAGE_URL for Redis
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 Too Many Requests with standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Parse retry-after from exception detail (e.g., "10 per 1 minute")
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
