"""Batch size handling for the scheduled sweeps.

The scheduler may pass a batch size override; each sweep clamps it to
its own hard cap.
"""

from fastapi import Query


def clamp_batch_limit(requested: int | None, *, default: int, hard_cap: int) -> int:
    """Clamp a requested batch size to 1..hard_cap.

    Args:
        requested: Override from the caller, or None for the default.
        default: Batch size when no override is given.
        hard_cap: Largest batch the sweep will process.

    Returns:
        The batch size to apply.
    """
    value = default if requested is None else requested
    return max(1, min(value, hard_cap))


def batch_limit_param(
    limit: int | None = Query(
        default=None,
        description="Batch size override, clamped to the sweep's hard cap",
    ),
) -> int | None:
    """FastAPI dependency for the optional ``limit`` query parameter.

    Out-of-range values are clamped by the sweep rather than rejected.

    Usage:
        @router.post("/cron/cleanup-expired")
        async def run(limit: int | None = Depends(batch_limit_param)):
            ...
    """
    return limit
