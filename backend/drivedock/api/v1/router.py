"""API v1 router aggregator.

All v1 endpoint routers are included here, mounted under /api/v1.
"""

from fastapi import APIRouter

from drivedock.api.v1 import admin_onboarding, cron, onboarding, onboarding_resume

router = APIRouter()

# =============================================================================
# Applicant
# =============================================================================

# Resume routes are registered first so "/onboarding/resume/..." never
# reaches the tracker-id routes.
router.include_router(
    onboarding_resume.router, prefix="/onboarding/resume", tags=["onboarding"]
)
router.include_router(onboarding.router, prefix="/onboarding", tags=["onboarding"])

# =============================================================================
# Admin
# =============================================================================

router.include_router(
    admin_onboarding.router, prefix="/admin/onboarding", tags=["admin"]
)

# =============================================================================
# Scheduler
# =============================================================================

router.include_router(cron.router, prefix="/cron", tags=["cron"])
