"""Email sending via Resend API.

Simple HTTP POST to Resend for resume verification codes and the
onboarding completion notice. Plain-text format.
"""

import logging

import httpx

from drivedock.core.config import settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0


class MailDeliveryError(Exception):
    """Raised when the mail provider rejects or fails to accept a message."""


async def send_email(*, to_email: str, subject: str, text: str) -> None:
    """Send one plain-text email.

    Args:
        to_email: Recipient email address.
        subject: Subject line.
        text: Plain-text body.

    Raises:
        MailDeliveryError: On any transport or provider error.
    """
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {settings.resend_api_key.get_secret_value()}",
                },
                json={
                    "from": settings.email_from,
                    "to": to_email,
                    "subject": subject,
                    "text": text,
                },
                timeout=_RESEND_TIMEOUT,
            )
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise MailDeliveryError(str(exc)) from exc


async def send_resume_code_email(*, to_email: str, code: str, ttl_minutes: int) -> None:
    """Send a resume verification code. Best effort: failures are logged.

    The applicant can always ask for a new code, so a failed delivery
    must not fail the request that created the code.
    """
    try:
        await send_email(
            to_email=to_email,
            subject="Your DriveDock verification code",
            text=(
                f"Your verification code is {code}.\n\n"
                f"This code expires in {ttl_minutes} minutes. "
                "If you didn't request this, you can safely ignore this email."
            ),
        )
    except MailDeliveryError:
        logger.warning("Failed to send resume code email", exc_info=True)


async def send_completion_email(*, to_email: str, company_name: str) -> None:
    """Send the one-time onboarding completion notice.

    Raises:
        MailDeliveryError: Propagated so the dispatcher can record the attempt.
    """
    await send_email(
        to_email=to_email,
        subject=f"Your onboarding with {company_name} is complete",
        text=(
            f"Thank you for completing your onboarding with {company_name}.\n\n"
            "Our safety team will review your file and contact you about "
            "next steps. You can view your submitted application at "
            f"{settings.frontend_url}."
        ),
    )
