"""Repository for tracker-owned child forms.

Forms are addressed through their tracker's forms map. Saving a form the
tracker does not have yet creates it and links it; saving an existing one
replaces its payload.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.models.onboarding_forms import FORM_MODELS, ApplicationForm, FormType
from drivedock.models.onboarding_tracker import OnboardingTracker


class OnboardingFormRepository:
    """Stateless repository for child form tables."""

    @staticmethod
    async def get_for_tracker(
        db: AsyncSession, tracker: OnboardingTracker, form_type: FormType
    ):
        """Fetch the tracker's form of ``form_type``, or None if not linked."""
        form_id = tracker.forms.get(form_type)
        if form_id is None:
            return None
        return await db.get(FORM_MODELS[form_type], form_id)

    @staticmethod
    async def save(
        db: AsyncSession,
        tracker: OnboardingTracker,
        form_type: FormType,
        payload: dict,
        *,
        contact_email: str | None = None,
    ):
        """Create or replace the tracker's form of ``form_type``.

        Args:
            db: Async database session.
            tracker: Owning tracker. Its forms map is updated for new forms.
            form_type: Which child form to write.
            payload: Full form payload to store.
            contact_email: Contact email, driver application only.

        Returns:
            The saved form model instance.
        """
        model = FORM_MODELS[form_type]
        form = await OnboardingFormRepository.get_for_tracker(db, tracker, form_type)
        if form is None:
            form = model(id=uuid.uuid4(), payload=payload)
            db.add(form)
            await db.flush()
            setattr(tracker, form_type.tracker_column, form.id)
        else:
            form.payload = payload

        if contact_email is not None and isinstance(form, ApplicationForm):
            form.contact_email = contact_email.strip().lower()

        await db.flush()
        return form

    @staticmethod
    async def get_contact_email(
        db: AsyncSession, application_form_id: uuid.UUID
    ) -> str | None:
        """Read only the contact email of a driver application.

        Args:
            db: Async database session.
            application_form_id: Driver application id from the forms map.

        Returns:
            The email, or None if the form or email is missing.
        """
        stmt = select(ApplicationForm.contact_email).where(
            ApplicationForm.id == application_form_id
        )
        result = await db.execute(stmt)
        email = result.scalar_one_or_none()
        return email or None
