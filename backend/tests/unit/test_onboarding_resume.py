"""Tests for the resume verification code flow.

Branch behavior is tested with patched repositories; the end-to-end
attempt limit and single-use rules run against the test database.
"""

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from drivedock.core.auth import decode_session_token
from drivedock.core.errors import (
    ExpiredError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    ValidationError,
)
from drivedock.core.identity import hash_code
from drivedock.repositories.verification_code_repository import (
    VerificationCodeRepository,
)
from drivedock.services.onboarding_resume import (
    RESUME_PURPOSE,
    confirm_resume_code,
    generate_code,
    request_resume_code,
)
from tests.conftest import TEST_EMAIL, TEST_IDENTITY

_MODULE = "drivedock.services.onboarding_resume"
_PATCH_TRACKER_LOOKUP = f"{_MODULE}.OnboardingTrackerRepository.get_by_identity_hash"
_PATCH_CONTACT_EMAIL = f"{_MODULE}.OnboardingFormRepository.get_contact_email"
_PATCH_CODES = f"{_MODULE}.VerificationCodeRepository"
_PATCH_FIND_CODE = f"{_MODULE}.VerificationCodeRepository.find"
_PATCH_SEND_EMAIL = f"{_MODULE}.send_resume_code_email"

_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
_TRACKER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000cc")


def _tracker(**overrides) -> SimpleNamespace:
    values = {
        "id": _TRACKER_ID,
        "terminated": False,
        "completed": False,
        "resume_expires_at": _NOW + timedelta(days=10),
        "driver_application_id": uuid.uuid4(),
        "current_step": "application-form/page-3",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _code(**overrides) -> SimpleNamespace:
    values = {
        "id": uuid.uuid4(),
        "code_hash": hash_code("123456"),
        "expires_at": _NOW + timedelta(minutes=5),
        "attempts": 0,
        "max_attempts": 5,
        "created_at": _NOW - timedelta(minutes=5),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _codes_repo(
    *, existing=None, found=None, attempts_after: int | None = 1, deleted: bool = True
) -> MagicMock:
    repo = MagicMock()
    repo.get_for_tracker = AsyncMock(return_value=existing)
    repo.find = AsyncMock(return_value=found)
    repo.delete = AsyncMock(return_value=deleted)
    repo.delete_for_tracker = AsyncMock()
    repo.create = AsyncMock()
    repo.record_attempt = AsyncMock(return_value=attempts_after)
    return repo


def _patched(tracker, repo, *, email: str | None = TEST_EMAIL):
    return (
        patch(_PATCH_TRACKER_LOOKUP, new_callable=AsyncMock, return_value=tracker),
        patch(_PATCH_CONTACT_EMAIL, new_callable=AsyncMock, return_value=email),
        patch(_PATCH_CODES, repo),
        patch(_PATCH_SEND_EMAIL, new_callable=AsyncMock),
    )


# =============================================================================
# Request
# =============================================================================


class TestRequestResumeCode:
    """request_resume_code."""

    @pytest.mark.asyncio
    async def test_issues_code_and_masks_email(self):
        """Only the code hash is stored; the plain code goes to the email."""
        repo = _codes_repo()
        db = AsyncMock()
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send as mock_send:
            issued = await request_resume_code(db, TEST_IDENTITY, now=_NOW)

        assert issued.masked_email == "r****@example.com"
        assert issued.expires_in_minutes == 10
        assert issued.resend_available_in_seconds == 60
        repo.delete_for_tracker.assert_awaited_once()
        create_kwargs = repo.create.await_args.kwargs
        assert create_kwargs["expires_at"] == _NOW + timedelta(minutes=10)
        assert create_kwargs["created_at"] == _NOW
        assert create_kwargs["purpose"] == RESUME_PURPOSE
        db.commit.assert_awaited_once()

        sent_code = mock_send.await_args.kwargs["code"]
        assert create_kwargs["code_hash"] == hash_code(sent_code)

    @pytest.mark.asyncio
    async def test_resend_inside_window_is_rate_limited(self):
        """A second request inside the resend window reports the remaining wait."""
        repo = _codes_repo(existing=_code(created_at=_NOW - timedelta(seconds=15)))
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send, pytest.raises(RateLimitedError) as exc_info:
            await request_resume_code(AsyncMock(), TEST_IDENTITY, now=_NOW)

        assert exc_info.value.retry_after_seconds == 45
        assert exc_info.value.details == [{"retry_after_seconds": 45}]
        repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resend_after_window_replaces_code(self):
        """Past the resend window the old code is replaced."""
        repo = _codes_repo(existing=_code(created_at=_NOW - timedelta(seconds=61)))
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send:
            await request_resume_code(AsyncMock(), TEST_IDENTITY, now=_NOW)
        repo.delete_for_tracker.assert_awaited_once()
        repo.create.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tracker", [None, _tracker(terminated=True)], ids=["missing", "terminated"]
    )
    async def test_unknown_or_terminated_identity_is_not_found(self, tracker):
        """Unknown and terminated identities look the same to the caller."""
        lookup, contact, codes, send = _patched(tracker, _codes_repo())
        with lookup, contact, codes, send, pytest.raises(NotFoundError):
            await request_resume_code(AsyncMock(), TEST_IDENTITY, now=_NOW)

    @pytest.mark.asyncio
    async def test_expired_tracker(self):
        """Incomplete trackers past the resume window cannot be resumed."""
        tracker = _tracker(resume_expires_at=_NOW - timedelta(seconds=1))
        lookup, contact, codes, send = _patched(tracker, _codes_repo())
        with lookup, contact, codes, send, pytest.raises(ExpiredError):
            await request_resume_code(AsyncMock(), TEST_IDENTITY, now=_NOW)

    @pytest.mark.asyncio
    async def test_tracker_without_contact_email_is_not_found(self):
        """No contact email on file means there is nowhere to send a code."""
        lookup, contact, codes, send = _patched(_tracker(), _codes_repo(), email=None)
        with lookup, contact, codes, send, pytest.raises(NotFoundError):
            await request_resume_code(AsyncMock(), TEST_IDENTITY, now=_NOW)

    @pytest.mark.asyncio
    async def test_malformed_identity(self):
        """Identity numbers are validated before any lookup."""
        with pytest.raises(ValidationError):
            await request_resume_code(AsyncMock(), "12-34", now=_NOW)

    def test_generated_codes_are_six_digits(self):
        codes = [generate_code() for _ in range(50)]
        assert all(len(c) == 6 and c.isdigit() for c in codes)


# =============================================================================
# Confirm
# =============================================================================


class TestConfirmResumeCode:
    """confirm_resume_code."""

    @pytest.mark.asyncio
    async def test_correct_code_issues_session_and_deletes_code(self):
        """A matching code opens a session and is consumed."""
        now = datetime.now(UTC)
        record = _code(expires_at=now + timedelta(minutes=5))
        repo = _codes_repo(found=record)
        tracker = _tracker(resume_expires_at=now + timedelta(days=1))
        lookup, contact, codes, send = _patched(tracker, repo)
        with lookup, contact, codes, send:
            confirmed = await confirm_resume_code(
                AsyncMock(), TEST_IDENTITY, "123456", now=now
            )

        assert not confirmed.is_completed
        tracker_id, _iat = decode_session_token(confirmed.session_token)
        assert tracker_id == _TRACKER_ID
        repo.delete.assert_awaited_once()
        assert repo.delete.await_args.args[1] == record.id

    @pytest.mark.asyncio
    async def test_completed_tracker_gets_no_session(self):
        """Completed applicants are routed to the completed view without a session."""
        repo = _codes_repo(found=_code())
        tracker = _tracker(completed=True, resume_expires_at=_NOW - timedelta(days=90))
        lookup, contact, codes, send = _patched(tracker, repo)
        with lookup, contact, codes, send:
            confirmed = await confirm_resume_code(
                AsyncMock(), TEST_IDENTITY, "123456", now=_NOW
            )
        assert confirmed.is_completed
        assert confirmed.session_token is None

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempt(self):
        """Security: Each wrong guess is counted and committed before the error."""
        repo = _codes_repo(found=_code(attempts=1), attempts_after=2)
        db = AsyncMock()
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send, pytest.raises(UnauthorizedError) as exc_info:
            await confirm_resume_code(db, TEST_IDENTITY, "654321", now=_NOW)

        assert exc_info.value.details == [{"remaining_attempts": 3}]
        repo.record_attempt.assert_awaited_once()
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausted_code_is_discarded(self):
        """Security: Running out of attempts discards the code."""
        repo = _codes_repo(found=_code(attempts=5), attempts_after=None)
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send, pytest.raises(RateLimitedError) as exc_info:
            await confirm_resume_code(AsyncMock(), TEST_IDENTITY, "123456", now=_NOW)

        assert "Request a new code" in exc_info.value.message
        repo.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_code_gone_before_attempt_is_rejected(self):
        """Security: A code consumed by a concurrent confirm is not compared."""
        repo = _codes_repo(found=_code(), attempts_after=None, deleted=False)
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send, pytest.raises(UnauthorizedError):
            await confirm_resume_code(AsyncMock(), TEST_IDENTITY, "123456", now=_NOW)

    @pytest.mark.asyncio
    async def test_match_without_delete_issues_no_session(self):
        """Security: Only the confirm that removes the code gets a session."""
        repo = _codes_repo(found=_code(), deleted=False)
        db = AsyncMock()
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send, pytest.raises(UnauthorizedError):
            await confirm_resume_code(db, TEST_IDENTITY, "123456", now=_NOW)
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_code_is_discarded(self):
        """Expired codes are deleted and rejected like unknown ones."""
        repo = _codes_repo(found=_code(expires_at=_NOW - timedelta(seconds=1)))
        lookup, contact, codes, send = _patched(_tracker(), repo)
        with lookup, contact, codes, send, pytest.raises(UnauthorizedError):
            await confirm_resume_code(AsyncMock(), TEST_IDENTITY, "123456", now=_NOW)
        repo.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_code_on_file(self):
        """Confirming without a live code is rejected."""
        lookup, contact, codes, send = _patched(_tracker(), _codes_repo(found=None))
        with lookup, contact, codes, send, pytest.raises(UnauthorizedError):
            await confirm_resume_code(AsyncMock(), TEST_IDENTITY, "123456", now=_NOW)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["12345", "1234567", "12a456", ""])
    async def test_code_must_be_six_digits(self, code: str):
        """Malformed codes are rejected before any lookup."""
        with pytest.raises(ValidationError):
            await confirm_resume_code(AsyncMock(), TEST_IDENTITY, code, now=_NOW)


# =============================================================================
# Against the database
# =============================================================================


def _wrong(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


async def _request_code(db) -> str:
    with patch(_PATCH_SEND_EMAIL, new_callable=AsyncMock) as mock_send:
        await request_resume_code(db, TEST_IDENTITY)
    return mock_send.await_args.kwargs["code"]


async def _snapshot(db, tracker_id) -> SimpleNamespace:
    """Copy of the stored code as a concurrent request would have read it."""
    record = await VerificationCodeRepository.get_for_tracker(
        db, tracker_id=tracker_id, purpose=RESUME_PURPOSE
    )
    return SimpleNamespace(
        id=record.id,
        code_hash=record.code_hash,
        expires_at=record.expires_at,
        attempts=record.attempts,
        max_attempts=record.max_attempts,
    )


class TestResumeFlowPersistence:
    """Attempt limit and single use, persisted."""

    @pytest.mark.asyncio
    async def test_sixth_attempt_after_five_wrong_codes_is_rate_limited(
        self, db_session, make_tracker
    ):
        """Security: After five wrong guesses even the right code is refused."""
        tracker = await make_tracker(identity=TEST_IDENTITY, email=TEST_EMAIL)
        code = await _request_code(db_session)

        for _ in range(5):
            with pytest.raises(UnauthorizedError):
                await confirm_resume_code(db_session, TEST_IDENTITY, _wrong(code))

        with pytest.raises(RateLimitedError):
            await confirm_resume_code(db_session, TEST_IDENTITY, code)

        remaining = await VerificationCodeRepository.get_for_tracker(
            db_session, tracker_id=tracker.id, purpose=RESUME_PURPOSE
        )
        assert remaining is None

    @pytest.mark.asyncio
    async def test_code_cannot_be_used_twice(self, db_session, make_tracker):
        """Security: A confirmed code cannot be replayed."""
        await make_tracker(identity=TEST_IDENTITY, email=TEST_EMAIL)
        code = await _request_code(db_session)

        confirmed = await confirm_resume_code(db_session, TEST_IDENTITY, code)
        assert confirmed.session_token is not None

        with pytest.raises(UnauthorizedError):
            await confirm_resume_code(db_session, TEST_IDENTITY, code)

    @pytest.mark.asyncio
    async def test_second_request_inside_window_keeps_first_code(
        self, db_session, make_tracker
    ):
        """A throttled resend leaves the first code usable."""
        await make_tracker(identity=TEST_IDENTITY, email=TEST_EMAIL)
        code = await _request_code(db_session)

        with pytest.raises(RateLimitedError):
            await _request_code(db_session)

        confirmed = await confirm_resume_code(db_session, TEST_IDENTITY, code)
        assert not confirmed.is_completed

    @pytest.mark.asyncio
    async def test_concurrent_correct_confirms_open_one_session(
        self, db_session, make_tracker
    ):
        """Security: Two confirms that both read the code get one session."""
        tracker = await make_tracker(identity=TEST_IDENTITY, email=TEST_EMAIL)
        code = await _request_code(db_session)
        read_by_second = await _snapshot(db_session, tracker.id)

        first = await confirm_resume_code(db_session, TEST_IDENTITY, code)
        assert first.session_token is not None

        with (
            patch(_PATCH_FIND_CODE, new_callable=AsyncMock, return_value=read_by_second),
            pytest.raises(UnauthorizedError),
        ):
            await confirm_resume_code(db_session, TEST_IDENTITY, code)

    @pytest.mark.asyncio
    async def test_stale_attempt_count_cannot_bypass_limit(
        self, db_session, make_tracker
    ):
        """Security: A guess that read the count before it ran out is refused."""
        tracker = await make_tracker(identity=TEST_IDENTITY, email=TEST_EMAIL)
        code = await _request_code(db_session)
        read_early = await _snapshot(db_session, tracker.id)
        assert read_early.attempts == 0

        for _ in range(5):
            with pytest.raises(UnauthorizedError):
                await confirm_resume_code(db_session, TEST_IDENTITY, _wrong(code))

        with (
            patch(_PATCH_FIND_CODE, new_callable=AsyncMock, return_value=read_early),
            pytest.raises(RateLimitedError),
        ):
            await confirm_resume_code(db_session, TEST_IDENTITY, code)

        remaining = await VerificationCodeRepository.get_for_tracker(
            db_session, tracker_id=tracker.id, purpose=RESUME_PURPOSE
        )
        assert remaining is None
