"""Tests for sweep batch size clamping."""

import pytest

from drivedock.core.batching import clamp_batch_limit


class TestClampBatchLimit:
    """clamp_batch_limit."""

    def test_none_uses_default(self):
        assert clamp_batch_limit(None, default=50, hard_cap=500) == 50

    @pytest.mark.parametrize(
        ("requested", "expected"),
        [(1, 1), (200, 200), (500, 500), (501, 500), (10**9, 500), (0, 1), (-5, 1)],
    )
    def test_clamped_to_range(self, requested, expected):
        assert clamp_batch_limit(requested, default=50, hard_cap=500) == expected
