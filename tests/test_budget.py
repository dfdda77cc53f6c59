"""Tests for the concurrency budget."""

import asyncio
import sys
from unittest.mock import patch

import pytest

from powerscan.budget import (
    DEFAULT_MAX_CONCURRENCY,
    RESERVE_FD_COUNT,
    SEMAPHORE_VALUE_MAX,
    ConcurrencyBudget,
    clamp_to_fd_limit,
    get_fd_limit,
)
from powerscan.engines import get_scan_semaphore, set_scan_semaphore


class TestClampToFdLimit:
    """Tests for clamp_to_fd_limit."""

    def test_no_limit(self):
        """Should keep the value without a known limit."""
        assert clamp_to_fd_limit(1024, None) == 1024
        assert clamp_to_fd_limit(1024, 0) == 1024

    def test_fits(self):
        """Should keep a value below the limit minus reservation."""
        assert clamp_to_fd_limit(100, 4096) == 100

    def test_clamped(self):
        """Should clamp to the limit minus reservation."""
        assert clamp_to_fd_limit(1024, 256) == 256 - RESERVE_FD_COUNT

    def test_never_below_one(self):
        """Should keep at least one slot for tiny limits."""
        assert clamp_to_fd_limit(1024, 2) == 1


class TestGetFdLimit:
    """Tests for get_fd_limit."""

    def test_reads_soft_limit(self):
        """Should return the soft limit."""
        with patch("powerscan.budget.resource.getrlimit", return_value=(512, 4096)):
            assert get_fd_limit() == 512

    def test_unreadable(self):
        """Should return None when the limit cannot be read."""
        with patch("powerscan.budget.resource.getrlimit", side_effect=OSError("nope")):
            assert get_fd_limit() is None


class TestConcurrencyBudget:
    """Tests for ConcurrencyBudget."""

    def test_default_unlimited(self):
        """Should keep the default without a descriptor limit."""
        budget = ConcurrencyBudget(fd_limit=0)
        assert budget.value == DEFAULT_MAX_CONCURRENCY

    def test_default_clamped(self, caplog):
        """Should clamp the default to the descriptor limit."""
        with caplog.at_level("INFO", logger="powerscan"):
            budget = ConcurrencyBudget(fd_limit=256)

        assert budget.value == 253
        assert "constraining to 253" in caplog.text

    def test_override(self):
        """Should accept a positive integer."""
        budget = ConcurrencyBudget(fd_limit=0)
        assert budget.apply_override("16") == 16
        assert budget.value == 16

    def test_override_clamped(self, caplog):
        """Should clamp an override above the limit and name both values."""
        budget = ConcurrencyBudget(fd_limit=256)
        assert budget.apply_override("2000") == 253
        assert "2000" in caplog.text
        assert "253" in caplog.text

    @pytest.mark.parametrize("bad", ["0", "-5", "abc", "12x", str(sys.maxsize)])
    def test_override_rejected(self, bad, caplog):
        """Should keep the previous budget for invalid values."""
        budget = ConcurrencyBudget(fd_limit=0)
        assert budget.apply_override(bad) == DEFAULT_MAX_CONCURRENCY
        assert "out of range" in caplog.text

    @pytest.mark.asyncio
    async def test_open_installs_semaphore(self):
        """Should install the semaphore into the engine library."""
        budget = ConcurrencyBudget(default=8, fd_limit=0)
        semaphore = budget.open()

        assert budget.is_open
        assert get_scan_semaphore() is semaphore

        budget.close()
        assert not budget.is_open
        assert get_scan_semaphore() is None

    @pytest.mark.asyncio
    async def test_open_replaces_existing(self):
        """Should discard a semaphore installed earlier."""
        set_scan_semaphore(asyncio.Semaphore(1))
        budget = ConcurrencyBudget(default=4, fd_limit=0)
        semaphore = budget.open()

        assert get_scan_semaphore() is semaphore
        budget.close()

    @pytest.mark.asyncio
    async def test_open_twice(self):
        """Should refuse to open an open budget."""
        budget = ConcurrencyBudget(default=4, fd_limit=0)
        budget.open()
        with pytest.raises(RuntimeError):
            budget.open()
        budget.close()

    @pytest.mark.asyncio
    async def test_open_clamps_to_semaphore_range(self, caplog):
        """Should limit huge budgets to the semaphore range."""
        budget = ConcurrencyBudget(fd_limit=0)
        budget.value = SEMAPHORE_VALUE_MAX + 10
        budget.open()

        assert budget.value == SEMAPHORE_VALUE_MAX
        assert "Limiting max scanning thread count" in caplog.text
        budget.close()

    def test_close_without_open(self):
        """Should be a no-op."""
        ConcurrencyBudget(fd_limit=0).close()
