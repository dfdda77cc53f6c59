"""
Concurrency budget.

Each in-flight probe inside a scan engine holds at least one file
descriptor, so the number of probes allowed to run at once is bounded by
the process's open-file limit (`ulimit -n`), minus a small reservation
for stdin/stdout/stderr.

The orchestrator owns the resulting semaphore: it is created once after
configuration is resolved, installed into the engine library before any
worker starts, and removed after every worker has finished.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

try:
    import resource
    RESOURCE_AVAILABLE = True
except ImportError:  # not a POSIX platform
    RESOURCE_AVAILABLE = False
    resource = None

from .engines import base as engine_lib

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 1024

# Descriptors kept back for baseline process usage
RESERVE_FD_COUNT = 3

# Largest value accepted for the semaphore counter
SEMAPHORE_VALUE_MAX = 2**32 - 2


def get_fd_limit() -> Optional[int]:
    """Get the soft open-file limit, or None if it cannot be read."""
    if not RESOURCE_AVAILABLE:
        return None
    try:
        soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    except (OSError, ValueError) as e:
        logger.warning(f"getrlimit() failed ({e}), keeping default job limits")
        return None

    logger.debug(f"Detected soft limit for file descriptor count is {soft}")
    logger.debug(f"Detected hard limit for file descriptor count is {hard}")
    if soft == resource.RLIM_INFINITY:
        return None
    return soft


def clamp_to_fd_limit(value: int, fd_limit: Optional[int]) -> int:
    """
    Constrain a budget to the descriptor limit minus the reservation.

    Returns the value unchanged when no limit is known or it already fits,
    otherwise fd_limit - RESERVE_FD_COUNT (never below 1).
    """
    if not fd_limit or fd_limit <= 0:
        return value
    ceiling = max(fd_limit - RESERVE_FD_COUNT, 1)
    return min(value, ceiling)


class ConcurrencyBudget:
    """
    Maximum number of concurrently outstanding scan units.

    Args:
        default: Budget before any limit or override is applied
        fd_limit: Soft open-file limit; queried from the OS when omitted,
            0 means unlimited
    """

    def __init__(
        self,
        default: int = DEFAULT_MAX_CONCURRENCY,
        fd_limit: Optional[int] = None,
    ):
        self.fd_limit = get_fd_limit() if fd_limit is None else fd_limit
        self.value = default
        self._semaphore: Optional[asyncio.Semaphore] = None

        clamped = clamp_to_fd_limit(self.value, self.fd_limit)
        if clamped != self.value:
            logger.info(
                f"Default max scanning thread count {self.value} exceeds the current "
                f"file descriptor count limit (minus reservation), constraining to {clamped}"
            )
            self.value = clamped

    def apply_override(self, requested: str | int) -> int:
        """
        Apply an operator-provided budget (the -T option).

        The value must be a positive integer that fits the platform size
        range. Anything else is rejected with a warning and the current
        budget is kept. A valid request above the descriptor limit is
        constrained to it.

        Returns the effective budget.
        """
        try:
            val = int(str(requested).strip(), 10)
        except ValueError:
            logger.warning(
                f"Requested max scanning thread count {requested} is out of range, "
                f"using default {self.value}"
            )
            return self.value

        if val <= 0 or val >= sys.maxsize:
            logger.warning(
                f"Requested max scanning thread count {requested} ({val}) is out of range, "
                f"using default {self.value}"
            )
            return self.value

        clamped = clamp_to_fd_limit(val, self.fd_limit)
        if clamped != val:
            logger.warning(
                f"Requested max scanning thread count {requested} ({val}) exceeds the "
                f"current file descriptor count limit (minus reservation), "
                f"constraining to {clamped}"
            )
        self.value = clamped
        return self.value

    @property
    def is_open(self) -> bool:
        return self._semaphore is not None

    def open(self) -> asyncio.Semaphore:
        """
        Create the semaphore and hand it to the scan engines.

        Any semaphore already installed in the engine library is dropped
        first. Must be called from inside the running event loop.
        """
        if self._semaphore is not None:
            raise RuntimeError("Concurrency budget is already open")

        if self.value > SEMAPHORE_VALUE_MAX:
            logger.warning("Limiting max scanning thread count to range acceptable for the semaphore")
            self.value = SEMAPHORE_VALUE_MAX

        previous = engine_lib.get_scan_semaphore()
        if previous is not None:
            logger.debug("Replacing scan semaphore installed by the engine library")

        self._semaphore = asyncio.Semaphore(self.value)
        engine_lib.set_scan_semaphore(self._semaphore)
        logger.debug(f"Concurrency budget opened with {self.value} slots")
        return self._semaphore

    def close(self) -> None:
        """Remove the semaphore from the scan engines."""
        if self._semaphore is None:
            return
        if engine_lib.get_scan_semaphore() is self._semaphore:
            engine_lib.set_scan_semaphore(None)
        self._semaphore = None
        logger.debug("Concurrency budget closed")
