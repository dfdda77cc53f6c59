"""
Base classes and shared helpers for scan engines.
"""

from __future__ import annotations

import asyncio
import contextlib
import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, Optional

from .._types import BackendType, Device

logger = logging.getLogger(__name__)

# Installed by the orchestrator for the duration of a run
_scan_semaphore: Optional[asyncio.Semaphore] = None

# Probe bound for probe_range when no semaphore is installed
DEFAULT_RANGE_CONCURRENCY = 256


def set_scan_semaphore(semaphore: Optional[asyncio.Semaphore]) -> None:
    """Install (or remove, with None) the semaphore bounding probes."""
    global _scan_semaphore
    _scan_semaphore = semaphore


def get_scan_semaphore() -> Optional[asyncio.Semaphore]:
    """Get the semaphore bounding probes, if one is installed."""
    return _scan_semaphore


@contextlib.asynccontextmanager
async def probe_slot() -> AsyncIterator[None]:
    """Hold one unit of the concurrency budget for the duration of a probe."""
    semaphore = _scan_semaphore
    if semaphore is None:
        yield
        return
    async with semaphore:
        yield


def iter_addresses(start: str, end: str) -> Iterator[str]:
    """
    Iterate every address from start to end, inclusive.

    A reversed range is walked from the lower address up.
    """
    first = ipaddress.ip_address(start)
    last = ipaddress.ip_address(end)
    if first.version != last.version:
        raise ValueError(f"Address family mismatch in range {start} .. {end}")
    if first > last:
        first, last = last, first

    address_class = type(first)
    for value in range(int(first), int(last) + 1):
        yield str(address_class(value))


async def probe_range(
    start: str,
    end: str,
    probe: Callable[[str], Awaitable[list[Device]]],
) -> list[Device]:
    """
    Run a per-address probe over a range, bounded by the scan semaphore.

    Addresses are drawn lazily and a slot is taken before each probe task
    is created, so no more tasks exist than the semaphore allows. Without
    an installed semaphore at most DEFAULT_RANGE_CONCURRENCY probes run.

    Results are returned in address order. A probe that raises is logged
    and contributes nothing.
    """
    semaphore = _scan_semaphore or asyncio.Semaphore(DEFAULT_RANGE_CONCURRENCY)
    found: dict[int, list[Device]] = {}
    pending: set[asyncio.Task] = set()

    async def run(index: int, address: str) -> None:
        try:
            devices = await probe(address)
        except Exception as e:
            logger.debug(f"Probe of {address} failed: {e}")
            return
        if devices:
            found[index] = devices

    def finished(task: asyncio.Task) -> None:
        pending.discard(task)
        semaphore.release()

    try:
        for index, address in enumerate(iter_addresses(start, end)):
            await semaphore.acquire()
            task = asyncio.ensure_future(run(index, address))
            pending.add(task)
            task.add_done_callback(finished)

        if pending:
            await asyncio.wait(set(pending))
    finally:
        for task in list(pending):
            task.cancel()

    devices: list[Device] = []
    for index in sorted(found):
        devices.extend(found[index])
    return devices


class ScanEngine(ABC):
    """Base class for protocol scan engines."""

    backend: BackendType

    @property
    def name(self) -> str:
        """Name of this scan engine."""
        return self.backend.value

    def is_available(self) -> bool:
        """Check if the library this engine needs is installed."""
        return True

    @abstractmethod
    async def scan(
        self,
        start: Optional[str],
        end: Optional[str],
        timeout: float,
        options: Any = None,
    ) -> list[Device]:
        """
        Scan for devices.

        Args:
            start: First address of the range, None for the default target
            end: Last address of the range, None for the default target
            timeout: Network operation timeout in seconds
            options: Backend-specific option record

        Returns list of discovered devices; empty when nothing was found.
        """
        pass
