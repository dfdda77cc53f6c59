"""
Backend workers.

A worker drives one scan engine over the address ranges (or the
implicit target) that apply to its backend, folds the returned device
lists together, and publishes the result into its slot of ScanResults.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ._types import IMPLICIT_TARGET_BACKENDS, RANGE_BACKENDS, BackendType, Device
from .devices import ScanResults, merge_device_lists
from .engines import ScanEngine
from .ranges import AddressRangeRegistry

logger = logging.getLogger(__name__)


class BackendWorker:
    """
    Unit of work for one backend in one run.

    The registry is only read; it must be fully built before the worker
    runs and left untouched until it has finished.
    """

    def __init__(
        self,
        engine: ScanEngine,
        registry: AddressRangeRegistry,
        results: ScanResults,
        timeout: float,
        options: Any = None,
    ):
        self.engine = engine
        self.registry = registry
        self.results = results
        self.timeout = timeout
        self.options = options

    @property
    def backend(self) -> BackendType:
        return self.engine.backend

    @property
    def uses_ranges(self) -> bool:
        return self.backend in RANGE_BACKENDS

    async def run(self) -> list[Device]:
        """
        Scan and publish the accumulated device list.

        The slot must have been claimed with ScanResults.begin() first.
        """
        if self.uses_ranges and self.registry:
            devices = await self._scan_ranges()
        elif self.uses_ranges and self.backend not in IMPLICIT_TARGET_BACKENDS:
            logger.debug(f"No IP range(s) for {self.backend.display_name}, nothing to scan")
            devices = []
        else:
            devices = await self._scan_once()

        if devices:
            logger.debug(f"{self.backend.display_name} scan found {len(devices)} devices")
        else:
            logger.debug(f"{self.backend.display_name} scan found nothing")

        self.results.store(self.backend, devices)
        return devices

    async def _scan_ranges(self) -> list[Device]:
        """Call the engine once per range, in registry order."""
        accumulated: list[Device] = []
        for address_range in self.registry:
            logger.debug(
                f"Scanning {self.backend.display_name} range "
                f"[{address_range.start} .. {address_range.end}]"
            )
            found = await self._scan(address_range.start, address_range.end)
            accumulated = merge_device_lists(found, accumulated)
        return accumulated

    async def _scan_once(self) -> list[Device]:
        """Call the engine for its implicit target."""
        return merge_device_lists(await self._scan(None, None), None)

    async def _scan(self, start: Optional[str], end: Optional[str]) -> list[Device]:
        target = f"{start} .. {end}" if start is not None else "default target"
        try:
            return await self.engine.scan(start, end, self.timeout, self.options)
        except Exception as e:
            logger.error(f"Error in {self.backend.display_name} scan of {target}: {e}")
            return []
