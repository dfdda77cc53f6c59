"""
NUT simulation device discovery.

Simulated UPS units are described by .dev (static) and .seq (sequence)
files in the NUT configuration directory, each usable as the port of the
dummy-ups driver.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .._types import BackendType, Device
from .base import ScanEngine

logger = logging.getLogger(__name__)

DEFAULT_CONFPATH = "/etc/nut"
SIMULATION_SUFFIXES = (".dev", ".seq")


class NutSimulationEngine(ScanEngine):
    """List NUT simulation files."""

    backend = BackendType.NUT_SIMULATION

    def __init__(self, confpath: Optional[str] = None):
        """
        Initialize simulation discovery.

        Args:
            confpath: Directory to search; defaults to $NUT_CONFPATH or /etc/nut
        """
        self.confpath = Path(confpath or os.getenv("NUT_CONFPATH") or DEFAULT_CONFPATH)

    async def scan(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        timeout: float = 0,
        options: Optional[str] = None,
    ) -> list[Device]:
        """List simulation files; options, when given, overrides the directory."""
        confpath = Path(options) if options else self.confpath
        devices = []

        try:
            entries = sorted(confpath.iterdir())
        except OSError as e:
            logger.debug(f"Cannot list {confpath}: {e}")
            return devices

        for entry in entries:
            if entry.suffix in SIMULATION_SUFFIXES and entry.is_file():
                devices.append(Device(
                    type=self.backend,
                    driver="dummy-ups",
                    port=entry.name,
                ))

        logger.debug(f"Found {len(devices)} simulation files in {confpath}")
        return devices
