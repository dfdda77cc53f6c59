"""
NUT network protocol scanning.

Connects to upsd on every address of a range and asks it which UPS
units it serves (LIST UPS). Each unit becomes a device that can be
reached through the nutclient driver.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from .._types import BackendType, Device, NutOptions
from .base import ScanEngine, probe_range

logger = logging.getLogger(__name__)

DEFAULT_UPSD_PORT = 3493

# UPS <upsname> "<description>"
_UPS_LINE = re.compile(r'^UPS\s+(\S+)\s+"(.*)"\s*$')


def parse_ups_list(lines: list[str]) -> list[tuple[str, str]]:
    """Parse the body of a LIST UPS reply into (name, description) pairs."""
    units = []
    for line in lines:
        match = _UPS_LINE.match(line.strip())
        if match:
            units.append((match.group(1), match.group(2)))
    return units


async def list_ups(host: str, port: int, timeout: float) -> list[tuple[str, str]]:
    """
    Ask an upsd instance for the UPS units it serves.

    Raises:
        OSError: if the server cannot be reached
        asyncio.TimeoutError: if it does not answer within the timeout
    """
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port),
        timeout=timeout,
    )
    try:
        writer.write(b"LIST UPS\n")
        await writer.drain()

        lines: list[str] = []
        while True:
            raw = await asyncio.wait_for(reader.readline(), timeout=timeout)
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip("\r\n")
            if line.startswith("ERR"):
                logger.debug(f"upsd on {host}:{port} refused LIST UPS: {line}")
                break
            if line.startswith("END LIST UPS"):
                break
            lines.append(line)

        return parse_ups_list(lines)

    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


def nut_devices(
    backend: BackendType,
    host: str,
    port: Optional[int],
    units: list[tuple[str, str]],
) -> list[Device]:
    """Build nutclient devices for the units served by one upsd."""
    devices = []
    for name, desc in units:
        target = f"{name}@{host}:{port}" if port else f"{name}@{host}"
        options = {"desc": desc} if desc else {}
        devices.append(Device(
            type=backend,
            driver="nutclient",
            port=target,
            options=options,
        ))
    return devices


class NutEngine(ScanEngine):
    """Scan address ranges for upsd servers."""

    backend = BackendType.NUT

    async def scan(
        self,
        start: Optional[str],
        end: Optional[str],
        timeout: float,
        options: Optional[NutOptions] = None,
    ) -> list[Device]:
        """
        Query upsd on each address of the range.

        Returns one device per UPS unit found.
        """
        if start is None or end is None:
            logger.debug("NUT scan needs an address range, nothing to do")
            return []

        port = options.port if options else None

        async def probe(address: str) -> list[Device]:
            try:
                units = await list_ups(address, port or DEFAULT_UPSD_PORT, timeout)
            except (OSError, asyncio.TimeoutError) as e:
                logger.debug(f"No upsd on {address}: {e}")
                return []
            return nut_devices(self.backend, address, port, units)

        devices = await probe_range(start, end, probe)
        logger.debug(f"NUT scan of {start} .. {end} found {len(devices)} devices")
        return devices
