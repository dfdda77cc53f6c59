"""
IPMI power supply discovery.

Reads the FRU inventory of a BMC, either over the LAN for each address
of a range or through the local in-band interface when no range is
given. Every FRU describing a power supply becomes a device for the
nut-ipmipsu driver.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

try:
    from pyghmi.ipmi import command as ipmi_command
    from pyghmi.ipmi import fru as ipmi_fru
    PYGHMI_AVAILABLE = True
except ImportError:
    PYGHMI_AVAILABLE = False
    ipmi_command = None
    ipmi_fru = None

from .._types import BackendType, Device, IpmiOptions
from ..exceptions import EngineUnavailableError
from .base import ScanEngine, probe_range, probe_slot

logger = logging.getLogger(__name__)

PRIVILEGE_LEVELS = {
    "CALLBACK": 1,
    "USER": 2,
    "OPERATOR": 3,
    "ADMIN": 4,
}

POWER_SUPPLY_MARKERS = ("power supply", "psu", "ps ")


def is_power_supply(fru_name: str, info: Optional[dict] = None) -> bool:
    """Check whether a FRU record describes a power supply."""
    name = f"{fru_name.lower()} "
    if any(marker in name for marker in POWER_SUPPLY_MARKERS):
        return True
    if info:
        description = str(info.get("Product name", "")).lower()
        return "power supply" in description
    return False


def read_power_supplies(host: Optional[str], options: IpmiOptions) -> list[int]:
    """
    Get the FRU ids of the power supplies a BMC reports (blocking).

    Args:
        host: BMC address, None for the local in-band interface
        options: IPMI credentials and session settings
    """
    if host is None:
        cmd = ipmi_command.Command()
    else:
        cmd = ipmi_command.Command(
            bmc=host,
            userid=options.username or "",
            password=options.password or "",
            privlevel=PRIVILEGE_LEVELS.get(options.privilege_level, 4),
        )

    sdr = cmd.init_sdr()
    fru_ids = []
    for fru_id in sorted(sdr.fru):
        entry = sdr.fru[fru_id]
        try:
            info = ipmi_fru.FRU(ipmicmd=cmd, fruid=fru_id, sdr=entry).info
        except Exception as e:
            logger.debug(f"Cannot read FRU {fru_id} on {host or 'local BMC'}: {e}")
            continue
        if is_power_supply(entry.fru_name, info):
            fru_ids.append(fru_id)
    return fru_ids


def ipmi_device_options(host: Optional[str], options: IpmiOptions) -> dict[str, str]:
    """Driver options for a power supply reached over the LAN."""
    if host is None:
        return {}
    result: dict[str, str] = {}
    if options.username:
        result["username"] = options.username
    if options.password:
        result["password"] = options.password
    result["authtype"] = options.authentication_type
    if options.ipmi_version == "2.0":
        result["cipher_suite_id"] = str(options.cipher_suite_id)
    return result


class IpmiEngine(ScanEngine):
    """Discover IPMI power supply units."""

    backend = BackendType.IPMI

    def is_available(self) -> bool:
        return PYGHMI_AVAILABLE

    async def scan(
        self,
        start: Optional[str],
        end: Optional[str],
        timeout: float,
        options: Optional[IpmiOptions] = None,
    ) -> list[Device]:
        if not PYGHMI_AVAILABLE:
            raise EngineUnavailableError(self.name, "pyghmi")

        options = options or IpmiOptions()

        if start is None or end is None:
            async with probe_slot():
                return await self._probe_host(None, timeout, options)

        async def probe(address: str) -> list[Device]:
            return await self._probe_host(address, timeout, options)

        devices = await probe_range(start, end, probe)
        logger.debug(f"IPMI scan of {start} .. {end} found {len(devices)} devices")
        return devices

    async def _probe_host(
        self,
        host: Optional[str],
        timeout: float,
        options: IpmiOptions,
    ) -> list[Device]:
        """
        Read the power supplies of one BMC.

        The caller's probe slot stays held until the BMC session thread
        has ended, even when the answer comes too late to be used.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, read_power_supplies, host, options)
        try:
            fru_ids = await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug(f"No IPMI answer from {host or 'local BMC'} within {timeout}s")
            await asyncio.gather(future, return_exceptions=True)
            return []
        except Exception as e:
            logger.debug(f"IPMI query of {host or 'local BMC'} failed: {e}")
            return []

        devices = []
        for fru_id in fru_ids:
            port = f"id{fru_id}@{host}" if host else f"id{fru_id}"
            devices.append(Device(
                type=self.backend,
                driver="nut-ipmipsu",
                port=port,
                options=ipmi_device_options(host, options),
            ))
        return devices
