"""
Serial port probing for Eaton and Q1-protocol devices.

Each port is opened at 2400 baud and sent the Q1 status query. Devices
that answer with a "(" prefixed status line speak the Q1 protocol and
can be driven by blazer_ser.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

try:
    import serial
    from serial.tools import list_ports
    PYSERIAL_AVAILABLE = True
except ImportError:
    PYSERIAL_AVAILABLE = False
    serial = None
    list_ports = None

from .._types import BackendType, Device, SerialOptions
from ..exceptions import EngineUnavailableError
from .base import ScanEngine, probe_slot

logger = logging.getLogger(__name__)

Q1_BAUDRATE = 2400
Q1_COMMAND = b"Q1\r"
Q1_REPLY_PREFIX = b"("
Q1_REPLY_LENGTH = 47


def resolve_ports(port_list: Optional[str]) -> list[str]:
    """
    Expand a port list into device names.

    "auto" (or nothing) enumerates the local serial ports; anything else
    is a comma-separated list of names.
    """
    if not port_list or port_list.strip().lower() == "auto":
        ports = [port.device for port in list_ports.comports()]
        logger.debug(f"Found {len(ports)} local serial ports")
        return ports
    return [name.strip() for name in port_list.split(",") if name.strip()]


def probe_q1(port: str, timeout: float) -> bool:
    """Send Q1 on a port and check for a Q1 status reply (blocking)."""
    with serial.Serial(port, Q1_BAUDRATE, timeout=timeout) as conn:
        conn.reset_input_buffer()
        conn.write(Q1_COMMAND)
        conn.flush()
        reply = conn.read_until(b"\r", Q1_REPLY_LENGTH)

    logger.debug(f"Q1 reply on {port}: {reply!r}")
    return reply.startswith(Q1_REPLY_PREFIX)


class SerialEngine(ScanEngine):
    """Probe serial ports for Q1 devices."""

    backend = BackendType.EATON_SERIAL

    def is_available(self) -> bool:
        return PYSERIAL_AVAILABLE

    async def scan(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        timeout: float = 5,
        options: Optional[SerialOptions] = None,
    ) -> list[Device]:
        if not PYSERIAL_AVAILABLE:
            raise EngineUnavailableError(self.name, "pyserial")

        options = options or SerialOptions()
        loop = asyncio.get_running_loop()
        ports = await loop.run_in_executor(None, resolve_ports, options.ports)

        devices = []
        for port in ports:
            try:
                async with probe_slot():
                    found = await loop.run_in_executor(None, probe_q1, port, timeout)
            except (serial.SerialException, OSError) as e:
                logger.debug(f"Cannot probe serial port {port}: {e}")
                continue

            if found:
                devices.append(Device(
                    type=self.backend,
                    driver="blazer_ser",
                    port=port,
                ))

        logger.debug(f"Serial scan found {len(devices)} devices")
        return devices
