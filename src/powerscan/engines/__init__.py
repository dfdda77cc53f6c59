"""
Scan engines for power device discovery.

Each engine implements the same interface:
- is_available() -> bool
- async scan(start, end, timeout, options) -> list[Device]

Engines:
- USB: enumerate UPS units on the USB bus (pyusb)
- SNMP: identify SNMP agents by sysObjectID (pysnmp)
- XML: NetXML management cards over HTTP/UDP (aiohttp)
- NUT: query remote upsd servers
- NUT simulation: list dummy-ups definition files
- Avahi: NUT servers announced over mDNS (zeroconf)
- IPMI: power supplies in BMC FRU inventory (pyghmi)
- Eaton serial: Q1 probe on serial ports (pyserial)
"""

from typing import Optional

from .._types import BackendType
from .base import (
    ScanEngine,
    get_scan_semaphore,
    iter_addresses,
    probe_range,
    probe_slot,
    set_scan_semaphore,
)
from .avahi import AvahiEngine
from .ipmi import IpmiEngine
from .nut import NutEngine
from .nut_simulation import NutSimulationEngine
from .serial import SerialEngine
from .snmp import SnmpEngine
from .usb import UsbEngine
from .xml_http import XmlHttpEngine


def build_engines(nut_confpath: Optional[str] = None) -> dict[BackendType, ScanEngine]:
    """Create the default engine for every backend, keyed by backend."""
    engines: list[ScanEngine] = [
        UsbEngine(),
        SnmpEngine(),
        XmlHttpEngine(),
        NutEngine(),
        NutSimulationEngine(confpath=nut_confpath),
        AvahiEngine(),
        IpmiEngine(),
        SerialEngine(),
    ]
    return {engine.backend: engine for engine in engines}


def available_backends(engines: dict[BackendType, ScanEngine]) -> set[BackendType]:
    """Get the backends whose engine library is installed."""
    return {backend for backend, engine in engines.items() if engine.is_available()}


__all__ = [
    "ScanEngine",
    "get_scan_semaphore",
    "set_scan_semaphore",
    "iter_addresses",
    "probe_range",
    "probe_slot",
    "AvahiEngine",
    "IpmiEngine",
    "NutEngine",
    "NutSimulationEngine",
    "SerialEngine",
    "SnmpEngine",
    "UsbEngine",
    "XmlHttpEngine",
    "build_engines",
    "available_backends",
]
