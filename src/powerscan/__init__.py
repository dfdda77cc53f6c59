"""
powerscan - discovery of UPS and PDU power devices.

Scans the USB bus, SNMP agents, NetXML cards, NUT servers (direct and
via mDNS), NUT simulation files, IPMI power supplies and serial ports,
then prints the devices found as ups.conf sections or parsable lines.

Architecture:
    cli -> ScanOrchestrator -> one BackendWorker per backend -> ScanEngine
    Address ranges come from the command line or local subnets, and the
    number of in-flight probes is bounded by the open-file limit.
"""

__version__ = "1.0.0"

from ._types import (
    AddressRange,
    BackendType,
    Device,
    DisplayMode,
    IpmiOptions,
    NutOptions,
    ScanState,
    SerialOptions,
    SnmpOptions,
    UsbOptions,
    XmlOptions,
)
from .exceptions import EngineUnavailableError, PowerscanError, UsageError

__all__ = [
    "__version__",
    "AddressRange",
    "BackendType",
    "Device",
    "DisplayMode",
    "IpmiOptions",
    "NutOptions",
    "ScanState",
    "SerialOptions",
    "SnmpOptions",
    "UsbOptions",
    "XmlOptions",
    "PowerscanError",
    "UsageError",
    "EngineUnavailableError",
]
