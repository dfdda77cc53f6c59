"""
Type definitions for the power device scanner.

These dataclasses define the core domain model: the closed roster of
scan backends, discovered devices, address ranges, and the per-backend
option records handed to the scan engines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class BackendType(str, Enum):
    """Scan backends, in the fixed order used for dispatch and display."""
    USB = "usb"
    SNMP = "snmp"
    XML = "xml"
    NUT = "nut"
    NUT_SIMULATION = "nut_simulation"
    AVAHI = "avahi"
    IPMI = "ipmi"
    EATON_SERIAL = "eaton_serial"

    @property
    def display_name(self) -> str:
        """Name used by the parsable display and the -a listing."""
        return DISPLAY_NAMES[self]

    @property
    def description(self) -> str:
        """Human readable bus name for progress messages."""
        return DESCRIPTIONS[self]


BACKEND_ORDER: tuple[BackendType, ...] = tuple(BackendType)

# Backends whose probing targets are address ranges
RANGE_BACKENDS = frozenset({
    BackendType.SNMP,
    BackendType.XML,
    BackendType.NUT,
    BackendType.IPMI,
})

# Range backends that still probe an implicit target when no range is given
# (XML: broadcast discovery, IPMI: local in-band device)
IMPLICIT_TARGET_BACKENDS = frozenset({
    BackendType.XML,
    BackendType.IPMI,
})

# Never enabled by "scan everything": slow and disruptive to probe
EXPLICIT_ONLY_BACKENDS = frozenset({
    BackendType.EATON_SERIAL,
})

DISPLAY_NAMES = {
    BackendType.USB: "USB",
    BackendType.SNMP: "SNMP",
    BackendType.XML: "XML",
    BackendType.NUT: "NUT",
    BackendType.NUT_SIMULATION: "NUT_SIMULATION",
    BackendType.AVAHI: "AVAHI",
    BackendType.IPMI: "IPMI",
    BackendType.EATON_SERIAL: "EATON_SERIAL",
}

DESCRIPTIONS = {
    BackendType.USB: "USB bus",
    BackendType.SNMP: "SNMP bus",
    BackendType.XML: "XML/HTTP bus",
    BackendType.NUT: "NUT bus (old connect method)",
    BackendType.NUT_SIMULATION: "NUT simulation devices",
    BackendType.AVAHI: "NUT bus (avahi method)",
    BackendType.IPMI: "IPMI bus",
    BackendType.EATON_SERIAL: "serial bus for Eaton devices",
}


class DisplayMode(str, Enum):
    """Output styles for scan results."""
    UPS_CONF_SANITY = "ups_conf_sanity"  # -Q (default)
    UPS_CONF = "ups_conf"                # -N
    PARSABLE = "parsable"                # -P


class ScanState(str, Enum):
    """Orchestrator run states."""
    CONFIGURING = "configuring"
    DISPATCHING = "dispatching"
    AWAITING_COMPLETION = "awaiting_completion"
    RENDERING = "rendering"
    DONE = "done"


@dataclass
class Device:
    """
    A discovered power device.

    The orchestrator only cares about list membership; driver, port and
    options are filled in by the scan engine that found the device and
    consumed by the display functions.
    """
    type: BackendType
    driver: str
    port: str
    options: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AddressRange:
    """An inclusive start/end address pair to scan."""
    start: str
    end: str


@dataclass
class UsbOptions:
    """
    USB enumeration options.

    link_detail_level:
        -1: library default (same as 0)
         0: do not report bus/device/busport details
         1: report bus and busport
         2: report bus, busport and device
         3: like 2, plus bcdDevice
    """
    link_detail_level: int = -1

    @property
    def report_bus(self) -> bool:
        return self.link_detail_level >= 1

    @property
    def report_busport(self) -> bool:
        return self.link_detail_level >= 1

    @property
    def report_device(self) -> bool:
        return self.link_detail_level >= 2

    @property
    def report_bcd_device(self) -> bool:
        return self.link_detail_level >= 3


@dataclass
class SnmpOptions:
    """SNMP v1 community and v3 security settings."""
    community: Optional[str] = None
    sec_level: Optional[str] = None  # noAuthNoPriv, authNoPriv, authPriv
    sec_name: Optional[str] = None
    auth_password: Optional[str] = None
    priv_password: Optional[str] = None
    auth_protocol: Optional[str] = None  # MD5, SHA, SHA256, SHA384, SHA512
    priv_protocol: Optional[str] = None  # DES, AES, AES192, AES256

    @property
    def is_v3(self) -> bool:
        return self.sec_level is not None


@dataclass
class XmlOptions:
    """NetXML (XML/HTTP) discovery settings."""
    port_http: int = 80
    port_udp: int = 4679
    timeout: Optional[float] = None  # overridden by the common timeout
    peername: Optional[str] = None


@dataclass
class NutOptions:
    """Settings for probing remote upsd instances."""
    port: Optional[int] = None


IPMI_AUTH_TYPES = ("NONE", "STRAIGHT_PASSWORD_KEY", "MD2", "MD5")


@dataclass
class IpmiOptions:
    """IPMI over LAN authentication settings."""
    username: Optional[str] = None
    password: Optional[str] = None
    authentication_type: str = "MD5"
    cipher_suite_id: int = 3  # HMAC-SHA1; HMAC-SHA1-96; AES-CBC-128
    ipmi_version: str = "1.5"
    privilege_level: str = "ADMIN"


@dataclass
class SerialOptions:
    """Serial ports to probe ("auto" enumerates local ports)."""
    ports: Optional[str] = None
