"""
Scanner configuration.

Settings come from defaults, then the environment or a YAML file, then
command-line options. SNMP and IPMI secrets may be kept in a separate
credentials file so they do not have to appear on the command line.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from ._types import (
    IPMI_AUTH_TYPES,
    DisplayMode,
    IpmiOptions,
    NutOptions,
    SerialOptions,
    SnmpOptions,
    UsbOptions,
    XmlOptions,
)
from .budget import DEFAULT_MAX_CONCURRENCY

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_TIMEOUT = 5
DEFAULT_NUT_CONFPATH = "/etc/nut"
DEFAULT_CREDENTIALS_PATH = "/etc/nut/powerscan_creds.yaml"

SNMP_SEC_LEVELS = ("noAuthNoPriv", "authNoPriv", "authPriv")

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    """Read an integer environment variable, None when unset or invalid."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer value of {name}: {value}")
        return None


@dataclass
class ScannerConfig:
    """
    Power device scanner configuration.

    Credentials loaded from the credentials file fill in only what the
    command line left unset.
    """

    # Scanning behavior
    timeout: float = DEFAULT_NETWORK_TIMEOUT
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    parallel: bool = True

    # NUT servers
    nut_port: Optional[int] = None
    nut_confpath: str = field(
        default_factory=lambda: os.getenv("NUT_CONFPATH") or DEFAULT_NUT_CONFPATH
    )

    # NetXML
    xml_http_port: int = 80
    xml_udp_port: int = 4679

    # SNMP v1 community / v3 security
    snmp_community: Optional[str] = None
    snmp_sec_level: Optional[str] = None
    snmp_sec_name: Optional[str] = None
    snmp_auth_password: Optional[str] = None
    snmp_priv_password: Optional[str] = None
    snmp_auth_protocol: Optional[str] = None
    snmp_priv_protocol: Optional[str] = None

    # IPMI over LAN
    ipmi_username: Optional[str] = None
    ipmi_password: Optional[str] = None
    ipmi_auth_type: str = "MD5"
    ipmi_cipher_suite_id: int = 3
    ipmi_version: str = "1.5"
    ipmi_privilege_level: str = "ADMIN"

    # USB / serial
    usb_link_detail: int = -1
    serial_ports: Optional[str] = None

    # Output
    display_mode: DisplayMode = DisplayMode.UPS_CONF_SANITY
    quiet: bool = False
    debug_level: int = 0

    # Paths
    credentials_path: Path = field(default_factory=lambda: Path(DEFAULT_CREDENTIALS_PATH))

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """Load configuration from environment variables."""
        config = cls()

        if (timeout := _env_int("POWERSCAN_TIMEOUT")) is not None:
            config.timeout = timeout
        if (max_concurrency := _env_int("POWERSCAN_MAX_CONCURRENCY")) is not None:
            config.max_concurrency = max_concurrency
        config.nut_port = _env_int("POWERSCAN_NUT_PORT")

        if parallel := os.getenv("POWERSCAN_PARALLEL"):
            config.parallel = parallel.strip().lower() in _TRUE_VALUES

        if creds_path := os.getenv("POWERSCAN_CREDENTIALS_PATH"):
            config.credentials_path = Path(creds_path)

        config.log_level = os.getenv("POWERSCAN_LOG_LEVEL", "INFO")

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ScannerConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        if "scan" in data:
            s = data["scan"] or {}
            config.timeout = s.get("timeout", config.timeout)
            config.max_concurrency = s.get("max_concurrency", config.max_concurrency)
            config.parallel = bool(s.get("parallel", config.parallel))

        if "nut" in data:
            n = data["nut"] or {}
            config.nut_port = n.get("port")
            if "confpath" in n:
                config.nut_confpath = n["confpath"]

        if "xml" in data:
            x = data["xml"] or {}
            config.xml_http_port = x.get("http_port", config.xml_http_port)
            config.xml_udp_port = x.get("udp_port", config.xml_udp_port)

        if "snmp" in data:
            config._apply_snmp(data["snmp"] or {})

        if "ipmi" in data:
            i = data["ipmi"] or {}
            config._apply_ipmi_credentials(i)
            config.ipmi_auth_type = i.get("auth_type", config.ipmi_auth_type)
            config.ipmi_cipher_suite_id = i.get("cipher_suite_id", config.ipmi_cipher_suite_id)
            config.ipmi_version = str(i.get("version", config.ipmi_version))

        if "display" in data:
            d = data["display"] or {}
            config.display_mode = d.get("mode", config.display_mode)

        if "paths" in data:
            p = data["paths"] or {}
            if "credentials" in p:
                config.credentials_path = Path(p["credentials"])

        config.log_level = data.get("log_level", "INFO")

        return config

    def _apply_snmp(self, section: dict) -> None:
        """Fill unset SNMP fields from a config or credentials section."""
        self.snmp_community = self.snmp_community or section.get("community")
        self.snmp_sec_level = self.snmp_sec_level or section.get("sec_level")
        self.snmp_sec_name = self.snmp_sec_name or section.get("sec_name")
        self.snmp_auth_password = self.snmp_auth_password or section.get("auth_password")
        self.snmp_priv_password = self.snmp_priv_password or section.get("priv_password")
        self.snmp_auth_protocol = self.snmp_auth_protocol or section.get("auth_protocol")
        self.snmp_priv_protocol = self.snmp_priv_protocol or section.get("priv_protocol")

    def _apply_ipmi_credentials(self, section: dict) -> None:
        self.ipmi_username = self.ipmi_username or section.get("username")
        self.ipmi_password = self.ipmi_password or section.get("password")

    def load_credentials(self) -> bool:
        """
        Load SNMP and IPMI secrets from the credentials file.

        The file is optional; values already set are kept.
        """
        if not self.credentials_path.exists():
            logger.debug(f"Credentials file not found: {self.credentials_path}")
            return False

        try:
            with open(self.credentials_path) as f:
                creds = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load credentials: {e}")
            return False

        if "snmp" in creds:
            self._apply_snmp(creds["snmp"] or {})
        if "ipmi" in creds:
            self._apply_ipmi_credentials(creds["ipmi"] or {})

        logger.debug("Scanner credentials loaded successfully")
        return True

    def validate(self) -> list[str]:
        """
        Validate configuration, returning a list of warnings.

        Out-of-range values are replaced by their defaults.
        """
        warnings = []

        try:
            timeout_ok = float(self.timeout) > 0
        except (TypeError, ValueError):
            timeout_ok = False
        if not timeout_ok:
            warnings.append(
                f"Illegal timeout value {self.timeout}, using default {DEFAULT_NETWORK_TIMEOUT}s"
            )
            self.timeout = DEFAULT_NETWORK_TIMEOUT

        if not isinstance(self.max_concurrency, int) or self.max_concurrency <= 0:
            warnings.append(
                f"Invalid max concurrency {self.max_concurrency}, "
                f"using default {DEFAULT_MAX_CONCURRENCY}"
            )
            self.max_concurrency = DEFAULT_MAX_CONCURRENCY

        try:
            self.display_mode = DisplayMode(self.display_mode)
        except ValueError:
            warnings.append(f"Unknown display mode {self.display_mode}, using ups.conf with sanity check")
            self.display_mode = DisplayMode.UPS_CONF_SANITY

        if self.snmp_sec_level is not None:
            if self.snmp_sec_level not in SNMP_SEC_LEVELS:
                warnings.append(f"Unknown SNMP v3 security level: {self.snmp_sec_level}")
            if not self.snmp_sec_name:
                warnings.append("SNMP v3 security level given without a security name")

        if self.ipmi_auth_type not in IPMI_AUTH_TYPES:
            warnings.append(f"Unknown IPMI authentication type ({self.ipmi_auth_type}). Defaulting to MD5")
            self.ipmi_auth_type = "MD5"

        return warnings

    def usb_options(self) -> UsbOptions:
        return UsbOptions(link_detail_level=self.usb_link_detail)

    def snmp_options(self) -> SnmpOptions:
        return SnmpOptions(
            community=self.snmp_community,
            sec_level=self.snmp_sec_level,
            sec_name=self.snmp_sec_name,
            auth_password=self.snmp_auth_password,
            priv_password=self.snmp_priv_password,
            auth_protocol=self.snmp_auth_protocol,
            priv_protocol=self.snmp_priv_protocol,
        )

    def xml_options(self) -> XmlOptions:
        return XmlOptions(
            port_http=self.xml_http_port,
            port_udp=self.xml_udp_port,
            timeout=self.timeout,
        )

    def nut_options(self) -> NutOptions:
        return NutOptions(port=self.nut_port)

    def ipmi_options(self) -> IpmiOptions:
        return IpmiOptions(
            username=self.ipmi_username,
            password=self.ipmi_password,
            authentication_type=self.ipmi_auth_type,
            cipher_suite_id=self.ipmi_cipher_suite_id,
            ipmi_version=self.ipmi_version,
            privilege_level=self.ipmi_privilege_level,
        )

    def serial_options(self) -> SerialOptions:
        return SerialOptions(ports=self.serial_ports)


# Example powerscan_creds.yaml:
"""
# /etc/nut/powerscan_creds.yaml

snmp:
  community: "private"
  sec_name: "nutmon"
  auth_password: "auth-pass-phrase"
  priv_password: "priv-pass-phrase"

ipmi:
  username: "ADMIN"
  password: "ipmi-password-here"
"""

# Example powerscan.yaml:
"""
scan:
  timeout: 5
  max_concurrency: 256
  parallel: true

nut:
  port: 3493
  confpath: "/etc/nut"

xml:
  http_port: 80
  udp_port: 4679

snmp:
  community: "public"

ipmi:
  auth_type: "MD5"
  cipher_suite_id: 3
  version: "1.5"

display:
  mode: "parsable"

paths:
  credentials: "/etc/nut/powerscan_creds.yaml"

log_level: "INFO"
"""
