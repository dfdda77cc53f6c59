"""
mDNS/DNS-SD discovery of NUT servers.

upsd instances that announce themselves as _nut._tcp are collected for
the duration of the timeout; each one is then asked for its UPS list
over the NUT protocol.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Optional

try:
    from zeroconf import IPVersion, ServiceBrowser, Zeroconf
    ZEROCONF_AVAILABLE = True
except ImportError:
    ZEROCONF_AVAILABLE = False
    Zeroconf = None
    ServiceBrowser = None
    IPVersion = None

from .._types import BackendType, Device
from ..exceptions import EngineUnavailableError
from .base import ScanEngine, probe_slot
from .nut import DEFAULT_UPSD_PORT, list_ups, nut_devices

logger = logging.getLogger(__name__)

NUT_SERVICE_TYPE = "_nut._tcp.local."


class _NutServiceListener:
    """Zeroconf listener remembering every announced NUT server."""

    def __init__(self):
        self._lock = threading.Lock()
        self.servers: list[tuple[str, int]] = []

    def add_service(self, zeroconf, service_type: str, name: str):
        """Zeroconf callback for new services."""
        try:
            info = zeroconf.get_service_info(service_type, name)
        except Exception as e:
            logger.debug(f"Cannot resolve service {name}: {e}")
            return

        if not info:
            return

        addresses = info.parsed_addresses()
        if not addresses:
            return

        server = (addresses[0], info.port or DEFAULT_UPSD_PORT)
        with self._lock:
            if server not in self.servers:
                logger.debug(f"NUT server announced at {server[0]}:{server[1]}")
                self.servers.append(server)

    def remove_service(self, zeroconf, service_type: str, name: str):
        """Zeroconf callback for removed services."""
        pass

    def update_service(self, zeroconf, service_type: str, name: str):
        """Zeroconf callback for service updates."""
        pass


def browse_nut_servers(timeout: float) -> list[tuple[str, int]]:
    """Browse for announced NUT servers (blocking)."""
    zc = Zeroconf(ip_version=IPVersion.All)
    listener = _NutServiceListener()
    browser = None
    try:
        browser = ServiceBrowser(zc, NUT_SERVICE_TYPE, listener)
        time.sleep(timeout)
    finally:
        if browser is not None:
            browser.cancel()
        zc.close()
    return list(listener.servers)


class AvahiEngine(ScanEngine):
    """Find NUT servers announced over mDNS."""

    backend = BackendType.AVAHI

    def is_available(self) -> bool:
        return ZEROCONF_AVAILABLE

    async def scan(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        timeout: float = 5,
        options: None = None,
    ) -> list[Device]:
        if not ZEROCONF_AVAILABLE:
            raise EngineUnavailableError(self.name, "zeroconf")

        loop = asyncio.get_running_loop()
        servers = await loop.run_in_executor(None, browse_nut_servers, timeout)
        logger.debug(f"Found {len(servers)} NUT servers via mDNS")

        devices: list[Device] = []
        for host, port in servers:
            try:
                async with probe_slot():
                    units = await list_ups(host, port, timeout)
            except (OSError, asyncio.TimeoutError) as e:
                logger.debug(f"Cannot list UPS on {host}:{port}: {e}")
                continue

            advertised_port = None if port == DEFAULT_UPSD_PORT else port
            devices.extend(nut_devices(self.backend, host, advertised_port, units))

        return devices
