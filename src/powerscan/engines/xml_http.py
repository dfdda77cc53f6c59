"""
NetXML (XML over HTTP) discovery.

Eaton network management cards answer on HTTP with a product.xml
description. With an address range every address is asked directly;
without one, a scan request is broadcast over UDP and every card that
answers within the timeout is reported.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from .._types import BackendType, Device, XmlOptions
from .base import ScanEngine, probe_range

logger = logging.getLogger(__name__)

SCAN_REQUEST = b"<SCAN_REQUEST/>"
BROADCAST_ADDRESS = "255.255.255.255"
PRODUCT_PATH = "/product.xml"


def netxml_device(host: str, port_http: int = 80) -> Device:
    """Build a netxml-ups device for a management card."""
    url = f"http://{host}" if port_http == 80 else f"http://{host}:{port_http}"
    return Device(type=BackendType.XML, driver="netxml-ups", port=url)


class _ScanResponder(asyncio.DatagramProtocol):
    """Collects the addresses that answer a broadcast scan request."""

    def __init__(self):
        self.responders: list[str] = []

    def datagram_received(self, data: bytes, addr) -> None:
        host = addr[0]
        if host not in self.responders:
            logger.debug(f"NetXML scan answer from {host}")
            self.responders.append(host)

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"NetXML broadcast error: {exc}")


class XmlHttpEngine(ScanEngine):
    """Discover NetXML management cards."""

    backend = BackendType.XML

    async def scan(
        self,
        start: Optional[str],
        end: Optional[str],
        timeout: float,
        options: Optional[XmlOptions] = None,
    ) -> list[Device]:
        options = options or XmlOptions()
        timeout = options.timeout or timeout

        if start is None or end is None:
            return await self._broadcast(options, timeout)

        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:

            async def probe(address: str) -> list[Device]:
                return await self._probe_host(session, address, options)

            devices = await probe_range(start, end, probe)

        logger.debug(f"XML/HTTP scan of {start} .. {end} found {len(devices)} devices")
        return devices

    async def _probe_host(
        self,
        session: aiohttp.ClientSession,
        address: str,
        options: XmlOptions,
    ) -> list[Device]:
        """Ask one address for its product description."""
        host = f"[{address}]" if ":" in address else address
        url = f"http://{host}:{options.port_http}{PRODUCT_PATH}"
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    return []
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"No NetXML card at {address}: {e}")
            return []

        if "<PRODUCT" not in body:
            return []
        return [netxml_device(host, options.port_http)]

    async def _broadcast(self, options: XmlOptions, timeout: float) -> list[Device]:
        """Broadcast a scan request and collect the answering cards."""
        loop = asyncio.get_running_loop()
        target = options.peername or BROADCAST_ADDRESS

        try:
            transport, protocol = await loop.create_datagram_endpoint(
                _ScanResponder,
                local_addr=("0.0.0.0", 0),
                allow_broadcast=True,
            )
        except OSError as e:
            logger.warning(f"Cannot open NetXML broadcast socket: {e}")
            return []

        try:
            transport.sendto(SCAN_REQUEST, (target, options.port_udp))
            await asyncio.sleep(timeout)
        except OSError as e:
            logger.debug(f"NetXML broadcast to {target} failed: {e}")
        finally:
            transport.close()

        devices = [netxml_device(host, options.port_http) for host in protocol.responders]
        logger.debug(f"XML/HTTP broadcast found {len(devices)} devices")
        return devices
