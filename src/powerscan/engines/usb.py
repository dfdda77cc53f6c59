"""
USB power device enumeration.

Walks the USB bus and reports every device whose vendor and product ids
match a known UPS, together with the driver that handles it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

try:
    import usb.core
    import usb.util
    PYUSB_AVAILABLE = True
except ImportError:
    PYUSB_AVAILABLE = False
    usb = None

from .._types import BackendType, Device, UsbOptions
from ..exceptions import EngineUnavailableError
from .base import ScanEngine

logger = logging.getLogger(__name__)

# (vendor id, product id or None for any) -> driver
KNOWN_DEVICES: dict[tuple[int, Optional[int]], str] = {
    (0x0463, 0x0001): "usbhid-ups",   # Eaton / MGE
    (0x0463, 0xFFFF): "usbhid-ups",
    (0x051D, None): "usbhid-ups",     # APC
    (0x0764, 0x0005): "usbhid-ups",   # CyberPower
    (0x0764, 0x0501): "usbhid-ups",
    (0x0764, 0x0601): "usbhid-ups",
    (0x09AE, None): "usbhid-ups",     # Tripp Lite
    (0x050D, None): "usbhid-ups",     # Belkin
    (0x03F0, 0x1F06): "usbhid-ups",   # HP
    (0x03F0, 0x1FE0): "usbhid-ups",
    (0x047C, 0xFFFF): "usbhid-ups",   # Dell
    (0x0665, 0x5161): "nutdrv_qx",    # Cypress serial bridge (Q1 protocol)
    (0x06DA, 0x0003): "nutdrv_qx",    # Phoenixtec
    (0x0001, 0x0000): "nutdrv_qx",    # Fiskars / Powerware clones
    (0x10AF, 0x0001): "bcmxcp_usb",   # Liebert
    (0x0592, 0x0002): "bcmxcp_usb",   # Powerware
    (0x0D9F, 0x0004): "nutdrv_qx",    # Powercom
    (0x0D9F, 0x00A2): "usbhid-ups",
    (0x2B2D, 0xFFFF): "nutdrv_qx",    # Riello
}


def match_driver(vendor_id: int, product_id: int) -> Optional[str]:
    """Get the driver for a vendor/product pair, if it is a known UPS."""
    return KNOWN_DEVICES.get((vendor_id, product_id)) or KNOWN_DEVICES.get((vendor_id, None))


def _string(dev: Any, index: int) -> Optional[str]:
    """Read a string descriptor, None when it is absent or unreadable."""
    if not index:
        return None
    try:
        value = usb.util.get_string(dev, index)
    except (usb.core.USBError, ValueError, NotImplementedError) as e:
        logger.debug(f"Cannot read USB string descriptor {index}: {e}")
        return None
    return value.strip() if value else None


def usb_device_options(dev: Any, options: UsbOptions) -> dict[str, str]:
    """Driver options for one matched USB device."""
    result = {
        "vendorid": f"{dev.idVendor:04X}",
        "productid": f"{dev.idProduct:04X}",
    }

    product = _string(dev, dev.iProduct)
    if product:
        result["product"] = product
    serial = _string(dev, dev.iSerialNumber)
    if serial:
        result["serial"] = serial
    vendor = _string(dev, dev.iManufacturer)
    if vendor:
        result["vendor"] = vendor

    if options.report_bus:
        result["bus"] = f"{dev.bus:03d}"
    if options.report_busport:
        port_numbers = getattr(dev, "port_numbers", None)
        if port_numbers:
            result["busport"] = ".".join(str(n) for n in port_numbers)
        elif getattr(dev, "port_number", None):
            result["busport"] = f"{dev.port_number:03d}"
    if options.report_device:
        result["device"] = f"{dev.address:03d}"
    if options.report_bcd_device:
        result["bcdDevice"] = f"{dev.bcdDevice:04x}"
    return result


def enumerate_usb(options: UsbOptions) -> list[Device]:
    """Enumerate matching USB devices (blocking)."""
    devices = []
    for dev in usb.core.find(find_all=True):
        driver = match_driver(dev.idVendor, dev.idProduct)
        if driver is None:
            continue
        logger.debug(f"USB device {dev.idVendor:04x}:{dev.idProduct:04x} matches {driver}")
        devices.append(Device(
            type=BackendType.USB,
            driver=driver,
            port="auto",
            options=usb_device_options(dev, options),
        ))
    return devices


class UsbEngine(ScanEngine):
    """Enumerate UPS units attached over USB."""

    backend = BackendType.USB

    def is_available(self) -> bool:
        return PYUSB_AVAILABLE

    async def scan(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        timeout: float = 0,
        options: Optional[UsbOptions] = None,
    ) -> list[Device]:
        if not PYUSB_AVAILABLE:
            raise EngineUnavailableError(self.name, "pyusb")

        options = options or UsbOptions()
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, enumerate_usb, options)
        except usb.core.NoBackendError as e:
            logger.warning(f"No USB backend library available: {e}")
            return []
