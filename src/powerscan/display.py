"""
Result rendering.

Three output styles are supported: ups.conf sections (optionally
followed by a serial number sanity check) and one parsable line per
device. Results are written to stdout; nothing here goes through
logging.
"""

from __future__ import annotations

import sys
from collections import defaultdict
from typing import Callable, Optional, TextIO

from ._types import Device, DisplayMode


def _quote(value: str) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def _is_blank_serial(serial: str) -> bool:
    """Blank, whitespace or all-zero serial numbers identify nothing."""
    stripped = serial.strip()
    return not stripped or set(stripped) <= {"0"}


class UpsConfRenderer:
    """
    Render devices as ups.conf sections.

    Section names are [nutdevN] with N counting up across every list
    rendered by this instance, so one renderer must be used per run.
    """

    def __init__(self, stream: Optional[TextIO] = None, sanity_check: bool = False):
        self.stream = stream or sys.stdout
        self.sanity_check = sanity_check
        self.count = 0

    def __call__(self, devices: list[Device]) -> None:
        if not devices:
            return

        names = []
        for device in devices:
            self.count += 1
            name = f"nutdev{self.count}"
            names.append(name)

            lines = [
                f"[{name}]",
                f"\tdriver = {_quote(device.driver)}",
                f"\tport = {_quote(device.port)}",
            ]
            for key, value in device.options.items():
                lines.append(f"\t{key} = {_quote(value)}")
            self.stream.write("\n".join(lines) + "\n\n")

        if self.sanity_check:
            self._check_serials(devices, names)

    def _check_serials(self, devices: list[Device], names: list[str]) -> None:
        """Warn about devices that cannot be told apart by serial number."""
        by_serial: dict[str, list[str]] = defaultdict(list)
        blank: list[str] = []

        for device, name in zip(devices, names):
            if "serial" not in device.options:
                continue
            serial = device.options["serial"]
            if _is_blank_serial(serial):
                blank.append(name)
            else:
                by_serial[serial].append(name)

        duplicates = {serial: found for serial, found in by_serial.items() if len(found) > 1}
        if not duplicates and not blank:
            return

        lines = []
        for serial, found in duplicates.items():
            lines.append(
                f"# WARNING: devices {', '.join(found)} report the same "
                f"serial number {_quote(serial)}"
            )
        if blank:
            lines.append(
                f"# WARNING: devices {', '.join(blank)} report blank or all-zero "
                f"serial numbers"
            )
        lines.append(
            "# Devices without a unique serial number may need other matching "
            "options (bus, busport, device) to be told apart."
        )
        self.stream.write("\n".join(lines) + "\n\n")


class ParsableRenderer:
    """Render one TYPE:driver="...",port="...",... line per device."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def __call__(self, devices: list[Device]) -> None:
        for device in devices:
            fields = [f"driver={_quote(device.driver)}", f"port={_quote(device.port)}"]
            fields.extend(f"{key}={_quote(value)}" for key, value in device.options.items())
            self.stream.write(f"{device.type.display_name}:{','.join(fields)}\n")


def get_renderer(
    mode: DisplayMode | str,
    stream: Optional[TextIO] = None,
) -> Callable[[list[Device]], None]:
    """
    Create the render function for a display mode.

    Raises:
        ValueError: if the mode is unknown
    """
    mode = DisplayMode(mode)
    if mode == DisplayMode.PARSABLE:
        return ParsableRenderer(stream)
    if mode == DisplayMode.UPS_CONF:
        return UpsConfRenderer(stream)
    return UpsConfRenderer(stream, sanity_check=True)
