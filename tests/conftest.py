"""Shared fixtures for powerscan tests."""

import pytest

from powerscan._types import BackendType, Device
from powerscan.engines import ScanEngine, set_scan_semaphore


class StubEngine(ScanEngine):
    """Scan engine returning canned devices and recording its calls."""

    def __init__(self, backend, devices=None, available=True, per_range=None, error=None):
        self.backend = backend
        self.devices = list(devices or [])
        self.available = available
        self.per_range = per_range or {}
        self.error = error
        self.calls = []

    def is_available(self):
        return self.available

    async def scan(self, start, end, timeout, options=None):
        self.calls.append((start, end, timeout, options))
        if self.error is not None:
            raise self.error
        if (start, end) in self.per_range:
            return list(self.per_range[(start, end)])
        return list(self.devices)


def make_device(backend, port, **options):
    """Create a device with a plausible driver for its backend."""
    drivers = {
        BackendType.USB: "usbhid-ups",
        BackendType.SNMP: "snmp-ups",
        BackendType.XML: "netxml-ups",
        BackendType.NUT: "nutclient",
        BackendType.NUT_SIMULATION: "dummy-ups",
        BackendType.AVAHI: "nutclient",
        BackendType.IPMI: "nut-ipmipsu",
        BackendType.EATON_SERIAL: "blazer_ser",
    }
    return Device(type=backend, driver=drivers[backend], port=port, options=options)


@pytest.fixture
def stub_engines():
    """One available, empty stub engine per backend."""
    return {backend: StubEngine(backend) for backend in BackendType}


@pytest.fixture(autouse=True)
def reset_scan_semaphore():
    """Make sure no test leaks an installed semaphore into the next."""
    set_scan_semaphore(None)
    yield
    set_scan_semaphore(None)
