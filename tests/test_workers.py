"""Tests for backend workers."""

import pytest

from conftest import StubEngine, make_device
from powerscan._types import BackendType, NutOptions
from powerscan.devices import ScanResults
from powerscan.ranges import AddressRangeRegistry
from powerscan.workers import BackendWorker


@pytest.fixture
def registry():
    registry = AddressRangeRegistry()
    registry.add_range("10.0.0.1", "10.0.0.4")
    registry.add_range("10.0.1.1", "10.0.1.4")
    return registry


@pytest.fixture
def results():
    return ScanResults()


def make_worker(engine, registry, results, options=None):
    results.begin(engine.backend)
    return BackendWorker(engine, registry, results, timeout=5, options=options)


class TestRangeBackends:
    """Tests for range-oriented backends."""

    @pytest.mark.asyncio
    async def test_scans_each_range_in_order(self, registry, results):
        """Should call the engine per range and merge in range order."""
        engine = StubEngine(BackendType.NUT, per_range={
            ("10.0.0.1", "10.0.0.4"): [make_device(BackendType.NUT, "ups@10.0.0.2")],
            ("10.0.1.1", "10.0.1.4"): [make_device(BackendType.NUT, "ups@10.0.1.3")],
        })
        options = NutOptions(port=3493)

        devices = await make_worker(engine, registry, results, options).run()

        assert [call[:2] for call in engine.calls] == [
            ("10.0.0.1", "10.0.0.4"),
            ("10.0.1.1", "10.0.1.4"),
        ]
        assert all(call[2] == 5 and call[3] is options for call in engine.calls)
        assert [d.port for d in devices] == ["ups@10.0.0.2", "ups@10.0.1.3"]
        assert results[BackendType.NUT] == devices

    @pytest.mark.asyncio
    async def test_failing_range_contributes_nothing(self, registry, results, caplog):
        """Should log an engine failure and carry on with the next range."""
        calls = []

        class FlakyEngine(StubEngine):
            async def scan(self, start, end, timeout, options=None):
                calls.append(start)
                if start == "10.0.0.1":
                    raise OSError("network unreachable")
                return [make_device(BackendType.SNMP, start)]

        devices = await make_worker(FlakyEngine(BackendType.SNMP), registry, results).run()

        assert calls == ["10.0.0.1", "10.0.1.1"]
        assert [d.port for d in devices] == ["10.0.1.1"]
        assert "network unreachable" in caplog.text

    @pytest.mark.asyncio
    async def test_implicit_target_without_ranges(self, results):
        """Should probe XML and IPMI once with no address."""
        for backend in (BackendType.XML, BackendType.IPMI):
            engine = StubEngine(backend, devices=[make_device(backend, "local")])
            devices = await make_worker(engine, AddressRangeRegistry(), results).run()

            assert engine.calls == [(None, None, 5, None)]
            assert len(devices) == 1

    @pytest.mark.asyncio
    async def test_no_implicit_target(self, results):
        """Should not call SNMP or NUT engines without ranges."""
        for backend in (BackendType.SNMP, BackendType.NUT):
            engine = StubEngine(backend, devices=[make_device(backend, "x")])
            devices = await make_worker(engine, AddressRangeRegistry(), results).run()

            assert engine.calls == []
            assert devices == []


class TestSingleShotBackends:
    """Tests for backends that ignore address ranges."""

    @pytest.mark.asyncio
    async def test_called_once_without_addresses(self, registry, results):
        """Should call the engine once even when ranges exist."""
        engine = StubEngine(BackendType.USB, devices=[
            make_device(BackendType.USB, "auto", serial="A1"),
            make_device(BackendType.USB, "auto", serial="A2"),
        ])

        devices = await make_worker(engine, registry, results).run()

        assert engine.calls == [(None, None, 5, None)]
        assert len(devices) == 2
        assert results[BackendType.USB] == devices

    @pytest.mark.asyncio
    async def test_engine_failure(self, results):
        """Should store an empty list when the engine raises."""
        engine = StubEngine(BackendType.AVAHI, error=RuntimeError("daemon gone"))

        devices = await make_worker(engine, AddressRangeRegistry(), results).run()

        assert devices == []
        assert results[BackendType.AVAHI] == []

    @pytest.mark.asyncio
    async def test_releases_claim(self, results):
        """Should let the slot be claimed again after publishing."""
        engine = StubEngine(BackendType.NUT_SIMULATION)
        await make_worker(engine, AddressRangeRegistry(), results).run()

        results.begin(BackendType.NUT_SIMULATION)
