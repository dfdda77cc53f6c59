"""
Scan orchestrator - one discovery run from configuration to output.

Resolves which backends take part, opens the concurrency budget, starts
one worker per backend, waits for all of them, then renders every
backend's devices in a fixed order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Iterable, Optional, TextIO

from ._types import (
    BACKEND_ORDER,
    EXPLICIT_ONLY_BACKENDS,
    IMPLICIT_TARGET_BACKENDS,
    RANGE_BACKENDS,
    BackendType,
    ScanState,
)
from .budget import ConcurrencyBudget
from .config import ScannerConfig
from .devices import ScanResults
from .display import get_renderer
from .engines import ScanEngine, available_backends, build_engines
from .exceptions import UsageError
from .ranges import AddressRangeRegistry
from .workers import BackendWorker

logger = logging.getLogger(__name__)

# Failures that can occur while handing a worker to the event loop
START_FAILURES = (RuntimeError, OSError, MemoryError)


def resolve_backends(
    requested: Iterable[BackendType],
    scan_all: bool,
    available: Iterable[BackendType],
) -> list[BackendType]:
    """
    Decide which backends run.

    With no explicit request, or with scan_all, every backend except the
    explicit-only ones is enabled if its library is available. Explicit
    requests are added on top.

    Raises:
        UsageError: if an explicitly requested backend is unavailable
    """
    requested = set(requested)
    available = set(available)

    for backend in BACKEND_ORDER:
        if backend in requested and backend not in available:
            raise UsageError(f"{backend.display_name} scan was requested but is not available")

    enabled = set(requested)
    if scan_all or not requested:
        for backend in BACKEND_ORDER:
            if backend in EXPLICIT_ONLY_BACKENDS:
                continue
            if backend in available:
                enabled.add(backend)
            else:
                logger.debug(f"{backend.display_name} scan is not available, skipping")

    return [backend for backend in BACKEND_ORDER if backend in enabled]


class ScanOrchestrator:
    """
    Runs a single scan.

    An orchestrator instance is good for one run: its result slots,
    renderer counter and budget are not reset afterwards.
    """

    def __init__(
        self,
        config: ScannerConfig,
        registry: AddressRangeRegistry,
        requested: Iterable[BackendType] = (),
        scan_all: bool = False,
        engines: Optional[dict[BackendType, ScanEngine]] = None,
        budget: Optional[ConcurrencyBudget] = None,
        stream: Optional[TextIO] = None,
    ):
        """
        Initialize a scan run.

        Args:
            config: Scanner configuration
            registry: Address ranges, fully built before run()
            requested: Backends explicitly asked for
            scan_all: Enable every implicit backend in addition to requested
            engines: Engine per backend; defaults to build_engines()
            budget: Concurrency budget; defaults to config.max_concurrency
            stream: Output stream for results; defaults to stdout
        """
        self.config = config
        self.registry = registry
        self.requested = set(requested)
        self.scan_all = scan_all
        self.engines = engines if engines is not None else build_engines()
        self.budget = budget or ConcurrencyBudget(default=config.max_concurrency)
        self.stream = stream

        self.state = ScanState.CONFIGURING
        self.results = ScanResults()
        self.enabled: list[BackendType] = []
        self.unavailable: set[BackendType] = set()

    def _transition(self, state: ScanState) -> None:
        logger.debug(f"Scan state {self.state.value} -> {state.value}")
        self.state = state

    def _progress(self, message: str) -> None:
        level = logging.DEBUG if self.config.quiet else logging.INFO
        logger.log(level, message)

    def _options_for(self, backend: BackendType) -> Any:
        """Option record handed to a backend's engine."""
        config = self.config
        return {
            BackendType.USB: config.usb_options,
            BackendType.SNMP: config.snmp_options,
            BackendType.XML: config.xml_options,
            BackendType.NUT: config.nut_options,
            BackendType.NUT_SIMULATION: lambda: config.nut_confpath,
            BackendType.IPMI: config.ipmi_options,
            BackendType.EATON_SERIAL: config.serial_options,
        }.get(backend, lambda: None)()

    def configure(self) -> list[BackendType]:
        """
        Resolve the enabled backends for this run.

        Raises:
            UsageError: if an explicitly requested backend is unavailable
        """
        available = available_backends(self.engines)
        enabled = resolve_backends(self.requested, self.scan_all, available)

        for backend in list(enabled):
            if backend in RANGE_BACKENDS and backend not in IMPLICIT_TARGET_BACKENDS and not self.registry:
                logger.info(f"No IP range(s) requested, skipping {backend.display_name}")
                self.unavailable.add(backend)
                enabled.remove(backend)

        self.enabled = enabled
        logger.debug(f"Enabled backends: {', '.join(b.display_name for b in enabled) or 'none'}")
        return enabled

    def _start(self, worker: BackendWorker):
        """
        Start one worker.

        In parallel mode the worker becomes a task right away; in
        sequential mode its coroutine is returned to be awaited in turn.
        Returns None if the worker could not be started.
        """
        backend = worker.backend
        coro: Optional[Coroutine] = None
        claimed = False
        try:
            self.results.begin(backend)
            claimed = True
            coro = worker.run()
            if self.config.parallel:
                return asyncio.ensure_future(coro)
            return coro
        except START_FAILURES as e:
            if coro is not None:
                coro.close()
            if claimed:
                self.results.abandon(backend)
            self.unavailable.add(backend)
            logger.error(f"Failed to start {backend.display_name} scan, disabling it: {e}")
            return None

    async def _dispatch(self) -> list[tuple[BackendType, Any]]:
        started = []
        for backend in self.enabled:
            self._progress(f"Scanning {backend.description}.")
            worker = BackendWorker(
                engine=self.engines[backend],
                registry=self.registry,
                results=self.results,
                timeout=self.config.timeout,
                options=self._options_for(backend),
            )
            handle = self._start(worker)
            if handle is not None:
                started.append((backend, handle))
        return started

    async def _await_completion(self, started: list[tuple[BackendType, Any]]) -> None:
        """Wait for every started worker."""
        if self.config.parallel:
            outcomes = await asyncio.gather(
                *(handle for _, handle in started),
                return_exceptions=True,
            )
        else:
            outcomes = []
            for _, coro in started:
                try:
                    outcomes.append(await coro)
                except Exception as e:
                    outcomes.append(e)

        for (backend, _), outcome in zip(started, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Error in {backend.display_name} scan: {outcome}")
                self.results.abandon(backend)

    def _render(self) -> None:
        renderer = get_renderer(self.config.display_mode, self.stream)
        for backend in BACKEND_ORDER:
            renderer(self.results[backend])
            self.results.release(backend)

    async def run(self) -> int:
        """
        Execute the scan and render the results.

        Returns the process exit code.

        Raises:
            UsageError: if an explicitly requested backend is unavailable
        """
        self.configure()
        self.budget.open()
        try:
            self._transition(ScanState.DISPATCHING)
            started = await self._dispatch()

            self._transition(ScanState.AWAITING_COMPLETION)
            await self._await_completion(started)
        finally:
            self.budget.close()

        found = self.results.total()
        self._transition(ScanState.RENDERING)
        self._render()

        self._transition(ScanState.DONE)
        self.registry.clear()
        logger.debug(f"Scan finished, {found} devices found")
        return 0
