"""
Per-backend device lists and the result slots that hold them.
"""

from __future__ import annotations

from typing import Iterator, Optional

from ._types import BACKEND_ORDER, BackendType, Device


def merge_device_lists(
    new_devices: Optional[list[Device]],
    accumulator: Optional[list[Device]],
) -> list[Device]:
    """
    Fold a freshly returned device list into a backend's accumulated list.

    Devices are appended in order, so results from earlier ranges come
    first. Nothing is de-duplicated: the same physical device returned by
    two ranges is kept twice.

    Returns the accumulated list (the same object when one was given).
    """
    if not accumulator:
        return list(new_devices or [])

    if new_devices:
        accumulator.extend(new_devices)
    return accumulator


class ScanResults:
    """
    One result slot per backend.

    A slot is written by exactly one worker; the orchestrator reads and
    releases the slots in backend order once every worker has finished.
    """

    def __init__(self):
        self._slots: dict[BackendType, list[Device]] = {
            backend: [] for backend in BACKEND_ORDER
        }
        self._filling: set[BackendType] = set()

    def begin(self, backend: BackendType) -> None:
        """Claim a slot for a running worker."""
        if backend in self._filling:
            raise RuntimeError(f"{backend.display_name} worker is already running")
        self._filling.add(backend)

    def store(self, backend: BackendType, devices: list[Device]) -> None:
        """Publish a worker's accumulated list and release the claim."""
        self._slots[backend] = devices
        self._filling.discard(backend)

    def abandon(self, backend: BackendType) -> None:
        """Release a claim without publishing anything."""
        self._filling.discard(backend)

    def release(self, backend: BackendType) -> None:
        """Drop a slot's devices once they have been displayed."""
        self._slots[backend] = []

    def __getitem__(self, backend: BackendType) -> list[Device]:
        return self._slots[backend]

    def __iter__(self) -> Iterator[BackendType]:
        return iter(BACKEND_ORDER)

    def total(self) -> int:
        return sum(len(devices) for devices in self._slots.values())
