"""
Scan Session State
===================

Owned, single-writer state for the current discovery run.

Every mutation goes through :class:`SessionState` under one
:class:`asyncio.Lock` and carries the *generation* token handed out by
:meth:`SessionState.reset`. A write with a stale token (from a superseded
or cancelled run) is dropped and reported as ``False`` to the caller, so
late results can never leak into a newer session. Readers get deep
copies through :meth:`SessionState.snapshot`.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from shared.logger import HaraldLogger

from harald.core.models import (
    Device,
    Finding,
    Scan,
    ScanMode,
    ScanState,
    SessionSnapshot,
)

logger = HaraldLogger("core.session")


class SessionState:
    """Device list, findings, progress and status for one scan at a time."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._generation = 0
        self._state = ScanState.IDLE
        self._scan: Optional[Scan] = None
        self._status = "Ready"
        self._devices: dict[str, Device] = {}
        self._findings: list[Finding] = []

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> ScanState:
        return self._state

    def is_current(self, token: int) -> bool:
        """True while the scan holding *token* is still running."""
        return token == self._generation and self._state is ScanState.SCANNING

    def accepts_findings(self, token: int) -> bool:
        """Findings outlive discovery: a completed scan still takes its
        in-flight assessments, only a newer generation or a stop rejects
        them."""
        return token == self._generation and self._state in (
            ScanState.SCANNING,
            ScanState.COMPLETE,
        )

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    async def reset(self, mode: ScanMode) -> int:
        """Discard prior state, start a new scan and return its token."""
        async with self._lock:
            self._generation += 1
            self._state = ScanState.SCANNING
            self._scan = Scan(mode=mode)
            self._status = f"Starting {mode.value} discovery"
            self._devices = {}
            self._findings = []
            return self._generation

    async def complete(self, token: int, status: str) -> bool:
        async with self._lock:
            if not self.is_current(token):
                return False
            self._state = ScanState.COMPLETE
            self._status = status
            if self._scan is not None:
                self._scan = self._scan.model_copy(update={"progress": 1.0, "active": False})
            return True

    async def cancel(self, status: str = "Discovery stopped") -> int:
        """Invalidate the running scan; later writes with its token are
        dropped. Returns the new generation."""
        async with self._lock:
            if self._state is ScanState.SCANNING:
                self._state = ScanState.CANCELLED
                if self._scan is not None:
                    self._scan = self._scan.model_copy(update={"active": False})
                self._status = status
            self._generation += 1
            return self._generation

    # ------------------------------------------------------------------ #
    #  Devices
    # ------------------------------------------------------------------ #

    async def add_device(self, token: int, device: Device) -> bool:
        """Insert *device* if its identifier is new. Returns ``True`` only
        for an actual insert."""
        async with self._lock:
            if not self.is_current(token) or device.id in self._devices:
                return False
            self._devices[device.id] = device
            return True

    async def update_device(
        self,
        token: int,
        device_id: str,
        mutate: Callable[[Device], None],
    ) -> bool:
        """Apply *mutate* to the stored device in place."""
        async with self._lock:
            if not self.is_current(token):
                return False
            device = self._devices.get(device_id)
            if device is None:
                return False
            mutate(device)
            return True

    async def get_device(self, token: int, device_id: str) -> Optional[Device]:
        """Copy of one device, or ``None`` if absent or stale."""
        async with self._lock:
            if not self.is_current(token):
                return None
            device = self._devices.get(device_id)
            return device.model_copy(deep=True) if device is not None else None

    async def device_ids(self, token: int) -> list[str]:
        async with self._lock:
            if not self.is_current(token):
                return []
            return list(self._devices)

    # ------------------------------------------------------------------ #
    #  Findings
    # ------------------------------------------------------------------ #

    async def attach_findings(
        self,
        token: int,
        device_id: str,
        findings: list[Finding],
    ) -> bool:
        """Replace the device's findings, and its share of the global list,
        with *findings*."""
        async with self._lock:
            if not self.accepts_findings(token):
                logger.debug("Dropping %d stale findings for %s", len(findings), device_id)
                return False
            device = self._devices.get(device_id)
            if device is None:
                return False
            device.findings = list(findings)
            self._findings = [f for f in self._findings if f.device_id != device_id]
            self._findings.extend(findings)
            return True

    # ------------------------------------------------------------------ #
    #  Progress / status
    # ------------------------------------------------------------------ #

    async def set_progress(self, token: int, progress: float) -> bool:
        """Set progress, clamped to [0, 1] and never moving backwards."""
        async with self._lock:
            if not self.is_current(token) or self._scan is None:
                return False
            value = min(1.0, max(self._scan.progress, progress))
            self._scan = self._scan.model_copy(update={"progress": value})
            return True

    async def set_status(self, token: int, status: str) -> bool:
        async with self._lock:
            if not self.is_current(token):
                return False
            self._status = status
            return True

    # ------------------------------------------------------------------ #
    #  Reads
    # ------------------------------------------------------------------ #

    def snapshot(self) -> SessionSnapshot:
        """Deep copy of the current state.

        Reads do not take the lock: every writer swaps or mutates state
        between awaits, so a synchronous copy always sees a consistent view.
        """
        return SessionSnapshot(
            generation=self._generation,
            state=self._state,
            scan=self._scan.model_copy() if self._scan is not None else None,
            status=self._status,
            devices=[d.model_copy(deep=True) for d in self._devices.values()],
            findings=list(self._findings),
        )
