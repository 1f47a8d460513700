"""
Exploit Engine
===============

Bounded exploit attempts against findings produced by the correlator.

Each check identifier maps to an exploit routine in a registry. An
attempt always yields an :class:`ExploitResult`; it never raises to the
caller. Live execution is disabled unless explicitly allowed, findings
that were not confirmed vulnerable are refused, and routines without an
implementation report so in the result details.

Implemented routines:

* ``CVE-2017-0781`` -- BlueBorne SDP information disclosure: browse the
  target's SDP records without pairing and capture what comes back.
* ``BLE-002`` -- unencrypted characteristics: connect and read every
  readable characteristic that is not protected by encryption or
  authentication.

References:
    - Seri, B. & Vishnepolsky, G. (2017). BlueBorne. Armis Labs.
    - Bluetooth SIG. (2023). Core Specification v5.4. Vol 3, Part C,
      Section 10: Security Aspects.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from shared.logger import HaraldLogger

from harald.analyzers.correlator import probe_target
from harald.collectors.adapter import RadioAdapter
from harald.collectors.probe_runner import ProbeRunner
from harald.core.errors import DeviceConnectionError
from harald.core.models import ExploitResult, Finding

logger = HaraldLogger("analyzers.exploit")

NOT_IMPLEMENTED_DETAIL = "Exploit not implemented for this vulnerability type"

ExploitRoutine = Callable[[Finding, str], Awaitable[ExploitResult]]


class ExploitEngine:
    """Run exploit routines for confirmed findings.

    Usage::

        engine = ExploitEngine(ProbeRunner(), adapter, allow_live=True)
        result = await engine.execute(finding)

    Args:
        runner: External probe runner used by tool-driven routines.
        adapter: Radio adapter used by GATT routines.
        allow_live: Permit routines that touch the target.
        timeout: Upper bound for one attempt, in seconds.
        connect_lock: Lock shared with discovery so that only one
            connection is open at a time.
    """

    def __init__(
        self,
        runner: ProbeRunner,
        adapter: Optional[RadioAdapter] = None,
        *,
        allow_live: bool = False,
        timeout: float = 10.0,
        connect_lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self._runner = runner
        self._adapter = adapter
        self._allow_live = allow_live
        self._timeout = timeout
        self._connect_lock = connect_lock or asyncio.Lock()
        self._routines: dict[str, tuple[str, Optional[ExploitRoutine]]] = {
            "CVE-2017-0781": ("BlueBorne SDP Information Leak", self._blueborne_sdp_leak),
            "CVE-2019-9506": ("KNOB Key Negotiation Downgrade", None),
            "BLE-001": ("Unauthenticated Link Establishment", None),
            "BLE-002": ("Unencrypted Characteristic Read", self._unencrypted_read),
            "HID-001": ("HID Keystroke Injection", None),
        }

    def register(self, check_id: str, name: str, routine: Optional[ExploitRoutine]) -> None:
        """Add or replace the routine for *check_id*."""
        self._routines[check_id] = (name, routine)

    def exploit_name(self, check_id: str) -> str:
        entry = self._routines.get(check_id)
        return entry[0] if entry else f"{check_id} exploit"

    def supports(self, check_id: str) -> bool:
        entry = self._routines.get(check_id)
        return entry is not None and entry[1] is not None

    # ------------------------------------------------------------------ #
    #  Execution
    # ------------------------------------------------------------------ #

    def _refusal(self, finding: Finding, target: str, detail: str) -> ExploitResult:
        return ExploitResult(
            success=False,
            vulnerability_id=finding.check_id,
            exploit_name=self.exploit_name(finding.check_id),
            target=target,
            details=[detail],
        )

    async def execute(self, finding: Finding, target: Optional[str] = None) -> ExploitResult:
        """Attempt the exploit for *finding* against *target* (the finding's
        device by default). Every call produces a new result."""
        target = target or finding.device_id
        entry = self._routines.get(finding.check_id)

        if not finding.vulnerable:
            return self._refusal(
                finding, target, "Finding was not confirmed vulnerable; attempt refused"
            )
        if entry is None:
            return self._refusal(finding, target, NOT_IMPLEMENTED_DETAIL)

        name, routine = entry
        if routine is None:
            return self._refusal(finding, target, f"{name} test not yet implemented")
        if not self._allow_live:
            return self._refusal(
                finding,
                target,
                "Live exploitation is disabled (set exploits.allow_live = true)",
            )

        started = time.monotonic()
        logger.info("Running %s against %s", name, target)
        try:
            result = await asyncio.wait_for(routine(finding, target), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("%s against %s timed out", name, target)
            result = self._refusal(finding, target, f"Timed out after {self._timeout:.0f}s")
        except Exception as exc:
            logger.exception("%s against %s failed", name, target)
            result = self._refusal(finding, target, f"Exploit failed: {exc}")

        return result.model_copy(update={"execution_time": time.monotonic() - started})

    # ------------------------------------------------------------------ #
    #  Routines
    # ------------------------------------------------------------------ #

    async def _blueborne_sdp_leak(self, finding: Finding, target: str) -> ExploitResult:
        address = probe_target(target)
        result = await self._runner.run("sdptool", ["browse", address])
        if not result.available:
            details = ["sdptool is not installed"]
        elif result.timed_out:
            details = ["sdptool browse timed out"]
        else:
            details = [f"sdptool browse {address} exited {result.exit_code}"]

        captured = result.succeeded and bool(result.lines)
        if captured:
            details.extend(result.lines[:50])
        return ExploitResult(
            success=captured,
            vulnerability_id=finding.check_id,
            exploit_name=self.exploit_name(finding.check_id),
            target=target,
            details=details,
            severity=ExploitResult.grade(captured, captured_data=captured),
        )

    async def _unencrypted_read(self, finding: Finding, target: str) -> ExploitResult:
        if self._adapter is None:
            return self._refusal(finding, target, "No radio adapter available")

        details: list[str] = []
        async with self._connect_lock:
            await self._adapter.connect(target, timeout=self._timeout)
            try:
                async for service_uuid in self._adapter.discover_services(target):
                    async for char in self._adapter.discover_characteristics(target, service_uuid):
                        if not char.readable or char.protected:
                            continue
                        try:
                            value = await self._adapter.read_characteristic(target, char.uuid)
                        except DeviceConnectionError as exc:
                            logger.debug("Read of %s refused: %s", char.uuid, exc)
                            continue
                        details.append(f"{char.uuid}: {value.hex()}")
            finally:
                await self._adapter.disconnect(target)

        success = bool(details)
        if not success:
            details.append("No characteristic readable without encryption")
        return ExploitResult(
            success=success,
            vulnerability_id=finding.check_id,
            exploit_name=self.exploit_name(finding.check_id),
            target=target,
            details=details,
            severity=ExploitResult.grade(success, captured_data=success),
        )
