"""
Scan Orchestrator
==================

State machine driving staged Bluetooth discovery.

    IDLE --start(mode)--> SCANNING(mode) --done--> COMPLETE
                              |
                              +--stop()--> CANCELLED

Stages by mode (each mode includes every stage of the previous one):

    passive     Consume the adapter advertisement stream for a fixed
                window of ticks.
    active      Classic (BR/EDR) inquiry through ``hcitool scan``, merged
                by identifier; then serialized service enumeration of each
                connectable LE device, one connection at a time with a
                grace period after each.
    aggressive  HID and advanced inquiry probes (``btscanner``,
                ``hcitool``), advisory except for newly identified
                devices; then a fresh assessment of every known device.

Every newly inserted device gets its own assessment task, so discovery
and assessment overlap. Results are written through the generation token
of the session that scheduled them; a newer scan or a stop invalidates
the token and late results are dropped.

References:
    - BlueZ. hcitool(1). http://www.bluez.org/
    - Bluetooth SIG. (2023). Core Specification v5.4. Vol 3, Part G:
      Generic Attribute Profile.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from shared.config import DiscoveryConfig
from shared.logger import HaraldLogger

from harald.analyzers.classifier import DeviceClassifier
from harald.analyzers.correlator import VulnerabilityCorrelator
from harald.collectors.adapter import RadioAdapter
from harald.collectors.classic import ClassicSighting, parse_inquiry_output
from harald.collectors.probe_runner import ProbeRunner
from harald.core.errors import AdapterUnavailableError
from harald.core.models import (
    Advertisement,
    Characteristic,
    Device,
    DeviceClass,
    PowerState,
    RadioVersion,
    ScanMode,
)
from harald.core.session import SessionState

logger = HaraldLogger("core.orchestrator")

CLASSIC_DEFAULT_RSSI = -50

# Share of the progress bar given to each stage, per mode.
STAGE_WEIGHTS: dict[ScanMode, dict[str, float]] = {
    ScanMode.PASSIVE: {"passive": 1.0},
    ScanMode.ACTIVE: {"passive": 0.5, "classic": 0.2, "enumerate": 0.3},
    ScanMode.AGGRESSIVE: {
        "passive": 0.3,
        "classic": 0.15,
        "enumerate": 0.25,
        "probes": 0.15,
        "reassess": 0.15,
    },
}


class _StageProgress:
    """Maps stage-local progress in [0, 1] onto the overall bar."""

    def __init__(self, session: SessionState, token: int, mode: ScanMode) -> None:
        self._session = session
        self._token = token
        self._weights = STAGE_WEIGHTS[mode]
        self._offset = 0.0
        self._share = 0.0

    def enter(self, stage: str) -> None:
        self._offset += self._share
        self._share = self._weights[stage]

    async def advance(self, fraction: float) -> None:
        fraction = min(1.0, max(0.0, fraction))
        await self._session.set_progress(self._token, self._offset + self._share * fraction)


class ScanOrchestrator:
    """Drive passive, active and aggressive discovery over one session.

    Usage::

        orchestrator = ScanOrchestrator(adapter, runner, correlator)
        await orchestrator.start_discovery(ScanMode.ACTIVE)
        await orchestrator.drain()
        snapshot = orchestrator.session.snapshot()

    Args:
        adapter: Radio adapter supplying advertisements and GATT access.
        runner: External probe runner for the classic / HID stages.
        correlator: Vulnerability correlator run per device.
        session: Session state; a fresh one is created if omitted.
        classifier: Device classifier.
        config: Discovery timings.
    """

    def __init__(
        self,
        adapter: RadioAdapter,
        runner: ProbeRunner,
        correlator: VulnerabilityCorrelator,
        session: Optional[SessionState] = None,
        classifier: Optional[DeviceClassifier] = None,
        config: Optional[DiscoveryConfig] = None,
    ) -> None:
        self._adapter = adapter
        self._runner = runner
        self._correlator = correlator
        self._session = session or SessionState()
        self._classifier = classifier or DeviceClassifier()
        self._config = config or DiscoveryConfig()

        self._connect_lock = asyncio.Lock()
        self._discovery_task: Optional[asyncio.Task[None]] = None
        # at most one assessment per device identifier
        self._assessments: dict[str, asyncio.Task[None]] = {}

    @property
    def session(self) -> SessionState:
        return self._session

    @property
    def adapter(self) -> RadioAdapter:
        return self._adapter

    @property
    def connect_lock(self) -> asyncio.Lock:
        """Held for the duration of any connection to a device."""
        return self._connect_lock

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    async def start_discovery(self, mode: ScanMode) -> None:
        """Run a discovery of *mode* to completion.

        A scan already in progress is superseded. Returns normally when
        this scan is itself superseded or stopped.

        Raises:
            AdapterUnavailableError: The adapter is not powered on.
        """
        state = await self._adapter.power_state()
        if state is not PowerState.POWERED_ON:
            logger.error("Cannot start discovery: adapter %s", state.value)
            raise AdapterUnavailableError(state)

        token = await self._session.reset(mode)
        self._cancel_running()
        logger.info("Discovery started (%s)", mode.value, generation=token)

        task = asyncio.create_task(self._run(mode, token), name=f"discovery-{token}")
        self._discovery_task = task
        try:
            await task
        except asyncio.CancelledError:
            if self._session.generation == token:
                await self._session.cancel()
                self._cancel_running()
                raise
            logger.info("Discovery %d superseded", token)

    async def stop_discovery(self) -> None:
        """Halt discovery and drop every in-flight result of the scan."""
        await self._session.cancel()
        self._cancel_running()

    async def drain(self) -> None:
        """Wait for in-flight assessment tasks to finish."""
        while self._assessments:
            await asyncio.gather(*list(self._assessments.values()), return_exceptions=True)

    def _cancel_running(self) -> None:
        task = self._discovery_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        for pending in list(self._assessments.values()):
            pending.cancel()

    async def _run(self, mode: ScanMode, token: int) -> None:
        progress = _StageProgress(self._session, token, mode)

        progress.enter("passive")
        await self._passive_stage(token, progress)

        if mode in (ScanMode.ACTIVE, ScanMode.AGGRESSIVE):
            progress.enter("classic")
            await self._classic_stage(token, progress)
            progress.enter("enumerate")
            await self._enumeration_stage(token, progress)

        if mode is ScanMode.AGGRESSIVE:
            progress.enter("probes")
            await self._probe_stage(token, progress)
            progress.enter("reassess")
            await self._reassess_stage(token, progress)

        count = len(await self._session.device_ids(token))
        if await self._session.complete(token, f"Discovery complete: {count} devices found"):
            logger.info("Discovery complete: %d devices", count, generation=token)

    # ------------------------------------------------------------------ #
    #  Device intake
    # ------------------------------------------------------------------ #

    def _device_from_advertisement(self, advertisement: Advertisement) -> Device:
        return Device(
            id=advertisement.id,
            name=advertisement.name,
            rssi=advertisement.rssi,
            device_class=self._classifier.classify(advertisement),
            version=self._classifier.estimate_version(advertisement),
            services=self._classifier.resolve_services(advertisement.service_uuids or []),
            connectable=bool(advertisement.connectable),
            manufacturer_data=advertisement.manufacturer_data,
            tx_power=advertisement.tx_power,
        )

    def _device_from_sighting(self, sighting: ClassicSighting) -> Device:
        return Device(
            id=sighting.address,
            name=sighting.name,
            rssi=CLASSIC_DEFAULT_RSSI,
            device_class=self._classifier.classify_name(sighting.name),
            version=RadioVersion.V2_1,
            connectable=True,
            is_classic=True,
        )

    async def _insert(self, token: int, device: Device) -> bool:
        """Insert a new device and schedule its assessment."""
        if not await self._session.add_device(token, device):
            return False
        logger.debug(
            "New device %s (%s, %s)",
            device.id, device.display_name, device.device_class.value,
        )
        self._schedule_assessment(token, device)
        return True

    async def _on_advertisement(self, token: int, advertisement: Advertisement) -> None:
        device = self._device_from_advertisement(advertisement)
        if await self._insert(token, device):
            return

        def _refresh(known: Device) -> None:
            known.rssi = advertisement.rssi
            if not known.name and advertisement.name:
                known.name = advertisement.name

        await self._session.update_device(token, advertisement.id, _refresh)

    async def _merge_sightings(self, token: int, sightings: list[ClassicSighting]) -> int:
        """Insert unknown sightings; fill in names of known ones."""
        added = 0
        for sighting in sightings:
            if await self._insert(token, self._device_from_sighting(sighting)):
                added += 1
                continue
            if sighting.name:
                name = sighting.name

                def _fill_name(known: Device) -> None:
                    if not known.name:
                        known.name = name

                await self._session.update_device(token, sighting.address, _fill_name)
        return added

    # ------------------------------------------------------------------ #
    #  Assessment tasks
    # ------------------------------------------------------------------ #

    def _schedule_assessment(self, token: int, device: Device) -> asyncio.Task[None]:
        """Start a battery for *device*, cancelling one still running for
        the same identifier so its probes stop and its results never land."""
        previous = self._assessments.get(device.id)
        if previous is not None and not previous.done():
            logger.debug("Superseding running assessment of %s", device.id, generation=token)
            previous.cancel()

        snapshot = device.model_copy(deep=True)
        task = asyncio.create_task(self._assess(token, snapshot), name=f"assess-{device.id}")
        self._assessments[device.id] = task

        def _forget(done: asyncio.Task[None], key: str = device.id) -> None:
            if self._assessments.get(key) is done:
                del self._assessments[key]

        task.add_done_callback(_forget)
        return task

    async def _assess(self, token: int, device: Device) -> None:
        try:
            findings = await self._correlator.assess(device)
        except Exception:
            logger.exception("Assessment of %s failed", device.id, generation=token)
            return
        if await self._session.attach_findings(token, device.id, findings):
            vulnerable = sum(1 for f in findings if f.vulnerable)
            logger.info(
                "Assessed %s: %d/%d checks vulnerable",
                device.display_name, vulnerable, len(findings),
                generation=token,
            )

    # ------------------------------------------------------------------ #
    #  Stages
    # ------------------------------------------------------------------ #

    async def _consume_advertisements(self, token: int) -> None:
        try:
            async with contextlib.aclosing(self._adapter.scan(allow_duplicates=False)) as stream:
                async for advertisement in stream:
                    await self._on_advertisement(token, advertisement)
        except Exception as exc:
            logger.warning("Advertisement stream ended early: %s", exc, generation=token)

    async def _passive_stage(self, token: int, progress: _StageProgress) -> None:
        await self._session.set_status(token, "Passive scan: listening for advertisements")
        ticks = max(1, self._config.passive_ticks)
        consumer = asyncio.create_task(self._consume_advertisements(token))
        try:
            with logger.timed("passive scan window"):
                for tick in range(1, ticks + 1):
                    await asyncio.sleep(self._config.tick_interval)
                    await progress.advance(tick / ticks)
        finally:
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)

    async def _classic_stage(self, token: int, progress: _StageProgress) -> None:
        await self._session.set_status(token, "Classic discovery: hcitool scan")
        result = await self._runner.run(
            "hcitool",
            [
                "-i", self._config.hci_device,
                "scan",
                f"--length={self._config.classic_scan_length}",
                "--flush",
            ],
            timeout=self._config.classic_scan_timeout,
        )
        if not result.succeeded:
            logger.warning(
                "Classic discovery yielded nothing (%s)",
                result.stderr.strip() or f"exit {result.exit_code}",
                generation=token,
            )
        else:
            added = await self._merge_sightings(token, parse_inquiry_output(result.lines))
            logger.info("Classic discovery: %d new devices", added, generation=token)
        await progress.advance(1.0)

    async def _enumeration_stage(self, token: int, progress: _StageProgress) -> None:
        targets = [
            d.id
            for d in self._session.snapshot().devices
            if d.connectable and not d.is_classic
        ]
        for index, device_id in enumerate(targets, start=1):
            if not self._session.is_current(token):
                return
            await self._session.set_status(token, f"Enumerating services on {device_id}")
            await self._enumerate(token, device_id)
            await asyncio.sleep(self._config.enumeration_grace)
            await progress.advance(index / len(targets))
        await progress.advance(1.0)

    async def _enumerate(self, token: int, device_id: str) -> bool:
        """Connect, walk services and characteristics, disconnect.

        Only one connection is open at a time across all devices.
        """
        async with self._connect_lock:
            try:
                await self._adapter.connect(device_id, timeout=self._config.connect_timeout)
                uuids = [uuid async for uuid in self._adapter.discover_services(device_id)]
                characteristics: dict[str, list[Characteristic]] = {}
                for uuid in uuids:
                    characteristics[uuid] = [
                        char
                        async for char in self._adapter.discover_characteristics(device_id, uuid)
                    ]
            except Exception as exc:
                logger.warning("Enumeration of %s failed: %s", device_id, exc, generation=token)
                return False
            finally:
                await self._adapter.disconnect(device_id)

        classifier = self._classifier

        def _apply(device: Device) -> None:
            advertised = [s.uuid for s in device.services]
            device.services = classifier.resolve_services(
                [*uuids, *advertised], characteristics
            )
            if device.device_class is DeviceClass.UNKNOWN:
                refined = classifier.classify_services(uuids)
                if refined is not None:
                    device.device_class = refined

        await self._session.update_device(token, device_id, _apply)
        logger.debug("Enumerated %d services on %s", len(uuids), device_id, generation=token)
        return True

    async def _probe_stage(self, token: int, progress: _StageProgress) -> None:
        hci = self._config.hci_device
        probes: list[tuple[str, str, list[str]]] = [
            ("HID probe", "btscanner", ["-c", "keyboard,mouse"]),
            ("Advanced security probe", "btscanner", ["-i", hci]),
            ("Inquiry sweep", "hcitool", ["-i", hci, "scan"]),
        ]
        for index, (label, binary, args) in enumerate(probes, start=1):
            if not self._session.is_current(token):
                return
            await self._session.set_status(token, f"{label}: {binary}")
            result = await self._runner.run(
                binary, args, timeout=self._config.classic_scan_timeout
            )
            if result.completed:
                added = await self._merge_sightings(token, parse_inquiry_output(result.lines))
                if added:
                    logger.info("%s identified %d new devices", label, added, generation=token)
            else:
                logger.debug("%s skipped: %s", label, result.stderr.strip(), generation=token)
            await progress.advance(index / len(probes))

    async def _reassess_stage(self, token: int, progress: _StageProgress) -> None:
        devices = self._session.snapshot().devices
        await self._session.set_status(token, f"Re-assessing {len(devices)} devices")
        if not devices:
            await progress.advance(1.0)
            return
        tasks = [self._schedule_assessment(token, device) for device in devices]
        done = 0
        for finished in asyncio.as_completed(tasks):
            await finished
            done += 1
            await progress.advance(done / len(tasks))
