"""
Radio Adapters
===============

The scan orchestrator talks to the Bluetooth controller only through the
:class:`RadioAdapter` contract: a power-state query, an advertisement
stream, and per-device connect / attribute discovery.

Two implementations ship:

* :class:`BleakRadioAdapter` -- real hardware through the Bleak library
  (BlueZ on Linux, CoreBluetooth on macOS, WinRT on Windows). Bleak's
  detection callback may fire on a backend thread, so advertisements are
  handed to the event loop with ``call_soon_threadsafe`` and consumed
  from an :class:`asyncio.Queue`.
* :class:`SimulatedRadioAdapter` -- a fixed roster of realistic devices
  for demonstrations and tests.

References:
    - Bleak Documentation. https://bleak.readthedocs.io/
    - Bluetooth SIG. (2023). Core Specification v5.4. Vol 3, Part C,
      Section 11: Advertising and Scan Response Data Format.
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Sequence

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from shared.logger import HaraldLogger

from harald.core.errors import AdapterUnavailableError, DeviceConnectionError
from harald.core.models import Advertisement, Characteristic, PowerState

logger = HaraldLogger("collectors.adapter")


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class RadioAdapter(abc.ABC):
    """Capability interface over a Bluetooth controller."""

    name: str = "adapter"

    @abc.abstractmethod
    async def power_state(self) -> PowerState:
        """Current power / permission state of the controller."""

    @abc.abstractmethod
    def scan(self, allow_duplicates: bool = False) -> AsyncIterator[Advertisement]:
        """Stream advertisements until the iterator is closed."""

    @abc.abstractmethod
    async def connect(self, device_id: str, timeout: float = 10.0) -> None:
        """Open a connection. Raises :class:`DeviceConnectionError`."""

    @abc.abstractmethod
    async def disconnect(self, device_id: str) -> None:
        """Close a connection opened by :meth:`connect`; no-op otherwise."""

    @abc.abstractmethod
    def discover_services(self, device_id: str) -> AsyncIterator[str]:
        """Stream the service UUIDs of a connected device."""

    @abc.abstractmethod
    def discover_characteristics(
        self, device_id: str, service_uuid: str
    ) -> AsyncIterator[Characteristic]:
        """Stream the characteristics of one service of a connected device."""

    @abc.abstractmethod
    async def read_characteristic(self, device_id: str, uuid: str) -> bytes:
        """Read a characteristic value from a connected device."""


# ---------------------------------------------------------------------------
# Bleak-backed adapter
# ---------------------------------------------------------------------------


def _power_state_from_error(exc: BaseException) -> PowerState:
    """Best-effort mapping of a Bleak start-up failure to a power state."""
    reason = getattr(getattr(exc, "reason", None), "name", "")
    if reason == "POWERED_OFF":
        return PowerState.POWERED_OFF
    if reason in ("UNAUTHORIZED", "DENIED_BY_USER", "DENIED_BY_SYSTEM"):
        return PowerState.UNAUTHORIZED
    if reason == "NO_BLUETOOTH":
        return PowerState.UNSUPPORTED

    text = str(exc).lower()
    if "turned off" in text or "powered off" in text or "not powered" in text:
        return PowerState.POWERED_OFF
    if "not authorized" in text or "unauthorized" in text or "permission" in text:
        return PowerState.UNAUTHORIZED
    if "not supported" in text or "unsupported" in text:
        return PowerState.UNSUPPORTED
    return PowerState.UNAVAILABLE


class BleakRadioAdapter(RadioAdapter):
    """Radio adapter backed by :mod:`bleak`.

    Args:
        adapter: Controller name passed to Bleak on Linux (``hci0``).
    """

    name = "bleak"

    def __init__(self, adapter: Optional[str] = None) -> None:
        self._adapter = adapter
        self._clients: dict[str, BleakClient] = {}

    def _scanner_kwargs(self) -> dict[str, Any]:
        return {"adapter": self._adapter} if self._adapter else {}

    async def power_state(self) -> PowerState:
        scanner = BleakScanner(**self._scanner_kwargs())
        try:
            await scanner.start()
            await scanner.stop()
        except (BleakError, OSError) as exc:
            state = _power_state_from_error(exc)
            logger.warning("Adapter check failed (%s): %s", state.value, exc)
            return state
        return PowerState.POWERED_ON

    @staticmethod
    def _to_advertisement(device: Any, adv: Any) -> Advertisement:
        payload: Optional[bytes] = None
        for company_id, data in (adv.manufacturer_data or {}).items():
            payload = int(company_id).to_bytes(2, byteorder="little") + bytes(data)
            break

        # Every LE advertisement carries a (possibly empty) service list.
        # BlueZ and WinRT do not report connectability; assume connectable
        # and let the connect attempt decide.
        connectable = getattr(adv, "connectable", None)

        return Advertisement(
            id=device.address.upper(),
            name=adv.local_name or device.name or None,
            rssi=adv.rssi if adv.rssi is not None else -100,
            service_uuids=list(adv.service_uuids or []),
            manufacturer_data=payload,
            tx_power=adv.tx_power,
            connectable=True if connectable is None else bool(connectable),
        )

    async def scan(self, allow_duplicates: bool = False) -> AsyncIterator[Advertisement]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Advertisement] = asyncio.Queue()

        def _on_detection(device: Any, adv: Any) -> None:
            try:
                advert = self._to_advertisement(device, adv)
            except (ValueError, TypeError, AttributeError) as exc:
                logger.debug("Dropping malformed advertisement: %s", exc)
                return
            loop.call_soon_threadsafe(queue.put_nowait, advert)

        scanner = BleakScanner(detection_callback=_on_detection, **self._scanner_kwargs())
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise AdapterUnavailableError(_power_state_from_error(exc), str(exc)) from exc

        seen: set[str] = set()
        try:
            while True:
                advert = await queue.get()
                if not allow_duplicates and advert.id in seen:
                    continue
                seen.add(advert.id)
                yield advert
        finally:
            await scanner.stop()

    async def connect(self, device_id: str, timeout: float = 10.0) -> None:
        client = BleakClient(device_id, timeout=timeout)
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise DeviceConnectionError(device_id, f"connect failed: {exc}") from exc
        self._clients[device_id] = client

    async def disconnect(self, device_id: str) -> None:
        client = self._clients.pop(device_id, None)
        if client is None:
            return
        try:
            await client.disconnect()
        except (BleakError, OSError) as exc:
            logger.debug("Disconnect from %s failed: %s", device_id, exc)

    def _client(self, device_id: str) -> BleakClient:
        client = self._clients.get(device_id)
        if client is None or not client.is_connected:
            raise DeviceConnectionError(device_id, "not connected")
        return client

    async def discover_services(self, device_id: str) -> AsyncIterator[str]:
        for service in self._client(device_id).services:
            yield service.uuid

    async def discover_characteristics(
        self, device_id: str, service_uuid: str
    ) -> AsyncIterator[Characteristic]:
        service = self._client(device_id).services.get_service(service_uuid)
        if service is None:
            return
        for char in service.characteristics:
            yield Characteristic(uuid=char.uuid, properties=list(char.properties))

    async def read_characteristic(self, device_id: str, uuid: str) -> bytes:
        try:
            return bytes(await self._client(device_id).read_gatt_char(uuid))
        except BleakError as exc:
            raise DeviceConnectionError(device_id, f"read {uuid} failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Simulated adapter
# ---------------------------------------------------------------------------


@dataclass
class SimulatedDevice:
    """One roster entry: the advertisement plus its GATT table."""

    advertisement: Advertisement
    gatt: dict[str, list[Characteristic]] = field(default_factory=dict)
    values: dict[str, bytes] = field(default_factory=dict)


def _char(uuid: str, *properties: str) -> Characteristic:
    return Characteristic(uuid=uuid, properties=list(properties))


def default_roster() -> list[SimulatedDevice]:
    """A realistic mix of phones, wearables, peripherals and IoT devices."""
    battery = {"180F": [_char("2A19", "read", "notify")]}
    info = {"180A": [_char("2A29", "read"), _char("2A24", "read")]}
    return [
        SimulatedDevice(
            Advertisement(
                id="5A:3B:C1:D2:E3:F4", name="iPhone 15 Pro", rssi=-45,
                service_uuids=["180A"], manufacturer_data=bytes.fromhex("4c001005"),
                tx_power=7, connectable=True,
            ),
            gatt={**info},
            values={"2A29": b"Apple Inc.", "2A24": b"iPhone16,1"},
        ),
        SimulatedDevice(
            Advertisement(
                id="C8:28:32:A1:B2:C3", name="Galaxy S24", rssi=-52,
                service_uuids=["1800", "1801"], manufacturer_data=bytes.fromhex("75000142"),
                tx_power=12, connectable=True,
            ),
            gatt={"1800": [_char("2A00", "read")], "1801": [_char("2A05", "indicate")]},
            values={"2A00": b"Galaxy S24"},
        ),
        SimulatedDevice(
            Advertisement(
                id="D4:22:CD:00:76:EC", name="Fitbit Charge 6", rssi=-62,
                service_uuids=["180D", "180F"], manufacturer_data=bytes.fromhex("7d000203"),
                tx_power=4, connectable=True,
            ),
            gatt={"180D": [_char("2A37", "notify")], **battery},
            values={"2A19": b"\x4b"},
        ),
        SimulatedDevice(
            Advertisement(
                id="A4:C1:38:E5:D6:47", name="Garmin Venu 3", rssi=-58,
                service_uuids=["180D", "180F", "180A"], manufacturer_data=bytes.fromhex("87001a03"),
                tx_power=4, connectable=True,
            ),
            gatt={**battery, **info},
            values={"2A19": b"\x5a", "2A29": b"Garmin", "2A24": b"Venu 3"},
        ),
        SimulatedDevice(
            Advertisement(
                id="E1:4F:22:9A:0B:7C", name="Logitech K380 Keyboard", rssi=-40,
                service_uuids=["1812", "180F"], tx_power=0, connectable=True,
            ),
            gatt={
                "1812": [
                    _char("2A4D", "read", "notify", "encrypt-read"),
                    _char("2A4B", "encrypt-read"),
                ],
                **battery,
            },
            values={"2A19": b"\x32"},
        ),
        SimulatedDevice(
            Advertisement(
                id="20:C3:8F:77:88:99", name="Bose QC Ultra", rssi=-48,
                service_uuids=["110B"], manufacturer_data=bytes.fromhex("8f030103"),
                tx_power=6, connectable=True,
            ),
        ),
        SimulatedDevice(
            Advertisement(
                id="F0:18:98:44:55:66", name="August Smart Lock", rssi=-66,
                service_uuids=["FFF0"], tx_power=0, connectable=True,
            ),
            gatt={"FFF0": [_char("FFF1", "read", "write"), _char("FFF2", "write-without-response")]},
            values={"FFF1": b"\x01locked"},
        ),
        SimulatedDevice(
            Advertisement(
                id="C0:98:E5:49:00:12", name="Glucose Monitor GM-2", rssi=-71,
                service_uuids=["1808", "181C"], manufacturer_data=bytes.fromhex("59000401"),
                tx_power=-4, connectable=True,
            ),
            gatt={"1808": [_char("2A18", "notify")], "181C": [_char("2A8A", "read", "write")]},
            values={"2A8A": b"PATIENT-0042"},
        ),
        SimulatedDevice(
            Advertisement(
                id="DC:A6:32:AB:CD:EF", name="RuuviTag B3F4", rssi=-55,
                manufacturer_data=bytes.fromhex("990405"), tx_power=4, connectable=False,
            ),
        ),
        SimulatedDevice(
            Advertisement(
                id="0E:5F:A0:B1:C2:D3", rssi=-85,
                manufacturer_data=bytes.fromhex("4c0012"), connectable=False,
            ),
        ),
    ]


class SimulatedRadioAdapter(RadioAdapter):
    """In-memory adapter replaying a fixed roster.

    After the roster has been streamed the scan iterator stays open,
    as a real controller's would, until it is closed or cancelled.

    Args:
        roster: Devices to replay (defaults to :func:`default_roster`).
            Entries may repeat an identifier to model duplicate sightings.
        power: Power state reported by :meth:`power_state`.
        advert_interval: Delay in seconds before each advertisement.
        unreachable: Identifiers whose connect attempts fail.
    """

    name = "simulated"

    def __init__(
        self,
        roster: Optional[Sequence[SimulatedDevice]] = None,
        *,
        power: PowerState = PowerState.POWERED_ON,
        advert_interval: float = 0.0,
        unreachable: Sequence[str] = (),
    ) -> None:
        self._roster = list(default_roster() if roster is None else roster)
        self._by_id = {entry.advertisement.id: entry for entry in self._roster}
        self._power = power
        self._advert_interval = advert_interval
        self._unreachable = set(unreachable)
        self._connected: set[str] = set()
        self.connect_log: list[str] = []
        self.max_concurrent_connections = 0

    async def power_state(self) -> PowerState:
        return self._power

    async def scan(self, allow_duplicates: bool = False) -> AsyncIterator[Advertisement]:
        if self._power is not PowerState.POWERED_ON:
            raise AdapterUnavailableError(self._power)
        seen: set[str] = set()
        for entry in self._roster:
            if self._advert_interval:
                await asyncio.sleep(self._advert_interval)
            advert = entry.advertisement
            if not allow_duplicates and advert.id in seen:
                continue
            seen.add(advert.id)
            yield advert
        await asyncio.Event().wait()

    async def connect(self, device_id: str, timeout: float = 10.0) -> None:
        self.connect_log.append(device_id)
        if device_id in self._unreachable or device_id not in self._by_id:
            raise DeviceConnectionError(device_id, "connect failed: device unreachable")
        self._connected.add(device_id)
        self.max_concurrent_connections = max(
            self.max_concurrent_connections, len(self._connected)
        )

    async def disconnect(self, device_id: str) -> None:
        self._connected.discard(device_id)

    def _entry(self, device_id: str) -> SimulatedDevice:
        if device_id not in self._connected:
            raise DeviceConnectionError(device_id, "not connected")
        return self._by_id[device_id]

    async def discover_services(self, device_id: str) -> AsyncIterator[str]:
        entry = self._entry(device_id)
        uuids = list(entry.gatt) or list(entry.advertisement.service_uuids or [])
        for uuid in uuids:
            yield uuid

    async def discover_characteristics(
        self, device_id: str, service_uuid: str
    ) -> AsyncIterator[Characteristic]:
        for char in self._entry(device_id).gatt.get(service_uuid, []):
            yield char

    async def read_characteristic(self, device_id: str, uuid: str) -> bytes:
        entry = self._entry(device_id)
        if uuid not in entry.values:
            raise DeviceConnectionError(device_id, f"read {uuid} failed: not permitted")
        return entry.values[uuid]
