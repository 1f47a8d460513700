"""
Tests for radio adapters
"""

import asyncio
from types import SimpleNamespace

import pytest

from harald.analyzers.classifier import DeviceClassifier
from harald.collectors.adapter import (
    BleakRadioAdapter,
    SimulatedRadioAdapter,
    _power_state_from_error,
)
from harald.core.errors import AdapterUnavailableError, DeviceConnectionError
from harald.core.models import PowerState, RadioVersion


def bleak_pair(address="aa:bb:cc:dd:ee:ff", name=None, **adv):
    device = SimpleNamespace(address=address, name=name)
    data = SimpleNamespace(
        local_name=adv.get("local_name"),
        rssi=adv.get("rssi", -60),
        service_uuids=adv.get("service_uuids", []),
        manufacturer_data=adv.get("manufacturer_data", {}),
        tx_power=adv.get("tx_power"),
    )
    return device, data


class TestBleakConversion:
    """Bleak advertisement -> Advertisement"""

    def test_manufacturer_payload_gets_company_prefix(self):
        device, adv = bleak_pair(manufacturer_data={0x004C: b"\x10\x05"})
        advert = BleakRadioAdapter._to_advertisement(device, adv)
        assert advert.manufacturer_data == bytes.fromhex("4c001005")
        assert advert.manufacturer_id == 0x004C

    def test_local_name_preferred(self):
        device, adv = bleak_pair(name="fallback", local_name="Advertised")
        assert BleakRadioAdapter._to_advertisement(device, adv).name == "Advertised"

    def test_no_services_is_empty_list(self):
        device, adv = bleak_pair()
        advert = BleakRadioAdapter._to_advertisement(device, adv)
        assert advert.service_uuids == []
        assert advert.id == "AA:BB:CC:DD:EE:FF"

    def test_le_advertisement_without_services_is_v4(self):
        device, adv = bleak_pair(service_uuids=None)
        advert = BleakRadioAdapter._to_advertisement(device, adv)
        assert DeviceClassifier().estimate_version(advert) is RadioVersion.V4_0

    def test_connectable_defaults_true(self):
        device, adv = bleak_pair()
        assert BleakRadioAdapter._to_advertisement(device, adv).connectable is True


class TestPowerStateMapping:
    @pytest.mark.parametrize(
        "message,state",
        [
            ("Bluetooth device is turned off", PowerState.POWERED_OFF),
            ("org.bluez.Error.NotAuthorized: not authorized", PowerState.UNAUTHORIZED),
            ("Bluetooth LE is not supported", PowerState.UNSUPPORTED),
            ("No Bluetooth adapters found.", PowerState.UNAVAILABLE),
        ],
    )
    def test_messages(self, message, state):
        assert _power_state_from_error(RuntimeError(message)) is state

    def test_reason_attribute(self):
        exc = RuntimeError("x")
        exc.reason = SimpleNamespace(name="POWERED_OFF")
        assert _power_state_from_error(exc) is PowerState.POWERED_OFF


class TestSimulatedAdapter:
    @pytest.mark.asyncio
    async def test_scan_streams_roster_then_blocks(self):
        adapter = SimulatedRadioAdapter()
        seen = []

        async def consume():
            async for advert in adapter.scan():
                seen.append(advert.id)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        assert not task.done()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert len(seen) == len(set(seen)) == 10

    @pytest.mark.asyncio
    async def test_scan_refused_when_off(self):
        adapter = SimulatedRadioAdapter(power=PowerState.UNAUTHORIZED)
        with pytest.raises(AdapterUnavailableError):
            async for _ in adapter.scan():
                pass

    @pytest.mark.asyncio
    async def test_gatt_requires_connection(self):
        adapter = SimulatedRadioAdapter()
        with pytest.raises(DeviceConnectionError):
            await adapter.read_characteristic("F0:18:98:44:55:66", "FFF1")
        await adapter.connect("F0:18:98:44:55:66")
        assert await adapter.read_characteristic("F0:18:98:44:55:66", "FFF1") == b"\x01locked"
        with pytest.raises(DeviceConnectionError):
            await adapter.read_characteristic("F0:18:98:44:55:66", "FFF2")
        await adapter.disconnect("F0:18:98:44:55:66")

    @pytest.mark.asyncio
    async def test_unknown_device_unreachable(self):
        with pytest.raises(DeviceConnectionError):
            await SimulatedRadioAdapter().connect("00:11:22:33:44:55")
