"""
Tests for the Exploit Engine
"""

import asyncio

import pytest

from shared.models import Severity

from harald.analyzers.exploit import NOT_IMPLEMENTED_DETAIL, ExploitEngine
from harald.collectors.adapter import SimulatedRadioAdapter
from harald.core.models import ExploitResult, Finding

from tests.conftest import ScriptedProbeRunner, completed

LOCK = "F0:18:98:44:55:66"
SDP_OUTPUT = "Browsing AA:BB:CC:DD:EE:01 ...\nService Name: Headset Audio Gateway\nService RecHandle: 0x10001\n"


def finding(check_id, device_id="AA:BB:CC:DD:EE:01", vulnerable=True):
    return Finding(device_id=device_id, check_id=check_id, title=check_id, vulnerable=vulnerable)


class TestGuards:
    """Refusals that never touch the target"""

    @pytest.mark.asyncio
    async def test_unconfirmed_finding_refused(self, runner):
        engine = ExploitEngine(runner, allow_live=True)
        result = await engine.execute(finding("CVE-2017-0781", vulnerable=False))
        assert result.success is False
        assert "not confirmed" in result.details[0]
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_unknown_check(self, runner):
        result = await ExploitEngine(runner, allow_live=True).execute(finding("XYZ-999"))
        assert result.success is False
        assert result.details == [NOT_IMPLEMENTED_DETAIL]
        assert result.severity is Severity.NONE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("check_id", ["CVE-2019-9506", "BLE-001", "HID-001"])
    async def test_registered_without_routine(self, runner, check_id):
        engine = ExploitEngine(runner, allow_live=True)
        assert not engine.supports(check_id)
        result = await engine.execute(finding(check_id))
        assert result.success is False
        assert result.details[0].endswith("test not yet implemented")
        assert result.exploit_name == engine.exploit_name(check_id)

    @pytest.mark.asyncio
    async def test_live_disabled_by_default(self, runner):
        engine = ExploitEngine(runner)
        result = await engine.execute(finding("CVE-2017-0781"))
        assert result.success is False
        assert "Live exploitation is disabled" in result.details[0]
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_every_attempt_is_a_new_record(self, runner):
        engine = ExploitEngine(runner)
        first = await engine.execute(finding("BLE-002"))
        second = await engine.execute(finding("BLE-002"))
        assert first.id != second.id


class TestBlueBorne:
    @pytest.mark.asyncio
    async def test_sdp_records_captured(self):
        runner = ScriptedProbeRunner({"sdptool": completed("sdptool", 0, SDP_OUTPUT)})
        engine = ExploitEngine(runner, allow_live=True)
        result = await engine.execute(finding("CVE-2017-0781"))

        assert runner.calls == [("sdptool", ("browse", "AA:BB:CC:DD:EE:01"))]
        assert result.success is True
        assert result.severity is Severity.MEDIUM
        assert "Service Name: Headset Audio Gateway" in result.details
        assert result.execution_time >= 0.0

    @pytest.mark.asyncio
    async def test_missing_tool(self, runner):
        result = await ExploitEngine(runner, allow_live=True).execute(finding("CVE-2017-0781"))
        assert result.success is False
        assert result.details == ["sdptool is not installed"]

    @pytest.mark.asyncio
    async def test_refused_browse(self):
        runner = ScriptedProbeRunner({"sdptool": completed("sdptool", 1)})
        result = await ExploitEngine(runner, allow_live=True).execute(finding("CVE-2017-0781"))
        assert result.success is False
        assert result.details == ["sdptool browse AA:BB:CC:DD:EE:01 exited 1"]


class TestUnencryptedRead:
    """GATT read against the simulated roster"""

    @pytest.mark.asyncio
    async def test_reads_open_characteristics(self, runner):
        adapter = SimulatedRadioAdapter()
        engine = ExploitEngine(runner, adapter, allow_live=True)
        result = await engine.execute(finding("BLE-002", LOCK))

        assert result.success is True
        assert result.target == LOCK
        assert result.details == ["FFF1: " + b"\x01locked".hex()]
        assert result.severity is Severity.MEDIUM
        assert adapter.connect_log == [LOCK]
        # disconnected afterwards
        with pytest.raises(Exception):
            await adapter.read_characteristic(LOCK, "FFF1")

    @pytest.mark.asyncio
    async def test_nothing_readable(self, runner):
        engine = ExploitEngine(runner, SimulatedRadioAdapter(), allow_live=True)
        result = await engine.execute(finding("BLE-002", "20:C3:8F:77:88:99"))
        assert result.success is False
        assert result.details == ["No characteristic readable without encryption"]

    @pytest.mark.asyncio
    async def test_unreachable_target(self, runner):
        adapter = SimulatedRadioAdapter(unreachable=[LOCK])
        result = await ExploitEngine(runner, adapter, allow_live=True).execute(finding("BLE-002", LOCK))
        assert result.success is False
        assert result.details[0].startswith("Exploit failed:")

    @pytest.mark.asyncio
    async def test_no_adapter(self, runner):
        result = await ExploitEngine(runner, allow_live=True).execute(finding("BLE-002", LOCK))
        assert result.details == ["No radio adapter available"]

    @pytest.mark.asyncio
    async def test_waits_for_shared_connect_lock(self, runner):
        lock = asyncio.Lock()
        engine = ExploitEngine(runner, SimulatedRadioAdapter(), allow_live=True, connect_lock=lock)
        await lock.acquire()
        attempt = asyncio.create_task(engine.execute(finding("BLE-002", LOCK)))
        await asyncio.sleep(0.02)
        assert not attempt.done()
        lock.release()
        assert (await attempt).success is True


class TestRegistry:
    @pytest.mark.asyncio
    async def test_custom_routine_and_timeout(self, runner):
        engine = ExploitEngine(runner, allow_live=True, timeout=0.05)

        async def stall(found, target):
            await asyncio.sleep(5)
            return ExploitResult(success=True, vulnerability_id=found.check_id, exploit_name="stall")

        engine.register("HID-001", "Stalling injector", stall)
        assert engine.supports("HID-001")
        result = await engine.execute(finding("HID-001"))
        assert result.success is False
        assert result.details[0].startswith("Timed out")
        assert result.exploit_name == "Stalling injector"

    @pytest.mark.asyncio
    async def test_crashing_routine(self, runner):
        engine = ExploitEngine(runner, allow_live=True)

        async def crash(found, target):
            raise RuntimeError("radio wedged")

        engine.register("HID-001", "Crashing injector", crash)
        result = await engine.execute(finding("HID-001"))
        assert result.details == ["Exploit failed: radio wedged"]
