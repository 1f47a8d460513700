"""
Tests for the Harald engine facade and JSON report
"""

import json

import pytest

from shared.config import HaraldConfig
from shared.console import HaraldConsole

from harald.analyzers.correlator import FixedVerdictSource
from harald.core.engine import HaraldEngine
from harald.core.models import DetectionMethod, ScanMode, ScanState
from harald.output.report import HaraldReportGenerator


@pytest.fixture
def config(fast_discovery):
    config = HaraldConfig()
    config.discovery = fast_discovery
    config.assessment.inter_check_delay = 0.0
    return config


@pytest.fixture
def engine(config):
    return HaraldEngine(
        config,
        HaraldConsole(quiet=True),
        simulate=True,
        verdicts=FixedVerdictSource(False),
    )


class TestEngine:
    """Simulated end-to-end runs"""

    @pytest.mark.asyncio
    async def test_simulated_collaborators_never_resolve_tools(self, engine):
        assert set(engine.available_tools().values()) == {None}
        await engine.close()

    @pytest.mark.asyncio
    async def test_discover(self, engine):
        snapshot = await engine.discover(ScanMode.PASSIVE)
        assert snapshot.state is ScanState.COMPLETE
        assert len(engine.devices) == 10
        assert len(engine.findings) == 50
        assert engine.progress == 1.0
        assert engine.status.startswith("Discovery complete")

        # seed corpus confirms BlueBorne and KNOB on every device
        confirmed = [f for f in engine.findings if f.vulnerable]
        assert {f.check_id for f in confirmed} == {"CVE-2017-0781", "CVE-2019-9506"}
        assert all(f.method is DetectionMethod.CORPUS_MATCH for f in confirmed)
        await engine.close()

    @pytest.mark.asyncio
    async def test_discover_with_paced_checks(self, config):
        # batteries outlast the passive window and finish after completion
        config.assessment.inter_check_delay = 0.03
        engine = HaraldEngine(
            config, HaraldConsole(quiet=True), simulate=True, verdicts=FixedVerdictSource(False)
        )
        snapshot = await engine.discover(ScanMode.PASSIVE)
        assert snapshot.state is ScanState.COMPLETE
        assert len(snapshot.devices) == 10
        assert all(len(device.findings) == 5 for device in snapshot.devices)
        assert len(snapshot.findings) == 50
        await engine.close()

    @pytest.mark.asyncio
    async def test_named_vulnerability(self, engine):
        assert await engine.test_named_vulnerability("KNOB Attack Vulnerability") is True
        assert await engine.test_named_vulnerability("HID-001: Keystroke Injection") is False
        await engine.close()

    @pytest.mark.asyncio
    async def test_corpus_operations(self, engine):
        assert await engine.corpus_size() == 4
        assert [e.id for e in await engine.search_corpus("BlueZ")] == ["CVE-2023-45866"]
        assert await engine.refresh_corpus() == 4
        await engine.close()

    @pytest.mark.asyncio
    async def test_exploit_results_accumulate(self, engine, tmp_path):
        await engine.start_discovery(ScanMode.PASSIVE)
        await engine.drain()
        finding = next(f for f in engine.findings if f.vulnerable)

        first = await engine.execute_exploit(finding)
        second = await engine.execute_exploit(finding)
        assert [r.id for r in engine.exploit_results] == [first.id, second.id]
        # live attempts are off unless configured
        assert not first.success

        path = engine.write_report(tmp_path / "reports" / "scan.json")
        report = json.loads(open(path, encoding="utf-8").read())
        assert len(report["exploits"]) == 2
        await engine.close()

    @pytest.mark.asyncio
    async def test_close_without_scan(self, engine):
        await engine.close()
        assert engine.snapshot().state is ScanState.IDLE


class TestReport:
    @pytest.mark.asyncio
    async def test_report_contents(self, engine, tmp_path):
        await engine.start_discovery(ScanMode.PASSIVE)
        await engine.drain()

        report = HaraldReportGenerator("1.0.0").build(engine.snapshot())
        assert report["state"] == "complete"
        assert report["summary"]["devices"] == 10
        assert report["summary"]["checks_run"] == 50
        assert report["summary"]["vulnerable_findings"] == 20
        assert report["summary"]["affected_devices"] == 10
        assert report["summary"]["by_severity"]["HIGH"] == 20

        path = HaraldReportGenerator().generate_json(engine.snapshot(), tmp_path / "out.json")
        data = json.loads(open(path, encoding="utf-8").read())
        apple = next(d for d in data["devices"] if d["id"] == "5A:3B:C1:D2:E3:F4")
        assert apple["manufacturer_data"] == "4c001005"
        assert apple["device_class"] == "phone"
        await engine.close()
