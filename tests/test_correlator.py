"""
Tests for the Vulnerability Correlator and heuristic probes
"""

import pytest

from shared.models import Severity

from harald.analyzers.correlator import (
    CHECK_BATTERY,
    DEFAULT_TARGET,
    FixedVerdictSource,
    RandomVerdictSource,
    VerdictSource,
    VulnerabilityCorrelator,
    derive_keywords,
    probe_target,
)
from harald.analyzers.probes import (
    AuthenticationBypassProbe,
    L2PingProbe,
    RFCOMMScanProbe,
    SDPBrowseProbe,
    select_probe,
)
from harald.collectors.cve_corpus import MemoryCVECorpus
from harald.collectors.probe_runner import ProbeResult
from harald.core.errors import CorpusQueryError
from harald.core.models import DetectionMethod, Device

from tests.conftest import ScriptedProbeRunner, completed

KNOB = "CVE-2019-9506: KNOB Attack Vulnerability"
WEAK_AUTH = "BLE-001: Weak Authentication"


class FailingCorpus(MemoryCVECorpus):
    async def search(self, keyword):
        raise CorpusQueryError("database is locked")


class ExplodingVerdicts(VerdictSource):
    def decide(self, check_name):
        raise RuntimeError("verdict source offline")


class TestKeywords:
    """Check name -> correlation keywords"""

    def test_knob_includes_cve(self):
        assert "CVE-2019-9506" in derive_keywords(KNOB)

    def test_first_mapping_wins(self):
        assert derive_keywords("BlueBorne and KNOB combo")[-1] == "blueborne"

    def test_unmapped_name_is_used_verbatim(self):
        assert derive_keywords(WEAK_AUTH) == [WEAK_AUTH]

    def test_probe_target(self):
        assert probe_target("aa:bb:cc:dd:ee:ff") == "AA:BB:CC:DD:EE:FF"
        assert probe_target("6F1C2E4A-9B0D-4E8F-A1B2-C3D4E5F60718") == DEFAULT_TARGET
        assert probe_target(None) == DEFAULT_TARGET


class TestProbeSelection:
    @pytest.mark.parametrize(
        "name,probe_cls",
        [
            ("L2Ping flood", L2PingProbe),
            ("SDP record exposure", SDPBrowseProbe),
            ("Open RFCOMM channels", RFCOMMScanProbe),
            (WEAK_AUTH, AuthenticationBypassProbe),
        ],
    )
    def test_keyword_selects_probe(self, name, probe_cls):
        assert isinstance(select_probe(name), probe_cls)

    def test_no_probe(self):
        assert select_probe("HID-001: Keystroke Injection") is None

    def test_arguments(self):
        assert L2PingProbe().build_args("AA") == ["-c", "3", "-t", "1", "AA"]
        assert SDPBrowseProbe().build_args("AA") == ["browse", "AA"]
        assert RFCOMMScanProbe("hci1").build_args("AA") == ["-i", "hci1", "scan"]
        assert AuthenticationBypassProbe().build_args("AA") == ["-i", "hci0", "cc", "AA"]


class TestCorpusMatch:
    """Corpus-first decisions"""

    @pytest.mark.asyncio
    async def test_knob_matches_seed_corpus(self, correlator, runner):
        verdict = await correlator.evaluate(KNOB)
        assert verdict.vulnerable is True
        assert verdict.method is DetectionMethod.CORPUS_MATCH
        assert verdict.matched_cves == ["CVE-2019-9506"]
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_short_circuits_on_first_matching_keyword(self, corpus, correlator):
        await correlator.evaluate(KNOB)
        assert corpus.queries == ["CVE-2019-9506"]

    @pytest.mark.asyncio
    async def test_blueborne_matches_description(self, correlator):
        verdict = await correlator.evaluate("CVE-2017-0781: BlueBorne Information Disclosure")
        assert verdict.method is DetectionMethod.CORPUS_MATCH
        assert verdict.matched_cves == ["CVE-2017-0781"]

    @pytest.mark.asyncio
    async def test_order_independence(self, runner):
        first = VulnerabilityCorrelator(MemoryCVECorpus(), runner, FixedVerdictSource(False))
        second = VulnerabilityCorrelator(MemoryCVECorpus(), runner, FixedVerdictSource(False))

        a_knob = await first.test_named_vulnerability(KNOB)
        a_auth = await first.test_named_vulnerability(WEAK_AUTH)
        b_auth = await second.test_named_vulnerability(WEAK_AUTH)
        b_knob = await second.test_named_vulnerability(KNOB)

        assert (a_knob, a_auth) == (b_knob, b_auth) == (True, False)

    @pytest.mark.asyncio
    async def test_query_failure_counts_as_no_match(self, runner):
        correlator = VulnerabilityCorrelator(FailingCorpus(), runner, FixedVerdictSource(True))
        verdict = await correlator.evaluate(KNOB)
        assert verdict.method is DetectionMethod.SIMULATED
        assert verdict.vulnerable is True


class TestHeuristicProbe:
    """Probe exit-status rules"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exit_code,expected", [(1, True), (0, False)])
    async def test_l2ping_inverted(self, corpus, exit_code, expected):
        runner = ScriptedProbeRunner({"l2ping": completed("l2ping", exit_code)})
        correlator = VulnerabilityCorrelator(corpus, runner, FixedVerdictSource(True))
        verdict = await correlator.evaluate("L2Ping flood", "AA:BB:CC:DD:EE:FF")
        assert verdict.vulnerable is expected
        assert verdict.method is DetectionMethod.HEURISTIC
        assert runner.calls == [("l2ping", ("-c", "3", "-t", "1", "AA:BB:CC:DD:EE:FF"))]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name,binary", [("SDP exposure", "sdptool"), ("RFCOMM scan", "rfcomm"), (WEAK_AUTH, "hcitool")]
    )
    async def test_success_means_vulnerable(self, corpus, name, binary):
        runner = ScriptedProbeRunner({binary: completed(binary, 0)})
        correlator = VulnerabilityCorrelator(corpus, runner, FixedVerdictSource(False))
        assert await correlator.test_named_vulnerability(name, "AA:BB:CC:DD:EE:FF") is True

    @pytest.mark.asyncio
    async def test_unavailable_tool_is_negative(self, corpus):
        # FixedVerdictSource(True) proves the simulated fallback is not consulted
        correlator = VulnerabilityCorrelator(corpus, ScriptedProbeRunner(), FixedVerdictSource(True))
        verdict = await correlator.evaluate(WEAK_AUTH)
        assert verdict.vulnerable is False
        assert verdict.method is DetectionMethod.HEURISTIC
        assert "unavailable" in verdict.detail

    @pytest.mark.asyncio
    async def test_timeout_is_negative(self, corpus):
        runner = ScriptedProbeRunner({"l2ping": ProbeResult(binary="l2ping", timed_out=True)})
        correlator = VulnerabilityCorrelator(corpus, runner, FixedVerdictSource(True))
        verdict = await correlator.evaluate("L2Ping flood")
        assert verdict.vulnerable is False
        assert "timed out" in verdict.detail

    @pytest.mark.asyncio
    async def test_default_target_without_address(self, corpus):
        runner = ScriptedProbeRunner({"hcitool": completed("hcitool", 1)})
        correlator = VulnerabilityCorrelator(corpus, runner, FixedVerdictSource(False))
        await correlator.evaluate(WEAK_AUTH)
        assert runner.calls == [("hcitool", ("-i", "hci0", "cc", DEFAULT_TARGET))]


class TestSimulatedVerdict:
    @pytest.mark.asyncio
    async def test_fallback_uses_verdict_source(self, corpus, runner):
        correlator = VulnerabilityCorrelator(corpus, runner, FixedVerdictSource(True))
        verdict = await correlator.evaluate("HID-001: Keystroke Injection")
        assert verdict.vulnerable is True
        assert verdict.method is DetectionMethod.SIMULATED

    def test_probability_bounds(self):
        with pytest.raises(ValueError):
            RandomVerdictSource(1.5)

    def test_seeded_source_is_reproducible(self):
        a = RandomVerdictSource(0.5, seed=7)
        b = RandomVerdictSource(0.5, seed=7)
        assert [a.decide("x") for _ in range(20)] == [b.decide("x") for _ in range(20)]

    def test_extremes(self):
        assert not any(RandomVerdictSource(0.0).decide("x") for _ in range(50))
        assert all(RandomVerdictSource(1.0).decide("x") for _ in range(50))


class TestAssess:
    """Full battery against one device"""

    @pytest.mark.asyncio
    async def test_one_finding_per_check_in_order(self, correlator, device):
        findings = await correlator.assess(device)
        assert [f.check_id for f in findings] == [c.check_id for c in CHECK_BATTERY]
        assert all(f.device_id == device.id for f in findings)

    @pytest.mark.asyncio
    async def test_methods_with_seed_corpus(self, correlator, device):
        findings = await correlator.assess(device)
        methods = [f.method for f in findings]
        assert methods == [
            DetectionMethod.CORPUS_MATCH,
            DetectionMethod.CORPUS_MATCH,
            DetectionMethod.HEURISTIC,
            DetectionMethod.SIMULATED,
            DetectionMethod.SIMULATED,
        ]

    @pytest.mark.asyncio
    async def test_severity(self, correlator, device):
        findings = await correlator.assess(device)
        blueborne, knob, auth = findings[:3]
        assert blueborne.vulnerable and blueborne.severity is Severity.HIGH
        assert knob.title == KNOB
        assert knob.cve_id == "CVE-2019-9506"
        assert not auth.vulnerable and auth.severity is Severity.NONE

    @pytest.mark.asyncio
    async def test_probe_uses_device_address(self, corpus, device):
        runner = ScriptedProbeRunner({"hcitool": completed("hcitool", 0)})
        correlator = VulnerabilityCorrelator(
            corpus, runner, FixedVerdictSource(False), inter_check_delay=0.0
        )
        findings = await correlator.assess(device)
        assert runner.calls == [("hcitool", ("-i", "hci0", "cc", device.id))]
        assert findings[2].vulnerable
        assert findings[2].probe == "hcitool"
        assert findings[2].severity is Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_crashing_check_is_inconclusive(self, corpus, runner, device):
        correlator = VulnerabilityCorrelator(
            corpus, runner, ExplodingVerdicts(), inter_check_delay=0.0
        )
        findings = await correlator.assess(device)
        assert len(findings) == len(CHECK_BATTERY)
        assert findings[3].method is DetectionMethod.INCONCLUSIVE
        assert findings[4].method is DetectionMethod.INCONCLUSIVE
        assert not findings[3].vulnerable
        assert findings[0].vulnerable

    @pytest.mark.asyncio
    async def test_platform_identifier_uses_default_target(self, corpus):
        runner = ScriptedProbeRunner({"hcitool": completed("hcitool", 1)})
        correlator = VulnerabilityCorrelator(
            corpus, runner, FixedVerdictSource(False), inter_check_delay=0.0
        )
        await correlator.assess(Device(id="6F1C2E4A-9B0D-4E8F-A1B2-C3D4E5F60718"))
        assert runner.calls[0][1][-1] == DEFAULT_TARGET
