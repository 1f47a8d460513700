"""
Pytest configuration and shared fixtures for Harald tests.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence, Union

import pytest

from shared.config import DiscoveryConfig

from harald.analyzers.correlator import FixedVerdictSource, VulnerabilityCorrelator
from harald.collectors.cve_corpus import MemoryCVECorpus
from harald.collectors.probe_runner import ProbeResult, ProbeRunner
from harald.core.models import Advertisement, Device

ScriptedResult = Union[ProbeResult, Callable[[str, tuple], ProbeResult]]


def completed(binary: str, exit_code: int = 0, stdout: str = "") -> ProbeResult:
    """A probe result for a tool that ran to completion."""
    return ProbeResult(binary=binary, exit_code=exit_code, stdout=stdout)


class ScriptedProbeRunner(ProbeRunner):
    """Probe runner returning canned results per binary; unknown binaries
    are reported as unavailable."""

    def __init__(self, results: Optional[dict[str, ScriptedResult]] = None) -> None:
        super().__init__(search_paths=(), use_path=False)
        self.results: dict[str, ScriptedResult] = dict(results or {})
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    async def run(
        self,
        binary: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
    ) -> ProbeResult:
        argv = tuple(args)
        self.calls.append((binary, argv))
        scripted = self.results.get(binary)
        if scripted is None:
            return ProbeResult(binary=binary, args=argv, available=False)
        if callable(scripted):
            return scripted(binary, argv)
        return scripted

    def is_available(self, binary: str) -> bool:
        return binary in self.results


@pytest.fixture
def fast_discovery() -> DiscoveryConfig:
    return DiscoveryConfig(
        passive_ticks=5,
        tick_interval=0.01,
        classic_scan_timeout=1.0,
        connect_timeout=1.0,
        enumeration_grace=0.0,
    )


@pytest.fixture
def corpus() -> MemoryCVECorpus:
    return MemoryCVECorpus()


@pytest.fixture
def runner() -> ScriptedProbeRunner:
    return ScriptedProbeRunner()


@pytest.fixture
def correlator(corpus: MemoryCVECorpus, runner: ScriptedProbeRunner) -> VulnerabilityCorrelator:
    return VulnerabilityCorrelator(
        corpus,
        runner,
        FixedVerdictSource(False),
        inter_check_delay=0.0,
    )


@pytest.fixture
def device() -> Device:
    return Device(id="AA:BB:CC:DD:EE:01", name="Test Headset", rssi=-40, connectable=True)


@pytest.fixture
def make_advert() -> Callable[..., Advertisement]:
    def _make(device_id: str = "AA:BB:CC:DD:EE:01", **kwargs) -> Advertisement:
        return Advertisement(id=device_id, **kwargs)

    return _make
