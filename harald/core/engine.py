"""
Harald Engine
==============

Facade wiring the discovery pipeline together and exposing the
operations the CLI (or any other front-end) drives:

    start_discovery(mode) / stop_discovery()
    devices, findings, progress, status, snapshot()
    execute_exploit(finding)
    refresh_corpus(), search_corpus(keyword)
    test_named_vulnerability(name)

Components are built from :class:`HaraldConfig`. With ``simulate=True``
the engine uses the in-memory radio roster and an in-memory CVE corpus,
and the probe runner never resolves a real tool.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.progress import Progress, TaskID

from shared.config import HaraldConfig
from shared.console import HaraldConsole
from shared.logger import HaraldLogger

from harald.analyzers.correlator import RandomVerdictSource, VerdictSource, VulnerabilityCorrelator
from harald.analyzers.exploit import ExploitEngine
from harald.collectors.adapter import BleakRadioAdapter, RadioAdapter, SimulatedRadioAdapter
from harald.collectors.cve_corpus import CVECorpus, MemoryCVECorpus, SQLiteCVECorpus
from harald.collectors.probe_runner import ProbeRunner
from harald.core.models import (
    CVEEntry,
    Device,
    ExploitResult,
    Finding,
    ScanMode,
    SessionSnapshot,
)
from harald.core.orchestrator import ScanOrchestrator
from harald.core.session import SessionState
from harald.output.console import HaraldConsoleOutput
from harald.output.report import HaraldReportGenerator

logger = HaraldLogger("core.engine")


class HaraldEngine:
    """Central entry point for Harald discovery and assessment.

    Usage::

        engine = HaraldEngine(config, simulate=True)
        await engine.start_discovery(ScanMode.ACTIVE)
        await engine.drain()
        for finding in engine.findings:
            ...
        await engine.close()

    Args:
        config: Harald configuration. Defaults are used if ``None``.
        console: Console used by :meth:`discover`.
        simulate: Use simulated collaborators instead of hardware and tools.
        adapter: Radio adapter override.
        runner: Probe runner override.
        corpus: CVE corpus override.
        verdicts: Verdict source for checks with no corpus hit or probe.
    """

    def __init__(
        self,
        config: Optional[HaraldConfig] = None,
        console: Optional[HaraldConsole] = None,
        *,
        simulate: bool = False,
        adapter: Optional[RadioAdapter] = None,
        runner: Optional[ProbeRunner] = None,
        corpus: Optional[CVECorpus] = None,
        verdicts: Optional[VerdictSource] = None,
    ) -> None:
        self._config = config or HaraldConfig()
        self._console = console or HaraldConsole()
        self._output = HaraldConsoleOutput(self._console)
        self._report = HaraldReportGenerator(self._config.global_settings.version)
        self._exploit_results: list[ExploitResult] = []

        probes = self._config.probes
        corpus_cfg = self._config.corpus

        if adapter is None:
            hci = self._config.discovery.hci_device if sys.platform.startswith("linux") else None
            adapter = SimulatedRadioAdapter() if simulate else BleakRadioAdapter(hci)
        if runner is None:
            runner = (
                ProbeRunner(search_paths=(), default_timeout=probes.timeout, use_path=False)
                if simulate
                else ProbeRunner(search_paths=probes.search_paths, default_timeout=probes.timeout)
            )
        if corpus is None:
            corpus = (
                MemoryCVECorpus()
                if simulate
                else SQLiteCVECorpus(
                    corpus_cfg.db_path,
                    seed_builtin=corpus_cfg.seed_builtin,
                    base_url=corpus_cfg.nvd_base_url,
                    api_key=corpus_cfg.nvd_api_key,
                    keyword=corpus_cfg.refresh_keyword,
                    page_size=corpus_cfg.page_size,
                    request_timeout=corpus_cfg.request_timeout,
                )
            )

        self._adapter = adapter
        self._runner = runner
        self._corpus = corpus
        self._session = SessionState()
        self._correlator = VulnerabilityCorrelator(
            corpus,
            runner,
            verdicts or RandomVerdictSource(self._config.assessment.verdict_probability),
            inter_check_delay=self._config.assessment.inter_check_delay,
            probe_timeout=probes.timeout,
            default_target=probes.default_target,
            hci_device=self._config.discovery.hci_device,
        )
        self._orchestrator = ScanOrchestrator(
            adapter,
            runner,
            self._correlator,
            session=self._session,
            config=self._config.discovery,
        )
        self._exploits = ExploitEngine(
            runner,
            adapter,
            allow_live=self._config.exploits.allow_live,
            timeout=self._config.exploits.timeout,
            connect_lock=self._orchestrator.connect_lock,
        )

    # ------------------------------------------------------------------ #
    #  Component access
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> HaraldConfig:
        return self._config

    @property
    def orchestrator(self) -> ScanOrchestrator:
        return self._orchestrator

    @property
    def correlator(self) -> VulnerabilityCorrelator:
        return self._correlator

    @property
    def runner(self) -> ProbeRunner:
        return self._runner

    # ------------------------------------------------------------------ #
    #  Session views
    # ------------------------------------------------------------------ #

    def snapshot(self) -> SessionSnapshot:
        return self._session.snapshot()

    @property
    def devices(self) -> list[Device]:
        return self.snapshot().devices

    @property
    def findings(self) -> list[Finding]:
        return self.snapshot().findings

    @property
    def progress(self) -> float:
        return self.snapshot().progress

    @property
    def status(self) -> str:
        return self.snapshot().status

    @property
    def exploit_results(self) -> list[ExploitResult]:
        return list(self._exploit_results)

    # ------------------------------------------------------------------ #
    #  Operations
    # ------------------------------------------------------------------ #

    async def start_discovery(self, mode: ScanMode) -> None:
        await self._orchestrator.start_discovery(mode)

    async def stop_discovery(self) -> None:
        await self._orchestrator.stop_discovery()

    async def drain(self) -> None:
        await self._orchestrator.drain()

    async def execute_exploit(
        self, finding: Finding, target: Optional[str] = None
    ) -> ExploitResult:
        result = await self._exploits.execute(finding, target)
        self._exploit_results.append(result)
        return result

    async def refresh_corpus(self) -> int:
        """Refresh the CVE corpus; raises :class:`CorpusRefreshError`."""
        with logger.timed("corpus refresh"):
            return await self._corpus.refresh()

    async def search_corpus(self, keyword: str) -> list[CVEEntry]:
        return await self._corpus.search(keyword)

    async def corpus_size(self) -> int:
        return await self._corpus.count()

    async def test_named_vulnerability(
        self, check_name: str, target: Optional[str] = None
    ) -> bool:
        return await self._correlator.test_named_vulnerability(check_name, target)

    def available_tools(self) -> dict[str, Optional[str]]:
        return self._runner.available_tools()

    async def close(self) -> None:
        await self._orchestrator.stop_discovery()
        await self._corpus.close()

    # ------------------------------------------------------------------ #
    #  Interactive run
    # ------------------------------------------------------------------ #

    async def _watch_progress(self, progress_bar: Progress, task_id: TaskID) -> None:
        while True:
            snap = self._session.snapshot()
            progress_bar.update(task_id, completed=snap.progress, description=snap.status)
            await asyncio.sleep(0.2)

    async def discover(
        self,
        mode: ScanMode,
        output_path: Optional[str] = None,
        show_secure: bool = False,
    ) -> SessionSnapshot:
        """Run a discovery with a live progress bar, wait for assessments,
        render the results and optionally write a JSON report.

        Raises:
            AdapterUnavailableError: The adapter is not powered on.
        """
        self._console.info(
            f"Starting {mode.value} discovery (~{mode.nominal_duration}s)"
        )
        progress_bar, task_id = self._console.progress_task(f"{mode.value} discovery")
        watcher = asyncio.create_task(self._watch_progress(progress_bar, task_id))
        try:
            await self.start_discovery(mode)
            progress_bar.update(task_id, description="Finishing assessments")
            await self.drain()
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
            progress_bar.update(task_id, completed=self.progress)
            progress_bar.stop()

        snapshot = self.snapshot()
        self._output.display_devices(snapshot.devices)
        self._output.display_findings(snapshot.findings, snapshot.devices, show_secure)
        self._output.display_summary(snapshot)

        if output_path:
            self.write_report(output_path)
        return snapshot

    def write_report(self, output_path: str | Path) -> str:
        """Write a JSON report of the current session and exploit results.

        Relative paths are resolved against ``global.output_dir``.
        """
        target = Path(self._config.global_settings.output_dir) / output_path
        path = self._report.generate_json(self.snapshot(), target, self._exploit_results)
        self._console.success(f"Report written to {path}")
        return path
