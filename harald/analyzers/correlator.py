"""
Vulnerability Correlator
=========================

Decides, per named vulnerability check, whether a device is vulnerable.

Decision order for one check:
    1. **Corpus match** -- the check name is mapped to correlation
       keywords (known CVE identifiers plus a bare keyword); the check is
       vulnerable as soon as any keyword has at least one corpus entry.
    2. **Heuristic probe** -- when the corpus has nothing, a live probe
       selected by keyword runs against the target address
       (see :mod:`harald.analyzers.probes`).
    3. **Simulated verdict** -- when no probe applies, an injectable
       :class:`VerdictSource` decides. The default is a fixed-probability
       random draw; it is a placeholder for real protocol-level testing
       and its findings are tagged ``simulated``.

A device assessment runs the fixed check battery sequentially, with a
delay before each check, and yields one :class:`Finding` per check in
battery order. Batteries for different devices may run concurrently.

References:
    - Seri, B. & Vishnepolsky, G. (2017). BlueBorne. Armis Labs.
    - Antonioli, D. et al. (2019). The KNOB is Broken. USENIX Security.
    - Antonioli, D. et al. (2020). BIAS: Bluetooth Impersonation AttackS.
      IEEE S&P.
"""

from __future__ import annotations

import abc
import asyncio
import random
from dataclasses import dataclass, field
from typing import Optional

from shared.logger import HaraldLogger
from shared.models import Severity

from harald.analyzers.probes import select_probe
from harald.collectors.classic import is_hardware_address
from harald.collectors.cve_corpus import CVECorpus
from harald.collectors.probe_runner import ProbeRunner
from harald.core.errors import CorpusQueryError
from harald.core.models import CVEEntry, DetectionMethod, Device, Finding

logger = HaraldLogger("analyzers.correlator")

DEFAULT_TARGET = "00:00:00:00:00:00"


@dataclass(frozen=True, slots=True)
class VulnerabilityCheck:
    """One entry of the assessment battery."""

    check_id: str
    title: str
    severity: Severity
    cve_id: Optional[str] = None
    description: str = ""

    @property
    def name(self) -> str:
        """Full check name; keyword and probe selection work on this."""
        return f"{self.check_id}: {self.title}"


CHECK_BATTERY: tuple[VulnerabilityCheck, ...] = (
    VulnerabilityCheck(
        check_id="CVE-2017-0781",
        title="BlueBorne Information Disclosure",
        severity=Severity.HIGH,
        cve_id="CVE-2017-0781",
        description="SDP service response leaks stack memory (BlueBorne).",
    ),
    VulnerabilityCheck(
        check_id="CVE-2019-9506",
        title="KNOB Attack Vulnerability",
        severity=Severity.HIGH,
        cve_id="CVE-2019-9506",
        description="Encryption key length negotiable down to one byte.",
    ),
    VulnerabilityCheck(
        check_id="BLE-001",
        title="Weak Authentication",
        severity=Severity.MEDIUM,
        description="Link accepted without authentication.",
    ),
    VulnerabilityCheck(
        check_id="BLE-002",
        title="Unencrypted Characteristics",
        severity=Severity.MEDIUM,
        description="GATT characteristics readable without encryption.",
    ),
    VulnerabilityCheck(
        check_id="HID-001",
        title="Keystroke Injection",
        severity=Severity.HIGH,
        description="HID host accepts input from an unpaired peer.",
    ),
)

# Checked in order against the lower-cased check name.
KEYWORD_MAP: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("blueborne", ("CVE-2017-1000251", "CVE-2017-1000250", "blueborne")),
    ("knob", ("CVE-2019-9506", "knob attack")),
    ("bias", ("CVE-2020-10135", "bias attack")),
    ("bluefrag", ("CVE-2020-0022", "bluefrag")),
    ("bleedingbit", ("CVE-2018-16986", "bleedingbit")),
    ("sweyntooth", ("CVE-2019-16336", "sweyntooth")),
)


def derive_keywords(check_name: str) -> list[str]:
    """Correlation keywords for *check_name*; unmapped names use the name."""
    lowered = check_name.lower()
    for trigger, keywords in KEYWORD_MAP:
        if trigger in lowered:
            return list(keywords)
    return [check_name]


def probe_target(device_id: Optional[str], default: str = DEFAULT_TARGET) -> str:
    """Address handed to probes; platform UUIDs are not routable."""
    if device_id and is_hardware_address(device_id):
        return device_id.upper()
    return default


# ---------------------------------------------------------------------------
# Verdict sources
# ---------------------------------------------------------------------------


class VerdictSource(abc.ABC):
    """Decides checks that neither the corpus nor a probe can answer."""

    @abc.abstractmethod
    def decide(self, check_name: str) -> bool:
        ...


class RandomVerdictSource(VerdictSource):
    """Reports *probability* of checks as vulnerable. Pass ``seed`` for a
    reproducible sequence."""

    def __init__(self, probability: float = 0.3, seed: Optional[int] = None) -> None:
        if not 0.0 <= probability <= 1.0:
            raise ValueError(f"probability must be in [0, 1], got {probability}")
        self.probability = probability
        self._rng = random.Random(seed)

    def decide(self, check_name: str) -> bool:
        return self._rng.random() < self.probability


class FixedVerdictSource(VerdictSource):
    def __init__(self, verdict: bool = False) -> None:
        self.verdict = verdict

    def decide(self, check_name: str) -> bool:
        return self.verdict


@dataclass(frozen=True, slots=True)
class Verdict:
    vulnerable: bool
    method: DetectionMethod
    matched_cves: list[str] = field(default_factory=list)
    matched_entries: list[CVEEntry] = field(default_factory=list)
    probe: Optional[str] = None
    detail: str = ""


# ---------------------------------------------------------------------------
# Correlator
# ---------------------------------------------------------------------------


class VulnerabilityCorrelator:
    """Corpus-first, probe-second vulnerability assessment.

    Usage::

        correlator = VulnerabilityCorrelator(corpus, ProbeRunner())
        vulnerable = await correlator.test_named_vulnerability(
            "CVE-2019-9506: KNOB Attack Vulnerability"
        )
        findings = await correlator.assess(device)

    Args:
        corpus: CVE corpus queried by keyword.
        runner: External probe runner for heuristic probes.
        verdicts: Fallback verdict source. Defaults to a random source
            with probability 0.3.
        battery: Checks run by :meth:`assess`, in order.
        inter_check_delay: Seconds slept before each check of a battery.
        probe_timeout: Timeout per probe; the runner default when ``None``.
        default_target: Probe address used when the device identifier is
            not a hardware address.
        hci_device: Local adapter passed to probes that need one.
    """

    def __init__(
        self,
        corpus: CVECorpus,
        runner: ProbeRunner,
        verdicts: Optional[VerdictSource] = None,
        *,
        battery: tuple[VulnerabilityCheck, ...] = CHECK_BATTERY,
        inter_check_delay: float = 1.0,
        probe_timeout: Optional[float] = None,
        default_target: str = DEFAULT_TARGET,
        hci_device: str = "hci0",
    ) -> None:
        self._corpus = corpus
        self._runner = runner
        self._verdicts = verdicts or RandomVerdictSource()
        self._battery = battery
        self._inter_check_delay = inter_check_delay
        self._probe_timeout = probe_timeout
        self._default_target = default_target
        self._hci_device = hci_device

    @property
    def battery(self) -> tuple[VulnerabilityCheck, ...]:
        return self._battery

    # ------------------------------------------------------------------ #
    #  Single check
    # ------------------------------------------------------------------ #

    async def _corpus_hits(self, keywords: list[str]) -> list[CVEEntry]:
        """Entries for the first keyword with any match; empty if none.

        A failing query counts as no match for that keyword.
        """
        for keyword in keywords:
            try:
                entries = await self._corpus.search(keyword)
            except CorpusQueryError as exc:
                logger.warning("Corpus query failed for %r: %s", keyword, exc)
                continue
            if entries:
                return entries
        return []

    async def evaluate(self, check_name: str, target: Optional[str] = None) -> Verdict:
        """Run the three-step decision for one check against *target*."""
        keywords = derive_keywords(check_name)
        entries = await self._corpus_hits(keywords)
        if entries:
            return Verdict(
                vulnerable=True,
                method=DetectionMethod.CORPUS_MATCH,
                matched_cves=[e.id for e in entries],
                matched_entries=entries,
                detail=f"{len(entries)} corpus entr{'y' if len(entries) == 1 else 'ies'} matched",
            )

        probe = select_probe(check_name, self._hci_device)
        if probe is not None:
            address = target or self._default_target
            vulnerable, result = await probe.run(self._runner, address, self._probe_timeout)
            if not result.available:
                detail = f"{probe.binary} unavailable"
            elif result.timed_out:
                detail = f"{probe.binary} timed out"
            else:
                detail = f"{probe.describe(address)} exited {result.exit_code}"
            return Verdict(
                vulnerable=vulnerable,
                method=DetectionMethod.HEURISTIC,
                probe=probe.binary,
                detail=detail,
            )

        return Verdict(
            vulnerable=self._verdicts.decide(check_name),
            method=DetectionMethod.SIMULATED,
            detail="No corpus match or applicable probe; simulated verdict",
        )

    async def test_named_vulnerability(
        self, check_name: str, target: Optional[str] = None
    ) -> bool:
        verdict = await self.evaluate(check_name, target)
        return verdict.vulnerable

    # ------------------------------------------------------------------ #
    #  Battery
    # ------------------------------------------------------------------ #

    def _finding(self, device: Device, check: VulnerabilityCheck, verdict: Verdict) -> Finding:
        severity = check.severity
        if verdict.matched_entries:
            severity = max(
                (e.severity for e in verdict.matched_entries),
                key=lambda s: s.rank,
                default=check.severity,
            )
        if severity is Severity.NONE:
            severity = check.severity
        return Finding(
            device_id=device.id,
            check_id=check.check_id,
            title=check.name,
            cve_id=check.cve_id,
            description=f"{check.description} {verdict.detail}.".strip(),
            severity=severity if verdict.vulnerable else Severity.NONE,
            method=verdict.method,
            vulnerable=verdict.vulnerable,
            matched_cves=verdict.matched_cves,
            probe=verdict.probe,
        )

    async def assess(self, device: Device) -> list[Finding]:
        """Run the battery against *device*; one finding per check, in
        battery order. A check that crashes yields an inconclusive finding
        and the battery continues."""
        target = probe_target(device.id, self._default_target)
        findings: list[Finding] = []

        for check in self._battery:
            if self._inter_check_delay > 0:
                await asyncio.sleep(self._inter_check_delay)
            try:
                verdict = await self.evaluate(check.name, target)
            except Exception as exc:
                logger.exception("Check %s crashed for %s", check.check_id, device.id)
                verdict = Verdict(
                    vulnerable=False,
                    method=DetectionMethod.INCONCLUSIVE,
                    detail=f"Check failed: {exc}",
                )
            findings.append(self._finding(device, check, verdict))
            logger.debug(
                "%s %s: %s (%s)",
                device.id,
                check.check_id,
                "VULNERABLE" if verdict.vulnerable else "secure",
                verdict.method.value,
            )

        return findings
