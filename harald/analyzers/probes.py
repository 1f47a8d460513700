"""
Heuristic Vulnerability Probes
===============================

Live probes used when the CVE corpus has nothing on a check. Each probe
drives one external BlueZ tool against the target address and maps the
tool's exit status to a verdict. The direction of the mapping is
probe-specific:

    ===============  ===============================  ====================
    Keyword          Command                          Vulnerable when
    ===============  ===============================  ====================
    l2ping           ``l2ping -c 3 -t 1 <addr>``      exit status != 0
    sdp              ``sdptool browse <addr>``        exit status == 0
    rfcomm           ``rfcomm -i <hci> scan``         exit status == 0
    authentication   ``hcitool cc <addr>``            exit status == 0
    ===============  ===============================  ====================

A probe whose tool is missing, fails to launch or times out never runs
to completion and yields ``False``.

References:
    - BlueZ. l2ping(1), sdptool(1), rfcomm(1), hcitool(1).
    - Seri, B. & Vishnepolsky, G. (2017). BlueBorne. Armis Labs.
"""

from __future__ import annotations

from typing import Optional

from harald.collectors.probe_runner import ProbeResult, ProbeRunner


class HeuristicProbe:
    """Base class: subclasses set the trigger keyword and binary and
    implement :meth:`build_args` and :meth:`interpret`."""

    keyword: str = ""
    binary: str = ""

    def __init__(self, hci_device: str = "hci0") -> None:
        self._hci_device = hci_device

    def applies_to(self, check_name: str) -> bool:
        return self.keyword in check_name.lower()

    def build_args(self, target: str) -> list[str]:
        raise NotImplementedError

    def interpret(self, result: ProbeResult) -> bool:
        raise NotImplementedError

    async def run(
        self,
        runner: ProbeRunner,
        target: str,
        timeout: Optional[float] = None,
    ) -> tuple[bool, ProbeResult]:
        result = await runner.run(self.binary, self.build_args(target), timeout)
        if not result.completed:
            return False, result
        return self.interpret(result), result

    def describe(self, target: str) -> str:
        return " ".join([self.binary, *self.build_args(target)])


class L2PingProbe(HeuristicProbe):
    """Echo over L2CAP. A device that stops answering after the echo
    burst is treated as fragile (the BlueBorne-era crash signature)."""

    keyword = "l2ping"
    binary = "l2ping"

    def build_args(self, target: str) -> list[str]:
        return ["-c", "3", "-t", "1", target]

    def interpret(self, result: ProbeResult) -> bool:
        return result.exit_code != 0


class SDPBrowseProbe(HeuristicProbe):
    """Service records readable without pairing."""

    keyword = "sdp"
    binary = "sdptool"

    def build_args(self, target: str) -> list[str]:
        return ["browse", target]

    def interpret(self, result: ProbeResult) -> bool:
        return result.exit_code == 0


class RFCOMMScanProbe(HeuristicProbe):
    keyword = "rfcomm"
    binary = "rfcomm"

    def build_args(self, target: str) -> list[str]:
        return ["-i", self._hci_device, "scan"]

    def interpret(self, result: ProbeResult) -> bool:
        return result.exit_code == 0


class AuthenticationBypassProbe(HeuristicProbe):
    """Open a baseband connection without requesting authentication.
    Acceptance means the device does not enforce link-level auth."""

    keyword = "authentication"
    binary = "hcitool"

    def build_args(self, target: str) -> list[str]:
        return ["-i", self._hci_device, "cc", target]

    def interpret(self, result: ProbeResult) -> bool:
        return result.exit_code == 0


# Checked in order; the first probe whose keyword occurs in the check name
# is used.
PROBE_TYPES: tuple[type[HeuristicProbe], ...] = (
    L2PingProbe,
    SDPBrowseProbe,
    RFCOMMScanProbe,
    AuthenticationBypassProbe,
)


def select_probe(check_name: str, hci_device: str = "hci0") -> Optional[HeuristicProbe]:
    """Return the heuristic probe for *check_name*, or ``None``."""
    for probe_cls in PROBE_TYPES:
        probe = probe_cls(hci_device)
        if probe.applies_to(check_name):
            return probe
    return None
