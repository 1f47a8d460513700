"""
Harald Console Output
======================

Rich tables and panels for discovery results: devices, findings, exploit
results, CVE search hits and the external-tool inventory.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import Optional

from rich.markup import escape

from shared.console import HaraldConsole
from shared.models import Severity

from harald.core.models import CVEEntry, Device, ExploitResult, Finding, SessionSnapshot

_SIGNAL_COLORS: dict[str, str] = {
    "excellent": "bold bright_green",
    "good": "bold green",
    "fair": "bold yellow",
    "poor": "bold red",
}

_METHOD_LABELS: dict[str, str] = {
    "corpus_match": "corpus",
    "heuristic": "probe",
    "simulated": "[dim]simulated[/dim]",
    "inconclusive": "[dim]inconclusive[/dim]",
}


class HaraldConsoleOutput:
    """Render Harald results on a :class:`HaraldConsole`.

    Usage::

        output = HaraldConsoleOutput(console)
        output.display_devices(snapshot.devices)
        output.display_findings(snapshot.findings)
    """

    def __init__(self, console: Optional[HaraldConsole] = None) -> None:
        self._console = console or HaraldConsole()

    def display_devices(self, devices: list[Device]) -> None:
        self._console.section("Discovered Devices")
        if not devices:
            self._console.warning("No devices discovered")
            return

        table = self._console.new_table(f"Devices ({len(devices)})")
        table.add_column("Identifier", style="bright_white", width=19)
        table.add_column("Name", width=22)
        table.add_column("RSSI", justify="center", width=6)
        table.add_column("Class", width=11)
        table.add_column("Version", justify="center", width=7)
        table.add_column("Radio", width=7)
        table.add_column("Company", width=18)
        table.add_column("Services", width=32)
        table.add_column("Risk", justify="center", width=9)

        for device in sorted(devices, key=lambda d: d.rssi, reverse=True):
            name = escape(device.name) if device.name else "[dim italic]<unnamed>[/dim italic]"
            sig_color = _SIGNAL_COLORS.get(device.signal_strength, "")
            rssi_str = f"[{sig_color}]{device.rssi}[/{sig_color}]"

            if device.services:
                svc_list = ", ".join(s.name for s in device.services[:3])
                if len(device.services) > 3:
                    svc_list += f" (+{len(device.services) - 3})"
            else:
                svc_list = "[dim]-[/dim]"

            highest = device.highest_severity
            risk = self._console.severity(highest) if highest is not Severity.NONE else "[dim]-[/dim]"

            table.add_row(
                device.id,
                name,
                rssi_str,
                device.device_class.value,
                device.version.value,
                "classic" if device.is_classic else "LE",
                (device.company or "[dim]-[/dim]")[:18],
                svc_list,
                risk,
            )

        self._console.print(table)
        self._console.blank()

    def display_findings(
        self,
        findings: list[Finding],
        devices: Optional[list[Device]] = None,
        show_secure: bool = False,
    ) -> None:
        """Findings table, most severe first.

        Args:
            findings: Findings to show.
            devices: Used to resolve device names.
            show_secure: Include checks that came back negative.
        """
        self._console.section("Vulnerability Findings")
        names = {d.id: d.display_name for d in devices or []}
        rows = findings if show_secure else [f for f in findings if f.vulnerable]
        if not rows:
            self._console.success("No vulnerabilities demonstrated")
            return

        table = self._console.new_table("Findings")
        table.add_column("#", justify="right", width=4)
        table.add_column("Device", width=22)
        table.add_column("Check", width=40)
        table.add_column("Status", justify="center", width=10)
        table.add_column("Severity", width=10)
        table.add_column("Method", width=12)
        table.add_column("Evidence", ratio=2)

        ordered = sorted(rows, key=lambda f: (-f.severity.rank, f.device_id))
        for idx, finding in enumerate(ordered, 1):
            status = "[harald.error]VULNERABLE[/harald.error]" if finding.vulnerable else "[harald.success]SECURE[/harald.success]"
            evidence = ", ".join(finding.matched_cves[:3]) or finding.probe or "[dim]-[/dim]"
            table.add_row(
                str(idx),
                names.get(finding.device_id, finding.device_id),
                finding.title,
                status,
                self._console.severity(finding.severity),
                _METHOD_LABELS.get(finding.method.value, finding.method.value),
                evidence,
            )

        self._console.print(table)
        self._console.blank()

    def display_summary(self, snapshot: SessionSnapshot) -> None:
        vulnerable = snapshot.vulnerable_findings
        affected = {f.device_id for f in vulnerable}
        mode = snapshot.scan.mode.value if snapshot.scan is not None else "-"
        body = (
            f"[bold]Mode:[/bold] {mode}    "
            f"[bold]State:[/bold] {snapshot.state.value}\n"
            f"[bold]Devices:[/bold] {len(snapshot.devices)}    "
            f"[bold]Checks run:[/bold] {len(snapshot.findings)}    "
            f"[bold]Vulnerable:[/bold] {len(vulnerable)} on {len(affected)} devices\n"
            f"[harald.dim]{snapshot.status}[/harald.dim]"
        )
        self._console.panel(body, "Scan Summary")
        self._console.blank()

    def display_exploit(self, result: ExploitResult) -> None:
        style = "harald.success" if result.success else "harald.warning"
        lines = [
            f"[bold]Exploit:[/bold] {result.exploit_name}",
            f"[bold]Target:[/bold] {result.target}",
            f"[bold]Result:[/bold] [{style}]{'SUCCESS' if result.success else 'FAILED'}[/{style}]"
            f"    [bold]Severity:[/bold] {self._console.severity(result.severity)}"
            f"    [bold]Time:[/bold] {result.execution_time:.2f}s",
            "",
            *(escape(line) for line in result.details),
        ]
        self._console.panel("\n".join(lines), result.vulnerability_id)

    def display_cves(self, entries: list[CVEEntry]) -> None:
        if not entries:
            self._console.warning("No matching CVE entries")
            return
        self._console.table(
            f"CVE Matches ({len(entries)})",
            ["CVE", "Score", "Severity", "Vector", "Description"],
            [
                (
                    e.id,
                    f"{e.base_score:.1f}",
                    e.severity.value,
                    e.attack_vector.value,
                    escape(e.description[:90]),
                )
                for e in entries
            ],
            styles=["bright_white", "", "", "", ""],
        )

    def display_tools(self, tools: dict[str, Optional[str]]) -> None:
        self._console.table(
            "External Probe Tools",
            ["Tool", "Status", "Path"],
            [
                (
                    name,
                    "[green]available[/green]" if path else "[dim]missing[/dim]",
                    path or "-",
                )
                for name, path in tools.items()
            ],
        )
