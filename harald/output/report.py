"""
Harald Report Generator
========================

Writes a JSON report of a scan session: summary counts, devices with
their services and findings, the flat finding list and any exploit
results gathered during the run.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

from shared.logger import HaraldLogger
from shared.models import Severity

from harald.core.models import ExploitResult, SessionSnapshot

logger = HaraldLogger("output.report")


class _HaraldJSONEncoder(json.JSONEncoder):
    """JSON encoder handling Harald model serialization."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, bytes):
            return obj.hex()
        if hasattr(obj, "model_dump"):
            return obj.model_dump()
        if hasattr(obj, "value"):  # Enum
            return obj.value
        return super().default(obj)


class HaraldReportGenerator:
    """Build and write session reports.

    Usage::

        path = HaraldReportGenerator().generate_json(snapshot, "output/scan.json")
    """

    def __init__(self, version: str = "1.0.0") -> None:
        self._version = version

    def build(
        self,
        snapshot: SessionSnapshot,
        exploits: Optional[list[ExploitResult]] = None,
    ) -> dict[str, Any]:
        vulnerable = snapshot.vulnerable_findings
        by_severity = {
            sev.value: sum(1 for f in vulnerable if f.severity is sev)
            for sev in Severity
            if sev is not Severity.NONE
        }
        return {
            "tool": "harald",
            "version": self._version,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "scan": snapshot.scan.model_dump() if snapshot.scan is not None else None,
            "state": snapshot.state.value,
            "status": snapshot.status,
            "summary": {
                "devices": len(snapshot.devices),
                "checks_run": len(snapshot.findings),
                "vulnerable_findings": len(vulnerable),
                "affected_devices": len({f.device_id for f in vulnerable}),
                "by_severity": by_severity,
            },
            "devices": [d.model_dump() for d in snapshot.devices],
            "findings": [f.model_dump() for f in snapshot.findings],
            "exploits": [e.model_dump() for e in exploits or []],
        }

    def generate_json(
        self,
        snapshot: SessionSnapshot,
        output_path: str | Path,
        exploits: Optional[list[ExploitResult]] = None,
    ) -> str:
        """Write the report and return its absolute path."""
        report_data = self.build(snapshot, exploits)

        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(
            json.dumps(report_data, cls=_HaraldJSONEncoder, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

        logger.info("JSON report generated: %s", output)
        return str(output.resolve())
