"""
Harald Shared Models
=====================

Severity scale shared by findings, CVE entries and exploit results.

Aligned with the CVSS v3.1 qualitative severity rating scale, extended
with ``INFO`` for observations that carry no direct risk.

References:
    - FIRST. (2019). Common Vulnerability Scoring System v3.1.
      https://www.first.org/cvss/v3.1/specification-document
"""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    """Qualitative severity level.

    Attributes:
        CRITICAL: Immediate exploitation likely; catastrophic impact.
        HIGH:     Serious vulnerability; significant impact.
        MEDIUM:   Moderate risk; limited impact without chaining.
        LOW:      Minor issue; minimal direct impact.
        INFO:     Informational observation; no direct risk.
        NONE:     Nothing demonstrated.
    """

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"
    NONE = "NONE"

    @property
    def rank(self) -> int:
        """Sort key; higher is more severe."""
        return _RANK[self.value]

    @property
    def style(self) -> str:
        """Console theme style name for this level."""
        if self is Severity.INFO:
            return "harald.info"
        return f"harald.{self.value.lower()}"

    @classmethod
    def from_cvss(cls, score: float) -> Severity:
        """Map a CVSS v3 base score to its qualitative rating.

        - 9.0-10.0 : CRITICAL
        - 7.0-8.9  : HIGH
        - 4.0-6.9  : MEDIUM
        - 0.1-3.9  : LOW
        - 0.0      : NONE
        """
        if score >= 9.0:
            return cls.CRITICAL
        if score >= 7.0:
            return cls.HIGH
        if score >= 4.0:
            return cls.MEDIUM
        if score > 0.0:
            return cls.LOW
        return cls.NONE

    @classmethod
    def parse(cls, value: str | None, default: Severity | None = None) -> Severity:
        """Case-insensitive lookup; unknown values map to *default*
        (``NONE`` when not given)."""
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            return default if default is not None else cls.NONE


_RANK: dict[str, int] = {
    "CRITICAL": 5,
    "HIGH": 4,
    "MEDIUM": 3,
    "LOW": 2,
    "INFO": 1,
    "NONE": 0,
}
