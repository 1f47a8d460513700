"""
Harald Analyzers
=================

Modules:
    classifier  -- Device class and radio version heuristics
    probes      -- Heuristic live probes driven by BlueZ tools
    correlator  -- Corpus / probe / simulated vulnerability verdicts
    exploit     -- Guarded exploit routines
"""

from harald.analyzers.classifier import DeviceClassifier
from harald.analyzers.correlator import (
    FixedVerdictSource,
    RandomVerdictSource,
    VerdictSource,
    VulnerabilityCorrelator,
)
from harald.analyzers.exploit import ExploitEngine

__all__ = [
    "DeviceClassifier",
    "FixedVerdictSource",
    "RandomVerdictSource",
    "VerdictSource",
    "VulnerabilityCorrelator",
    "ExploitEngine",
]
