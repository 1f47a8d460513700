"""
Harald Collectors
==================

Data sources for the discovery pipeline.

Modules:
    adapter       -- Radio adapter contract, Bleak and simulated adapters
    probe_runner  -- External BlueZ tool execution with timeouts
    classic       -- Parsing of classic inquiry tool output
    cve_corpus    -- SQLite / in-memory CVE corpus with NVD refresh
"""

from harald.collectors.adapter import BleakRadioAdapter, RadioAdapter, SimulatedRadioAdapter
from harald.collectors.cve_corpus import CVECorpus, MemoryCVECorpus, SQLiteCVECorpus
from harald.collectors.probe_runner import ProbeResult, ProbeRunner

__all__ = [
    "BleakRadioAdapter",
    "RadioAdapter",
    "SimulatedRadioAdapter",
    "CVECorpus",
    "MemoryCVECorpus",
    "SQLiteCVECorpus",
    "ProbeResult",
    "ProbeRunner",
]
