"""
Harald -- Bluetooth Discovery & Vulnerability Assessment
=========================================================

Harald discovers nearby Bluetooth LE and Classic devices, classifies
them, correlates them against a CVE corpus and heuristic tool probes,
and can exercise guarded exploit routines against a confirmed finding.

Modules:
    core.models        -- Pydantic domain models and static lookup tables
    core.session       -- Single-writer scan session state
    core.orchestrator  -- Passive / active / aggressive discovery stages
    core.engine        -- Facade exposing the user-facing operations
    collectors         -- Radio adapters, probe runner, CVE corpus
    analyzers          -- Classifier, vulnerability correlator, exploits
    output             -- Console and report output
    cli                -- Click-based command-line interface

References:
    - Bluetooth SIG. (2023). Bluetooth Core Specification v5.4.
    - Armis Labs. (2017). BlueBorne: The Attack Vector.
    - Antonioli, D., Tippenhauer, N. O., & Rasmussen, K. (2019). The KNOB
      is Broken: Exploiting Low Entropy in the Encryption Key Negotiation
      of Bluetooth BR/EDR. USENIX Security '19.
"""

__version__ = "1.0.0"
__tool__ = "Harald"
__description__ = "Bluetooth Discovery & Vulnerability Assessment"
