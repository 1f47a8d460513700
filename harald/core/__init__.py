"""
Harald Core
============

Domain models, error taxonomy and scan session state. The orchestrator
and engine live in :mod:`harald.core.orchestrator` and
:mod:`harald.core.engine`.
"""

from harald.core.errors import (
    AdapterUnavailableError,
    CorpusQueryError,
    CorpusRefreshError,
    DeviceConnectionError,
    HaraldError,
    ProbeError,
    ProbeTimeoutError,
    ProbeUnavailableError,
)
from harald.core.models import (
    Advertisement,
    Characteristic,
    CVEEntry,
    DetectionMethod,
    Device,
    DeviceClass,
    ExploitResult,
    Finding,
    PowerState,
    RadioVersion,
    Scan,
    ScanMode,
    ScanState,
    Service,
    SessionSnapshot,
)
from harald.core.session import SessionState

__all__ = [
    "AdapterUnavailableError",
    "CorpusQueryError",
    "CorpusRefreshError",
    "DeviceConnectionError",
    "HaraldError",
    "ProbeError",
    "ProbeTimeoutError",
    "ProbeUnavailableError",
    "Advertisement",
    "Characteristic",
    "CVEEntry",
    "DetectionMethod",
    "Device",
    "DeviceClass",
    "ExploitResult",
    "Finding",
    "PowerState",
    "RadioVersion",
    "Scan",
    "ScanMode",
    "ScanState",
    "Service",
    "SessionSnapshot",
    "SessionState",
]
