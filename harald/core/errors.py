"""
Harald Error Taxonomy
======================

Exceptions raised inside the discovery and assessment pipeline.

Only :class:`AdapterUnavailableError` and :class:`CorpusRefreshError`
reach the user. Probe and corpus-query failures are recovered where
they occur and become negative results.
"""

from __future__ import annotations

from harald.core.models import PowerState


class HaraldError(Exception):
    """Base class for all Harald errors."""


class AdapterUnavailableError(HaraldError):
    """The radio adapter cannot scan (powered off, unauthorized, unsupported)."""

    def __init__(self, state: PowerState, message: str | None = None) -> None:
        self.state = state
        super().__init__(message or f"Bluetooth adapter unavailable: {state.value}")


class ProbeError(HaraldError):
    """Base class for external probe failures."""

    def __init__(self, binary: str, message: str) -> None:
        self.binary = binary
        super().__init__(message)


class ProbeUnavailableError(ProbeError):
    """The probe binary could not be resolved or failed to launch."""

    def __init__(self, binary: str, reason: str = "not installed") -> None:
        super().__init__(binary, f"{binary}: {reason}")


class ProbeTimeoutError(ProbeError):
    """The probe did not exit within its timeout and was killed."""

    def __init__(self, binary: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(binary, f"{binary}: timed out after {timeout:.1f}s")


class CorpusQueryError(HaraldError):
    """A keyword search against the CVE corpus failed."""


class CorpusRefreshError(HaraldError):
    """Refreshing the CVE corpus from its upstream source failed."""


class DeviceConnectionError(HaraldError):
    """Connecting to, or enumerating, a specific device failed."""

    def __init__(self, device_id: str, reason: str) -> None:
        self.device_id = device_id
        super().__init__(f"{device_id}: {reason}")
