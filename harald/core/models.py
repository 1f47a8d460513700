"""
Harald Core Data Models
========================

Pydantic domain models for the discovery, classification and assessment
pipeline: advertisements, devices, services, findings, CVE entries and
exploit results, plus the static lookup tables the classifier and the
report layer rely on.

Value records (:class:`Advertisement`, :class:`Finding`,
:class:`CVEEntry`, :class:`ExploitResult`) are frozen once built.
:class:`Device` stays mutable; it is refined in place as enumeration and
assessment complete.

References:
    - Bluetooth SIG. (2023). Assigned Numbers Document.
      https://www.bluetooth.com/specifications/assigned-numbers/
    - FIRST. (2019). CVSS v3.1 Specification Document.
    - Pydantic v2 Documentation. https://docs.pydantic.dev/latest/
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from shared.models import Severity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DeviceClass(str, enum.Enum):
    """Coarse device category assigned by the classifier."""

    PHONE = "phone"
    COMPUTER = "computer"
    AUDIO = "audio"
    KEYBOARD = "keyboard"
    MOUSE = "mouse"
    WEARABLE = "wearable"
    AUTOMOTIVE = "automotive"
    MEDICAL = "medical"
    IOT = "iot"
    INDUSTRIAL = "industrial"
    UNKNOWN = "unknown"

    @property
    def risk_level(self) -> Severity:
        """Inherent exposure of the category, independent of findings."""
        if self in (DeviceClass.MEDICAL, DeviceClass.AUTOMOTIVE, DeviceClass.INDUSTRIAL):
            return Severity.HIGH
        if self in (DeviceClass.IOT, DeviceClass.WEARABLE, DeviceClass.PHONE, DeviceClass.COMPUTER):
            return Severity.MEDIUM
        return Severity.LOW


class RadioVersion(str, enum.Enum):
    """Bluetooth core version.

    The classifier only ever produces ``2.1`` (classic), ``4.0`` and
    ``5.0``; the remaining members exist for devices whose version is
    known from other sources.
    """

    V1_0 = "1.0"
    V1_1 = "1.1"
    V1_2 = "1.2"
    V2_0 = "2.0"
    V2_1 = "2.1"
    V3_0 = "3.0"
    V4_0 = "4.0"
    V4_1 = "4.1"
    V4_2 = "4.2"
    V5_0 = "5.0"
    V5_1 = "5.1"
    V5_2 = "5.2"
    V5_3 = "5.3"
    UNKNOWN = "unknown"


class ScanMode(str, enum.Enum):
    """Discovery depth. Each mode includes every stage of the previous one."""

    PASSIVE = "passive"
    ACTIVE = "active"
    AGGRESSIVE = "aggressive"

    @property
    def nominal_duration(self) -> int:
        """Rough wall-clock budget in seconds, for display."""
        return {"passive": 30, "active": 60, "aggressive": 120}[self.value]


class ScanState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class DetectionMethod(str, enum.Enum):
    """How a finding's verdict was reached."""

    CORPUS_MATCH = "corpus_match"
    HEURISTIC = "heuristic"
    SIMULATED = "simulated"
    INCONCLUSIVE = "inconclusive"


class PowerState(str, enum.Enum):
    """Radio adapter power / permission state."""

    POWERED_ON = "powered_on"
    POWERED_OFF = "powered_off"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"
    UNAVAILABLE = "unavailable"


class Exploitability(str, enum.Enum):
    """CVSS temporal Exploit Code Maturity."""

    UNPROVEN = "UNPROVEN"
    PROOF_OF_CONCEPT = "PROOF_OF_CONCEPT"
    FUNCTIONAL = "FUNCTIONAL"
    HIGH = "HIGH"
    NOT_DEFINED = "NOT_DEFINED"


class AttackVector(str, enum.Enum):
    NETWORK = "NETWORK"
    ADJACENT_NETWORK = "ADJACENT_NETWORK"
    LOCAL = "LOCAL"
    PHYSICAL = "PHYSICAL"


# ---------------------------------------------------------------------------
# Static lookup tables
# ---------------------------------------------------------------------------

BLUETOOTH_BASE_SUFFIX = "-0000-1000-8000-00805F9B34FB"

SERVICE_NAMES: dict[str, str] = {
    "180F": "Battery Service",
    "1800": "Generic Access",
    "1801": "Generic Attribute",
    "180A": "Device Information",
    "1812": "Human Interface Device",
    "110A": "Audio Source",
    "110B": "Audio Sink",
    "1108": "Headset",
    "111E": "Handsfree",
    "1200": "PnP Information",
    "181C": "User Data",
    "181D": "Weight Scale",
    "1816": "Cycling Speed and Cadence",
    "1818": "Cycling Power",
}

# Checked in order; the first vendor code that matches decides.
MANUFACTURER_CLASSES: dict[int, DeviceClass] = {
    0x004C: DeviceClass.PHONE,       # Apple
    0x0075: DeviceClass.PHONE,       # Samsung
    0x000F: DeviceClass.COMPUTER,    # Broadcom
    0x0087: DeviceClass.AUTOMOTIVE,  # Garmin
    0x007D: DeviceClass.WEARABLE,    # Fitbit
    0x0059: DeviceClass.MEDICAL,     # Nordic Semiconductor
}

SERVICE_CLASSES: tuple[tuple[str, DeviceClass], ...] = (
    ("1812", DeviceClass.KEYBOARD),
    ("180F", DeviceClass.WEARABLE),
    ("181C", DeviceClass.MEDICAL),
    ("110A", DeviceClass.AUDIO),
    ("110B", DeviceClass.AUDIO),
)

NAME_KEYWORD_GROUPS: tuple[tuple[tuple[str, ...], DeviceClass], ...] = (
    (("iphone", "android", "samsung"), DeviceClass.PHONE),
    (("airpods", "headset", "headphone"), DeviceClass.AUDIO),
    (("speaker", "soundbox"), DeviceClass.AUDIO),
    (("keyboard",), DeviceClass.KEYBOARD),
    (("mouse",), DeviceClass.MOUSE),
    (("watch", "band"), DeviceClass.WEARABLE),
    (("fitbit", "tracker", "heart"), DeviceClass.WEARABLE),
    (("lock", "door"), DeviceClass.IOT),
    (("light", "bulb", "lamp"), DeviceClass.IOT),
    (("medical", "glucose", "pressure"), DeviceClass.MEDICAL),
    (("car", "auto", "vehicle"), DeviceClass.AUTOMOTIVE),
    (("industrial", "sensor"), DeviceClass.INDUSTRIAL),
)

COMPANY_NAMES: dict[int, str] = {
    0x0006: "Microsoft",
    0x000F: "Broadcom",
    0x004C: "Apple",
    0x0059: "Nordic Semiconductor",
    0x0075: "Samsung Electronics",
    0x007D: "Fitbit",
    0x0087: "Garmin International",
    0x00E0: "Google",
    0x010F: "Xiaomi",
    0x0171: "Amazon.com Services",
    0x02FF: "Sonos",
    0x038F: "Bose Corporation",
    0x0499: "Ruuvi Innovations",
}


def normalize_uuid(uuid: str) -> str:
    """Upper-case a service UUID, shortening Bluetooth Base UUIDs
    (``0000xxxx-0000-1000-8000-00805F9B34FB``) to their 16-bit form."""
    value = uuid.strip().upper()
    if value.startswith("0X"):
        value = value[2:]
    if len(value) == 36 and value.endswith(BLUETOOTH_BASE_SUFFIX) and value.startswith("0000"):
        return value[4:8]
    return value


def service_name(uuid: str) -> str:
    """Human-readable service name, or ``Unknown Service (<uuid>)``."""
    short = normalize_uuid(uuid)
    return SERVICE_NAMES.get(short, f"Unknown Service ({short})")


# ---------------------------------------------------------------------------
# Advertisement
# ---------------------------------------------------------------------------


class Advertisement(BaseModel):
    """One advertisement observed by the radio adapter.

    ``service_uuids`` and ``tx_power`` are ``None`` when the field was
    absent from the packet; the version estimate depends on the
    difference between absent and empty.

    Attributes:
        id: Adapter-scoped device identifier (MAC or platform UUID).
        name: Local name from the advertisement or the adapter cache.
        rssi: Received signal strength in dBm.
        service_uuids: Advertised service UUIDs.
        manufacturer_data: Manufacturer payload; first two bytes are the
            little-endian company identifier.
        tx_power: Advertised TX power level in dBm.
        connectable: Whether the device accepts connections.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    rssi: int = -100
    service_uuids: Optional[list[str]] = None
    manufacturer_data: Optional[bytes] = None
    tx_power: Optional[int] = None
    connectable: Optional[bool] = None

    @property
    def manufacturer_id(self) -> Optional[int]:
        if not self.manufacturer_data or len(self.manufacturer_data) < 2:
            return None
        return int.from_bytes(self.manufacturer_data[:2], byteorder="little")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


class Characteristic(BaseModel):
    """A GATT characteristic and its BlueZ-style property flags."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    properties: list[str] = Field(default_factory=list)

    @property
    def readable(self) -> bool:
        return any("read" in p for p in self.properties)

    @property
    def writable(self) -> bool:
        return any("write" in p for p in self.properties)

    @property
    def protected(self) -> bool:
        """True when access requires encryption or authentication."""
        return any(
            p.startswith("encrypt") or p.startswith("authenticated")
            for p in self.properties
        )


class Service(BaseModel):
    """An advertised or enumerated service."""

    uuid: str
    name: str
    description: str = "BLE service"
    is_secure: bool = False
    characteristics: list[Characteristic] = Field(default_factory=list)

    @classmethod
    def from_uuid(
        cls,
        uuid: str,
        characteristics: Optional[list[Characteristic]] = None,
    ) -> Service:
        """Build a service record, resolving its name from the static table.

        A service is considered secure when it exposes at least one
        readable or writable characteristic and every such characteristic
        is protected by encryption or authentication.
        """
        chars = list(characteristics or [])
        accessible = [c for c in chars if c.readable or c.writable]
        return cls(
            uuid=normalize_uuid(uuid),
            name=service_name(uuid),
            is_secure=bool(accessible) and all(c.protected for c in accessible),
            characteristics=chars,
        )


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """Outcome of one vulnerability check against one device.

    ``device_id`` is a back-reference; the device owns its list of
    findings and the session keeps a flat copy for reporting.

    Attributes:
        id: Unique finding identifier.
        device_id: Identifier of the assessed device.
        check_id: Battery identifier (``CVE-2019-9506``, ``BLE-001`` ...).
        title: Check name as presented to the user.
        cve_id: CVE identifier when the check maps to one.
        description: What was tested and what was observed.
        severity: Severity if vulnerable, ``NONE`` otherwise.
        method: How the verdict was reached.
        vulnerable: Verdict.
        matched_cves: Corpus entries that matched the check keywords.
        probe: External tool used for a heuristic verdict.
        timestamp: When the check completed.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    device_id: str
    check_id: str
    title: str
    cve_id: Optional[str] = None
    description: str = ""
    severity: Severity = Severity.NONE
    method: DetectionMethod = DetectionMethod.INCONCLUSIVE
    vulnerable: bool = False
    matched_cves: list[str] = Field(default_factory=list)
    probe: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Device
# ---------------------------------------------------------------------------


class Device(BaseModel):
    """A device discovered during the current scan session.

    Attributes:
        id: Identifier, unique within a session.
        name: Display name, if any was advertised.
        rssi: Last observed signal strength in dBm.
        discovered_at: First sighting in this session.
        device_class: Classifier verdict.
        version: Estimated Bluetooth version tier.
        services: Advertised, then enumerated, services.
        connectable: Whether the device accepts connections.
        manufacturer_data: Raw manufacturer payload.
        tx_power: Advertised TX power in dBm.
        is_classic: Discovered over BR/EDR inquiry rather than LE.
        findings: Results of the latest assessment pass.
    """

    id: str
    name: Optional[str] = None
    rssi: int = -100
    discovered_at: datetime = Field(default_factory=_utcnow)
    device_class: DeviceClass = DeviceClass.UNKNOWN
    version: RadioVersion = RadioVersion.UNKNOWN
    services: list[Service] = Field(default_factory=list)
    connectable: bool = False
    manufacturer_data: Optional[bytes] = None
    tx_power: Optional[int] = None
    is_classic: bool = False
    findings: list[Finding] = Field(default_factory=list)

    @field_serializer("manufacturer_data")
    def _hex_payload(self, value: Optional[bytes]) -> Optional[str]:
        return value.hex() if value is not None else None

    @property
    def display_name(self) -> str:
        return self.name or "Unknown Device"

    @property
    def company(self) -> Optional[str]:
        if not self.manufacturer_data or len(self.manufacturer_data) < 2:
            return None
        company_id = int.from_bytes(self.manufacturer_data[:2], byteorder="little")
        return COMPANY_NAMES.get(company_id, f"Unknown (0x{company_id:04X})")

    @property
    def signal_strength(self) -> str:
        if self.rssi > -30:
            return "excellent"
        if self.rssi > -50:
            return "good"
        if self.rssi > -70:
            return "fair"
        return "poor"

    @property
    def vulnerable_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.vulnerable]

    @property
    def highest_severity(self) -> Severity:
        return max(
            (f.severity for f in self.vulnerable_findings),
            key=lambda s: s.rank,
            default=Severity.NONE,
        )


# ---------------------------------------------------------------------------
# CVE entries
# ---------------------------------------------------------------------------


class CVEEntry(BaseModel):
    """A CVE record as returned by the corpus.

    Reference:
        NIST. (2023). NVD CVE API 2.0 Response Schema.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    severity: Severity = Severity.NONE
    published: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    references: list[str] = Field(default_factory=list)
    affected_products: list[str] = Field(default_factory=list)
    exploitability: Exploitability = Exploitability.NOT_DEFINED
    attack_vector: AttackVector = AttackVector.ADJACENT_NETWORK
    attack_complexity: str = "LOW"
    privileges_required: str = "NONE"
    user_interaction: str = "NONE"
    scope: str = "UNCHANGED"
    confidentiality_impact: str = "NONE"
    integrity_impact: str = "NONE"
    availability_impact: str = "NONE"
    base_score: float = Field(default=0.0, ge=0.0, le=10.0)
    exploit_code: Optional[str] = None
    proof_of_concept: Optional[str] = None

    def matches(self, keyword: str) -> bool:
        """Case-insensitive substring match over id, description and
        affected products."""
        needle = keyword.lower()
        return (
            needle in self.id.lower()
            or needle in self.description.lower()
            or needle in " ".join(self.affected_products).lower()
        )


# ---------------------------------------------------------------------------
# Exploit results
# ---------------------------------------------------------------------------


class ExploitResult(BaseModel):
    """Outcome of a single exploit attempt. One record per attempt.

    Attributes:
        id: Unique attempt identifier.
        success: Whether the exploit demonstrated the weakness.
        vulnerability_id: Check / CVE identifier the attempt targeted.
        exploit_name: Human-readable exploit name.
        target: Device identifier the attempt was aimed at.
        timestamp: Completion time.
        details: Captured output and explanatory lines.
        severity: Impact grade (see :meth:`grade`).
        execution_time: Wall-clock seconds spent.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    success: bool
    vulnerability_id: str
    exploit_name: str
    target: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    details: list[str] = Field(default_factory=list)
    severity: Severity = Severity.NONE
    execution_time: float = 0.0

    @staticmethod
    def grade(
        success: bool,
        captured_data: bool = False,
        shell_access: bool = False,
        persistent: bool = False,
    ) -> Severity:
        """Impact grade: persistent shell > shell > data capture > success."""
        if persistent and shell_access:
            return Severity.CRITICAL
        if shell_access:
            return Severity.HIGH
        if success and captured_data:
            return Severity.MEDIUM
        if success:
            return Severity.LOW
        return Severity.NONE


# ---------------------------------------------------------------------------
# Scan / session snapshot
# ---------------------------------------------------------------------------


class Scan(BaseModel):
    """The current discovery run."""

    mode: ScanMode
    started_at: datetime = Field(default_factory=_utcnow)
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    active: bool = True


class SessionSnapshot(BaseModel):
    """Read-only copy of the session state handed to presentation code."""

    generation: int
    state: ScanState
    scan: Optional[Scan] = None
    status: str = ""
    devices: list[Device] = Field(default_factory=list)
    findings: list[Finding] = Field(default_factory=list)

    @property
    def progress(self) -> float:
        return self.scan.progress if self.scan is not None else 0.0

    @property
    def vulnerable_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.vulnerable]
