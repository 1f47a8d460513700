"""
Tests for Harald domain models and lookup helpers
"""

import pytest
from pydantic import ValidationError

from shared.models import Severity

from harald.core.models import (
    CVEEntry,
    Characteristic,
    Device,
    DeviceClass,
    ExploitResult,
    Finding,
    Service,
    normalize_uuid,
    service_name,
)


class TestServiceNames:
    """Test the static UUID -> name table"""

    def test_known_service(self):
        assert service_name("180F") == "Battery Service"
        assert service_name("1812") == "Human Interface Device"

    def test_unknown_service_renders_uuid(self):
        assert service_name("FFFF") == "Unknown Service (FFFF)"

    def test_base_uuid_is_shortened(self):
        assert normalize_uuid("0000180f-0000-1000-8000-00805f9b34fb") == "180F"
        assert service_name("0000180a-0000-1000-8000-00805f9b34fb") == "Device Information"

    def test_vendor_uuid_kept_whole(self):
        uuid = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
        assert normalize_uuid(uuid) == uuid.upper()

    def test_hex_prefix_stripped(self):
        assert normalize_uuid("0x180d") == "180D"


class TestService:
    """Test Service.from_uuid security flag"""

    def test_unknown_service_in_device_list(self):
        svc = Service.from_uuid("ffff")
        assert svc.uuid == "FFFF"
        assert svc.name == "Unknown Service (FFFF)"

    def test_no_characteristics_is_not_secure(self):
        assert Service.from_uuid("180F").is_secure is False

    def test_all_protected_is_secure(self):
        chars = [
            Characteristic(uuid="2A4D", properties=["read", "encrypt-read"]),
            Characteristic(uuid="2A4B", properties=["authenticated-signed-writes", "write"]),
        ]
        assert Service.from_uuid("1812", chars).is_secure is True

    def test_one_open_characteristic_is_not_secure(self):
        chars = [
            Characteristic(uuid="2A4D", properties=["encrypt-read"]),
            Characteristic(uuid="FFF1", properties=["read", "write"]),
        ]
        assert Service.from_uuid("FFF0", chars).is_secure is False


class TestDevice:
    """Test derived Device properties"""

    @pytest.mark.parametrize(
        "rssi,band",
        [(-20, "excellent"), (-45, "good"), (-60, "fair"), (-90, "poor")],
    )
    def test_signal_strength(self, rssi, band):
        assert Device(id="x", rssi=rssi).signal_strength == band

    def test_company_lookup(self):
        device = Device(id="x", manufacturer_data=bytes.fromhex("4c001005"))
        assert device.company == "Apple"
        assert Device(id="y", manufacturer_data=b"\x34\x12").company == "Unknown (0x1234)"

    def test_highest_severity_ignores_secure_findings(self):
        device = Device(id="x")
        device.findings = [
            Finding(device_id="x", check_id="A", title="A", severity=Severity.CRITICAL, vulnerable=False),
            Finding(device_id="x", check_id="B", title="B", severity=Severity.MEDIUM, vulnerable=True),
        ]
        assert device.highest_severity is Severity.MEDIUM

    def test_manufacturer_data_serialised_as_hex(self):
        dumped = Device(id="x", manufacturer_data=b"\x4c\x00").model_dump()
        assert dumped["manufacturer_data"] == "4c00"

    def test_risk_level(self):
        assert DeviceClass.MEDICAL.risk_level is Severity.HIGH
        assert DeviceClass.AUDIO.risk_level is Severity.LOW


class TestFrozenRecords:
    """Findings, CVE entries and exploit results are immutable"""

    def test_finding_is_frozen(self):
        finding = Finding(device_id="x", check_id="A", title="A")
        with pytest.raises(ValidationError):
            finding.vulnerable = True

    def test_cve_matches_case_insensitive(self):
        entry = CVEEntry(
            id="CVE-2019-9506",
            description="KNOB attack - Key Negotiation of Bluetooth",
            affected_products=["All Bluetooth BR/EDR devices"],
        )
        assert entry.matches("knob attack")
        assert entry.matches("cve-2019-9506")
        assert entry.matches("br/edr")
        assert not entry.matches("bluefrag")


class TestExploitGrade:
    """Test exploit impact grading"""

    def test_grades(self):
        assert ExploitResult.grade(True, shell_access=True, persistent=True) is Severity.CRITICAL
        assert ExploitResult.grade(True, shell_access=True) is Severity.HIGH
        assert ExploitResult.grade(True, captured_data=True) is Severity.MEDIUM
        assert ExploitResult.grade(True) is Severity.LOW
        assert ExploitResult.grade(False) is Severity.NONE

    def test_results_are_independent(self):
        a = ExploitResult(success=False, vulnerability_id="X", exploit_name="x")
        b = ExploitResult(success=False, vulnerability_id="X", exploit_name="x")
        assert a.id != b.id
