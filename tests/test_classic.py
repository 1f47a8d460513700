"""
Tests for classic inquiry output parsing
"""

from harald.collectors.classic import ClassicSighting, is_hardware_address, parse_inquiry_output

HCITOOL_OUTPUT = """Scanning ...
\t00:1A:7D:DA:71:13\tJBL Flip 5
\t5c:f3:70:8a:bb:01\tn/a
\t00:1A:7D:DA:71:13\tJBL Flip 5
"""


class TestParseInquiryOutput:
    """Test hcitool / btscanner output parsing"""

    def test_hcitool_lines(self):
        sightings = parse_inquiry_output(HCITOOL_OUTPUT.splitlines())
        assert sightings == [
            ClassicSighting("00:1A:7D:DA:71:13", "JBL Flip 5"),
            ClassicSighting("5C:F3:70:8A:BB:01", None),
        ]

    def test_later_line_fills_missing_name(self):
        lines = ["\tAA:BB:CC:DD:EE:FF\t(unknown)", "\tAA:BB:CC:DD:EE:FF\tCar Kit"]
        assert parse_inquiry_output(lines) == [ClassicSighting("AA:BB:CC:DD:EE:FF", "Car Kit")]

    def test_free_form_line(self):
        lines = ["Found device 11:22:33:44:55:66 - Logitech Mouse"]
        assert parse_inquiry_output(lines) == [ClassicSighting("11:22:33:44:55:66", "Logitech Mouse")]

    def test_noise_is_ignored(self):
        lines = ["Scanning ...", "", "Inquiry failed: Connection timed out", "12:34"]
        assert parse_inquiry_output(lines) == []


class TestHardwareAddress:
    def test_valid(self):
        assert is_hardware_address("00:1a:7d:da:71:13")

    def test_platform_uuid_is_not_an_address(self):
        assert not is_hardware_address("6F1C2E4A-9B0D-4E8F-A1B2-C3D4E5F60718")
        assert not is_hardware_address("00:1A:7D:DA:71")
