"""
Tests for the Harald CLI
"""

import json

import pytest
from click.testing import CliRunner

from harald.cli import cli

WIDE = {"COLUMNS": "200"}

FAST_CONFIG = """
[discovery]
passive_ticks = 3
tick_interval = 0.01
enumeration_grace = 0.0
connect_timeout = 1.0
classic_scan_timeout = 1.0

[assessment]
inter_check_delay = 0.0
verdict_probability = 0.0
"""


@pytest.fixture
def fast_config(tmp_path):
    path = tmp_path / "harald.toml"
    path.write_text(FAST_CONFIG)
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


class TestCommands:
    """CLI commands against simulated collaborators"""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "harald" in result.output

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.toml"), "tools"])
        assert result.exit_code == 1

    def test_tools(self, runner):
        result = runner.invoke(cli, ["--simulate", "tools"], env=WIDE)
        assert result.exit_code == 0
        assert "hcitool" in result.output
        assert "missing" in result.output

    def test_check_corpus_match(self, runner):
        result = runner.invoke(cli, ["--simulate", "check", "KNOB Attack Vulnerability"], env=WIDE)
        assert result.exit_code == 0
        assert "VULNERABLE" in result.output
        assert "CVE-2019-9506" in result.output

    def test_check_heuristic_without_tool(self, runner, fast_config):
        result = runner.invoke(
            cli,
            ["--config", fast_config, "--simulate", "check", "BLE-001: Weak Authentication"],
            env=WIDE,
        )
        assert result.exit_code == 0
        assert "SECURE" in result.output
        assert "heuristic" in result.output

    def test_corpus_search(self, runner):
        result = runner.invoke(cli, ["--simulate", "corpus", "search", "blueborne"], env=WIDE)
        assert result.exit_code == 0
        assert "CVE-2017-0781" in result.output

    def test_corpus_search_no_match(self, runner):
        result = runner.invoke(cli, ["--simulate", "corpus", "search", "zigbee"], env=WIDE)
        assert result.exit_code == 0
        assert "No matching CVE entries" in result.output

    def test_corpus_refresh(self, runner):
        result = runner.invoke(cli, ["--simulate", "corpus", "refresh"], env=WIDE)
        assert result.exit_code == 0
        assert "Stored 4 records" in result.output


class TestDiscover:
    def test_discover_writes_report(self, runner, fast_config, tmp_path):
        report = tmp_path / "scan.json"
        result = runner.invoke(
            cli,
            ["--config", fast_config, "--simulate", "discover", "--mode", "active", "-o", str(report)],
            env=WIDE,
        )
        assert result.exit_code == 0, result.output
        data = json.loads(report.read_text())
        assert data["summary"]["devices"] == 10
        assert data["state"] == "complete"
        assert data["scan"]["mode"] == "active"

    def test_discover_with_exploits_records_refusals(self, runner, fast_config, tmp_path):
        report = tmp_path / "scan.json"
        result = runner.invoke(
            cli,
            ["--config", fast_config, "--simulate", "discover", "--exploit", "-o", str(report)],
            env=WIDE,
        )
        assert result.exit_code == 0, result.output
        exploits = json.loads(report.read_text())["exploits"]
        assert exploits
        assert not any(e["success"] for e in exploits)

    def test_quiet(self, runner, fast_config):
        result = runner.invoke(
            cli, ["--config", fast_config, "--quiet", "--simulate", "discover"], env=WIDE
        )
        assert result.exit_code == 0
        assert "Discovered Devices" not in result.output
