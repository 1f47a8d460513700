"""
Harald Configuration Management
================================

Centralized configuration for the Harald Bluetooth assessment toolkit
using Python dataclasses and TOML-based persistence.

Every section maps to one ``[table]`` in ``harald.toml``; keys that are
missing fall back to the dataclass defaults and unknown keys are ignored.

References:
    - Wiggins, A. (2011). The Twelve-Factor App. https://12factor.net/
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[no-redef]


# ---------------------------------------------------------------------------
# Default configuration file path relative to the project root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "harald.toml"


# ========================== Section Configs ================================


@dataclass(frozen=False, slots=True)
class DiscoveryConfig:
    """Discovery stage timings for the scan orchestrator.

    The passive window is ``passive_ticks * tick_interval`` seconds and
    advances progress once per tick.
    """

    passive_ticks: int = 30
    tick_interval: float = 1.0
    hci_device: str = "hci0"
    classic_scan_length: int = 8
    classic_scan_timeout: float = 15.0
    connect_timeout: float = 10.0
    enumeration_grace: float = 2.0


@dataclass(frozen=False, slots=True)
class ProbeConfig:
    """External diagnostic tool invocation settings."""

    timeout: float = 3.0
    search_paths: list[str] = field(
        default_factory=lambda: [
            "/usr/bin",
            "/usr/local/bin",
            "/opt/homebrew/bin",
            "/usr/sbin",
        ]
    )
    default_target: str = "00:00:00:00:00:00"


@dataclass(frozen=False, slots=True)
class AssessmentConfig:
    """Vulnerability battery pacing and placeholder verdict settings."""

    inter_check_delay: float = 1.0
    verdict_probability: float = 0.3


@dataclass(frozen=False, slots=True)
class CorpusConfig:
    """CVE corpus location and NVD refresh parameters.

    Reference:
        NIST. (2023). NVD CVE API 2.0.
        https://services.nvd.nist.gov/rest/json/cves/2.0
    """

    db_path: str = "harald_cves.db"
    seed_builtin: bool = True
    nvd_base_url: str = "https://services.nvd.nist.gov/rest/json/cves/2.0"
    nvd_api_key: str = ""
    refresh_keyword: str = "bluetooth"
    page_size: int = 100
    request_timeout: float = 30.0


@dataclass(frozen=False, slots=True)
class ExploitConfig:
    """Exploit engine guard rails.

    Live attempts stay disabled unless ``allow_live`` is set explicitly.
    """

    allow_live: bool = False
    timeout: float = 10.0


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Global settings: logging verbosity, output directory, debug mode."""

    log_level: str = "INFO"
    log_file: str = ""
    log_json: bool = False
    output_dir: str = "output"
    debug: bool = False
    version: str = "1.0.0"


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class HaraldConfig:
    """Master configuration aggregating every section.

    Usage:
        >>> config = HaraldConfig.load()                  # from default path
        >>> config = HaraldConfig.load("custom.toml")     # from custom path
        >>> print(config.discovery.hci_device)
        'hci0'
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    probes: ProbeConfig = field(default_factory=ProbeConfig)
    assessment: AssessmentConfig = field(default_factory=AssessmentConfig)
    corpus: CorpusConfig = field(default_factory=CorpusConfig)
    exploits: ExploitConfig = field(default_factory=ExploitConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> HaraldConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``harald.toml`` in the
        project root.  Missing keys gracefully fall back to dataclass
        defaults -- no ``KeyError`` is raised.

        Args:
            path: Filesystem path to a TOML configuration file.

        Returns:
            A fully-populated :class:`HaraldConfig` instance.

        Raises:
            FileNotFoundError: If the specified path does not exist
                *and* was explicitly provided by the caller.
        """
        config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            if path is not None:
                raise FileNotFoundError(
                    f"Configuration file not found: {config_path}"
                )
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            discovery=cls._build_section(DiscoveryConfig, raw.get("discovery", {})),
            probes=cls._build_section(ProbeConfig, raw.get("probes", {})),
            assessment=cls._build_section(AssessmentConfig, raw.get("assessment", {})),
            corpus=cls._build_section(CorpusConfig, raw.get("corpus", {})),
            exploits=cls._build_section(ExploitConfig, raw.get("exploits", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares."""
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> HaraldConfig:
    """Module-level convenience wrapper around :meth:`HaraldConfig.load`.

    Caches the result so that repeated imports share one instance.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = HaraldConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
