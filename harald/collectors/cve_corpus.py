"""
CVE Corpus
===========

Keyword-searchable store of Bluetooth CVE records.

:class:`SQLiteCVECorpus` keeps records in a local SQLite database seeded
with a small built-in set of well-known Bluetooth CVEs, and refreshes it
from the NVD CVE API 2.0 (``keywordSearch``, paged with ``startIndex``).
:class:`MemoryCVECorpus` holds records in a list and is used by tests and
simulated runs.

Search is a case-insensitive substring match over the CVE identifier,
description and affected products.

References:
    - NIST. (2023). NVD CVE API 2.0.
      https://nvd.nist.gov/developers/vulnerabilities
    - SQLite. Write-Ahead Logging. https://www.sqlite.org/wal.html
"""

from __future__ import annotations

import abc
import asyncio
import json
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from shared.logger import HaraldLogger
from shared.models import Severity
from shared.network import HaraldHTTP, HaraldHTTPError

from harald.core.errors import CorpusQueryError, CorpusRefreshError
from harald.core.models import AttackVector, CVEEntry, Exploitability

logger = HaraldLogger("collectors.cve_corpus")

NVD_API_BASE = "https://services.nvd.nist.gov/rest/json/cves/2.0"


def _days_ago(days: int) -> datetime:
    return datetime.fromtimestamp(time.time() - 86400 * days, tz=timezone.utc)


def builtin_cves() -> list[CVEEntry]:
    """Seed records available before the first refresh."""
    return [
        CVEEntry(
            id="CVE-2024-21306",
            description="Buffer overflow in Bluetooth Low Energy stack allowing remote code execution",
            severity=Severity.CRITICAL,
            published=_days_ago(30),
            last_modified=_days_ago(7),
            references=["https://nvd.nist.gov/vuln/detail/CVE-2024-21306"],
            affected_products=["Android BLE Stack", "iOS Core Bluetooth"],
            exploitability=Exploitability.FUNCTIONAL,
            attack_vector=AttackVector.ADJACENT_NETWORK,
            scope="CHANGED",
            confidentiality_impact="HIGH",
            integrity_impact="HIGH",
            availability_impact="HIGH",
            base_score=9.8,
            exploit_code="ble_stack_overflow_2024.py",
            proof_of_concept="Confirmed exploitation against Android 14",
        ),
        CVEEntry(
            id="CVE-2023-45866",
            description="BlueZ privilege escalation vulnerability in D-Bus interface",
            severity=Severity.HIGH,
            published=_days_ago(60),
            last_modified=_days_ago(14),
            references=["https://nvd.nist.gov/vuln/detail/CVE-2023-45866"],
            affected_products=["BlueZ 5.66", "Ubuntu Linux", "Debian"],
            exploitability=Exploitability.FUNCTIONAL,
            attack_vector=AttackVector.LOCAL,
            privileges_required="LOW",
            scope="CHANGED",
            confidentiality_impact="HIGH",
            integrity_impact="HIGH",
            base_score=8.2,
            exploit_code="bluez_privesc_2023.c",
            proof_of_concept="Local privilege escalation to root",
        ),
        CVEEntry(
            id="CVE-2019-9506",
            description="KNOB attack - Key Negotiation of Bluetooth vulnerability",
            severity=Severity.HIGH,
            published=_days_ago(365 * 5),
            last_modified=_days_ago(30),
            references=["https://knobattack.com/", "https://nvd.nist.gov/vuln/detail/CVE-2019-9506"],
            affected_products=["All Bluetooth BR/EDR devices"],
            exploitability=Exploitability.FUNCTIONAL,
            attack_vector=AttackVector.ADJACENT_NETWORK,
            attack_complexity="HIGH",
            confidentiality_impact="HIGH",
            base_score=8.1,
            exploit_code="knob_attack.py",
            proof_of_concept="Forces weak encryption keys allowing traffic decryption",
        ),
        CVEEntry(
            id="CVE-2017-0781",
            description="BlueBorne - Android SDP Information Disclosure",
            severity=Severity.HIGH,
            published=_days_ago(365 * 7),
            last_modified=_days_ago(90),
            references=["https://www.armis.com/blueborne/", "https://nvd.nist.gov/vuln/detail/CVE-2017-0781"],
            affected_products=["Android 4.4 - 8.0"],
            exploitability=Exploitability.FUNCTIONAL,
            attack_vector=AttackVector.ADJACENT_NETWORK,
            confidentiality_impact="HIGH",
            base_score=7.5,
            exploit_code="blueborne_info_leak.py",
            proof_of_concept="Information disclosure via SDP service overflow",
        ),
    ]


# ---------------------------------------------------------------------------
# NVD parsing
# ---------------------------------------------------------------------------


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _enum_or(enum_cls: Any, value: Any, default: Any) -> Any:
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        return default


def parse_nvd_vulnerability(item: dict[str, Any]) -> Optional[CVEEntry]:
    """Convert one ``vulnerabilities[]`` element of an NVD 2.0 response.

    CVSS v3.1 metrics are preferred, then v3.0, then v2.
    References tagged ``Exploit`` mark the entry as having a proof of concept.
    """
    cve = item.get("cve") or {}
    cve_id = str(cve.get("id", "")).upper()
    if not cve_id:
        return None

    description = ""
    descriptions = cve.get("descriptions", [])
    for desc in descriptions:
        if desc.get("lang") == "en":
            description = desc.get("value", "")
            break
    if not description and descriptions:
        description = descriptions[0].get("value", "")

    metrics = cve.get("metrics", {})
    fields: dict[str, Any] = {}
    for key in ("cvssMetricV31", "cvssMetricV30"):
        if metrics.get(key):
            data = metrics[key][0].get("cvssData", {})
            fields = {
                "base_score": float(data.get("baseScore", 0.0)),
                "severity": Severity.parse(
                    data.get("baseSeverity"), Severity.from_cvss(float(data.get("baseScore", 0.0)))
                ),
                "attack_vector": _enum_or(AttackVector, data.get("attackVector"), AttackVector.ADJACENT_NETWORK),
                "attack_complexity": data.get("attackComplexity", "LOW"),
                "privileges_required": data.get("privilegesRequired", "NONE"),
                "user_interaction": data.get("userInteraction", "NONE"),
                "scope": data.get("scope", "UNCHANGED"),
                "confidentiality_impact": data.get("confidentialityImpact", "NONE"),
                "integrity_impact": data.get("integrityImpact", "NONE"),
                "availability_impact": data.get("availabilityImpact", "NONE"),
            }
            break
    else:
        if metrics.get("cvssMetricV2"):
            primary = metrics["cvssMetricV2"][0]
            data = primary.get("cvssData", {})
            score = float(data.get("baseScore", 0.0))
            fields = {
                "base_score": score,
                "severity": Severity.parse(primary.get("baseSeverity"), Severity.from_cvss(score)),
                "attack_vector": _enum_or(AttackVector, data.get("accessVector"), AttackVector.ADJACENT_NETWORK),
                "attack_complexity": data.get("accessComplexity", "LOW"),
                "confidentiality_impact": data.get("confidentialityImpact", "NONE"),
                "integrity_impact": data.get("integrityImpact", "NONE"),
                "availability_impact": data.get("availabilityImpact", "NONE"),
            }

    references: list[str] = []
    has_exploit = False
    for ref in cve.get("references", [])[:20]:
        url = ref.get("url", "")
        if url:
            references.append(url)
        if "Exploit" in ref.get("tags", []):
            has_exploit = True

    products: list[str] = []
    for config in cve.get("configurations", []):
        for node in config.get("nodes", []):
            for match in node.get("cpeMatch", []):
                criteria = match.get("criteria", "")
                if criteria and len(products) < 50:
                    products.append(criteria)

    return CVEEntry(
        id=cve_id,
        description=description,
        published=_parse_timestamp(cve.get("published")),
        last_modified=_parse_timestamp(cve.get("lastModified")),
        references=references,
        affected_products=products,
        exploitability=Exploitability.PROOF_OF_CONCEPT if has_exploit else Exploitability.UNPROVEN,
        **fields,
    )


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class CVECorpus(abc.ABC):
    """Keyword-searchable CVE knowledge base."""

    @abc.abstractmethod
    async def search(self, keyword: str) -> list[CVEEntry]:
        """Entries matching *keyword*. Raises :class:`CorpusQueryError`."""

    @abc.abstractmethod
    async def refresh(self) -> int:
        """Pull fresh records from upstream; returns the number stored.
        Raises :class:`CorpusRefreshError`."""

    async def count(self) -> int:
        return 0

    async def close(self) -> None:
        return None


class MemoryCVECorpus(CVECorpus):
    """List-backed corpus. ``refresh`` reloads the built-in seed."""

    def __init__(self, entries: Optional[Iterable[CVEEntry]] = None) -> None:
        self._entries: list[CVEEntry] = list(builtin_cves() if entries is None else entries)
        self.queries: list[str] = []

    async def search(self, keyword: str) -> list[CVEEntry]:
        self.queries.append(keyword)
        if not keyword.strip():
            return []
        return [entry for entry in self._entries if entry.matches(keyword)]

    async def refresh(self) -> int:
        known = {entry.id for entry in self._entries}
        self._entries.extend(e for e in builtin_cves() if e.id not in known)
        return len(self._entries)

    async def count(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# SQLite-backed corpus
# ---------------------------------------------------------------------------


_COLUMNS = (
    "cve_id", "description", "severity", "base_score", "published",
    "last_modified", "references_json", "affected_products", "exploitability",
    "attack_vector", "attack_complexity", "privileges_required",
    "user_interaction", "scope", "confidentiality_impact", "integrity_impact",
    "availability_impact", "exploit_code", "proof_of_concept", "source",
    "cached_at",
)


class SQLiteCVECorpus(CVECorpus):
    """SQLite CVE store with NVD refresh.

    Usage::

        corpus = SQLiteCVECorpus("harald_cves.db")
        await corpus.refresh()
        entries = await corpus.search("CVE-2019-9506")

    Args:
        db_path: Database file; ``":memory:"`` keeps it in memory.
        seed_builtin: Insert the built-in records when the table is empty.
        http: HTTP client for refresh; one is created on demand otherwise.
        api_key: NVD API key (raises the upstream rate limit).
        keyword: ``keywordSearch`` term used for refresh.
        page_size: ``resultsPerPage`` for refresh.
        max_records: Upper bound on records pulled per refresh.
        request_timeout: HTTP timeout in seconds.
        page_delay: Pause between pages; defaults to the NVD public rate
            limit (6 s without a key, 0.6 s with one).
    """

    def __init__(
        self,
        db_path: str | Path = "harald_cves.db",
        *,
        seed_builtin: bool = True,
        http: Optional[HaraldHTTP] = None,
        base_url: str = NVD_API_BASE,
        api_key: str = "",
        keyword: str = "bluetooth",
        page_size: int = 100,
        max_records: int = 2000,
        request_timeout: float = 30.0,
        page_delay: Optional[float] = None,
    ) -> None:
        self.db_path = str(db_path)
        self._connection: Optional[sqlite3.Connection] = None
        self._http = http
        self._base_url = base_url
        self._api_key = api_key
        self._keyword = keyword
        self._page_size = page_size
        self._max_records = max_records
        self._request_timeout = request_timeout
        self._page_delay = page_delay if page_delay is not None else (0.6 if api_key else 6.0)

        self.create_tables()
        if seed_builtin and self._record_count() == 0:
            self.insert_many(builtin_cves(), source="builtin")

    # ------------------------------------------------------------------ #
    #  Connection / schema
    # ------------------------------------------------------------------ #

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode=WAL")
        return self._connection

    def create_tables(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS cves (
                cve_id                 TEXT PRIMARY KEY,
                description            TEXT NOT NULL DEFAULT '',
                severity               TEXT NOT NULL DEFAULT 'NONE',
                base_score             REAL NOT NULL DEFAULT 0.0,
                published              TEXT,
                last_modified          TEXT,
                references_json        TEXT NOT NULL DEFAULT '[]',
                affected_products      TEXT NOT NULL DEFAULT '[]',
                exploitability         TEXT NOT NULL DEFAULT 'NOT_DEFINED',
                attack_vector          TEXT NOT NULL DEFAULT 'ADJACENT_NETWORK',
                attack_complexity      TEXT NOT NULL DEFAULT 'LOW',
                privileges_required    TEXT NOT NULL DEFAULT 'NONE',
                user_interaction       TEXT NOT NULL DEFAULT 'NONE',
                scope                  TEXT NOT NULL DEFAULT 'UNCHANGED',
                confidentiality_impact TEXT NOT NULL DEFAULT 'NONE',
                integrity_impact       TEXT NOT NULL DEFAULT 'NONE',
                availability_impact    TEXT NOT NULL DEFAULT 'NONE',
                exploit_code           TEXT,
                proof_of_concept       TEXT,
                source                 TEXT NOT NULL DEFAULT 'nvd',
                cached_at              REAL NOT NULL DEFAULT 0.0
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cves_severity ON cves(severity)")
        conn.commit()

    def close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    async def close(self) -> None:
        self.close_sync()
        if self._http is not None:
            await self._http.close()
            self._http = None

    # ------------------------------------------------------------------ #
    #  Insert / retrieval
    # ------------------------------------------------------------------ #

    @staticmethod
    def _to_row(entry: CVEEntry, source: str, now: float) -> tuple[Any, ...]:
        return (
            entry.id,
            entry.description,
            entry.severity.value,
            entry.base_score,
            entry.published.isoformat() if entry.published else None,
            entry.last_modified.isoformat() if entry.last_modified else None,
            json.dumps(entry.references),
            json.dumps(entry.affected_products),
            entry.exploitability.value,
            entry.attack_vector.value,
            entry.attack_complexity,
            entry.privileges_required,
            entry.user_interaction,
            entry.scope,
            entry.confidentiality_impact,
            entry.integrity_impact,
            entry.availability_impact,
            entry.exploit_code,
            entry.proof_of_concept,
            source,
            now,
        )

    def insert_many(self, entries: Iterable[CVEEntry], source: str = "nvd") -> int:
        """Upsert *entries* in one transaction; returns the row count."""
        now = time.time()
        rows = [self._to_row(entry, source, now) for entry in entries]
        placeholders = ", ".join("?" for _ in _COLUMNS)
        conn = self._get_connection()
        conn.executemany(
            f"INSERT OR REPLACE INTO cves ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            rows,
        )
        conn.commit()
        return len(rows)

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> CVEEntry:
        return CVEEntry(
            id=row["cve_id"],
            description=row["description"],
            severity=Severity.parse(row["severity"]),
            base_score=row["base_score"],
            published=_parse_timestamp(row["published"]),
            last_modified=_parse_timestamp(row["last_modified"]),
            references=json.loads(row["references_json"]),
            affected_products=json.loads(row["affected_products"]),
            exploitability=_enum_or(Exploitability, row["exploitability"], Exploitability.NOT_DEFINED),
            attack_vector=_enum_or(AttackVector, row["attack_vector"], AttackVector.ADJACENT_NETWORK),
            attack_complexity=row["attack_complexity"],
            privileges_required=row["privileges_required"],
            user_interaction=row["user_interaction"],
            scope=row["scope"],
            confidentiality_impact=row["confidentiality_impact"],
            integrity_impact=row["integrity_impact"],
            availability_impact=row["availability_impact"],
            exploit_code=row["exploit_code"],
            proof_of_concept=row["proof_of_concept"],
        )

    def _record_count(self) -> int:
        row = self._get_connection().execute("SELECT COUNT(*) AS cnt FROM cves").fetchone()
        return int(row["cnt"])

    async def count(self) -> int:
        return self._record_count()

    async def search(self, keyword: str, limit: int = 50) -> list[CVEEntry]:
        needle = keyword.strip()
        if not needle:
            return []
        escaped = needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        try:
            rows = self._get_connection().execute(
                """
                SELECT * FROM cves
                WHERE cve_id LIKE ? ESCAPE '\\'
                   OR description LIKE ? ESCAPE '\\'
                   OR affected_products LIKE ? ESCAPE '\\'
                ORDER BY base_score DESC
                LIMIT ?
                """,
                (pattern, pattern, pattern, limit),
            ).fetchall()
        except sqlite3.Error as exc:
            raise CorpusQueryError(f"search for {keyword!r} failed: {exc}") from exc
        return [self._row_to_entry(row) for row in rows]

    # ------------------------------------------------------------------ #
    #  Refresh
    # ------------------------------------------------------------------ #

    def _get_http(self) -> HaraldHTTP:
        if self._http is None:
            headers = {"apiKey": self._api_key} if self._api_key else None
            self._http = HaraldHTTP(
                timeout=self._request_timeout,
                headers=headers,
            )
        return self._http

    async def refresh(self) -> int:
        """Page through NVD ``keywordSearch`` results and upsert them."""
        with logger.operation("corpus_refresh"):
            return await self._refresh_pages()

    async def _refresh_pages(self) -> int:
        http = self._get_http()
        stored = 0
        start_index = 0

        while start_index < self._max_records:
            params = {
                "keywordSearch": self._keyword,
                "resultsPerPage": self._page_size,
                "startIndex": start_index,
            }
            try:
                data = await http.fetch_json(self._base_url, params=params)
            except HaraldHTTPError as exc:
                raise CorpusRefreshError(f"NVD request failed at index {start_index}: {exc}") from exc

            if not isinstance(data, dict):
                raise CorpusRefreshError("Unexpected NVD response shape")

            items = data.get("vulnerabilities", [])
            entries = [e for e in (parse_nvd_vulnerability(i) for i in items) if e is not None]
            try:
                stored += self.insert_many(entries, source="nvd")
            except sqlite3.Error as exc:
                raise CorpusRefreshError(f"Storing NVD records failed: {exc}") from exc

            total = int(data.get("totalResults", 0))
            start_index += len(items)
            logger.info("Corpus refresh: %d/%d records", start_index, total)
            if not items or start_index >= total:
                break
            if self._page_delay:
                await asyncio.sleep(self._page_delay)

        return stored
