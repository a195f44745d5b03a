"""OSV vulnerability provider (offline database or api.osv.dev)."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from .models import ScanTarget, SecurityAlert
from .scanners import DEFAULT_TIMEOUT, SecurityProvider, select_fix
from .versions import compare_versions, is_affected

logger = logging.getLogger(__name__)

OSV_API = "https://api.osv.dev/v1"
ECOSYSTEM = "npm"
BATCH_SIZE = 1000


def _affected_for(record: dict[str, Any], package: str) -> list[dict[str, Any]]:
    return [
        affected
        for affected in record.get("affected") or []
        if isinstance(affected, dict)
        and (affected.get("package") or {}).get("name") == package
        and (affected.get("package") or {}).get("ecosystem", ECOSYSTEM).lower() == ECOSYSTEM
    ]


def _describe_range(events: list[dict[str, Any]]) -> str:
    parts = []
    for event in events:
        if "introduced" in event and event["introduced"] != "0":
            parts.append(f">={event['introduced']}")
        elif "fixed" in event:
            parts.append(f"<{event['fixed']}")
        elif "last_affected" in event:
            parts.append(f"<={event['last_affected']}")
    return " ".join(parts) or "*"


class OSVProvider(SecurityProvider):
    """Vulnerabilities from the Open Source Vulnerabilities database."""

    name = "osv"

    def __init__(
        self,
        root: Path | str = ".",
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        database: Path | str | None = None,
        max_concurrency: int = 6,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize OSV provider.

        Args:
            root: Project root
            token: Unused; OSV needs no credentials
            timeout: Request timeout in seconds
            database: Directory or file of OSV JSON records for offline scans
            max_concurrency: Maximum concurrent advisory requests
            transport: Optional httpx transport (tests inject a mock)
        """
        super().__init__(root, token, timeout)
        self.database = Path(database) if database else None
        self.max_concurrency = max_concurrency
        self.transport = transport

    async def scan(self, targets: list[ScanTarget]) -> list[SecurityAlert]:
        if not targets:
            return []
        if self.database is not None:
            records = await asyncio.to_thread(self.load_database)
            return self.match_records(records, targets)
        return await self._query_api(targets)

    def load_database(self) -> list[dict[str, Any]]:
        """Read OSV records from ``self.database``.

        A file may hold one record, a list of records or ``{"vulns": [...]}``;
        a directory is searched recursively for ``*.json``.
        """
        path = self.database
        if path is None or not path.exists():
            raise self.unavailable(f"OSV database not found: {path}")
        files = sorted(path.rglob("*.json")) if path.is_dir() else [path]

        records: list[dict[str, Any]] = []
        for file in files:
            try:
                data = json.loads(file.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise self.unavailable(f"cannot read {file}: {e}") from e
            if isinstance(data, dict) and isinstance(data.get("vulns"), list):
                data = data["vulns"]
            if isinstance(data, dict):
                data = [data]
            if isinstance(data, list):
                records.extend(item for item in data if isinstance(item, dict))
        logger.debug("Loaded %d OSV record(s) from %s", len(records), path)
        return records

    def affects(self, record: dict[str, Any], target: ScanTarget) -> bool:
        for affected in _affected_for(record, target.name):
            if target.version in (affected.get("versions") or []):
                return True
            for range_ in affected.get("ranges") or []:
                if range_.get("type") == "GIT":
                    continue
                if is_affected(target.version, range_.get("events") or []):
                    return True
        return False

    def match_records(
        self, records: list[dict[str, Any]], targets: list[ScanTarget]
    ) -> list[SecurityAlert]:
        """Match targets against locally loaded records."""
        by_package: dict[str, list[dict[str, Any]]] = {}
        for record in records:
            if record.get("withdrawn"):
                continue
            names = {
                (affected.get("package") or {}).get("name")
                for affected in record.get("affected") or []
                if isinstance(affected, dict)
            }
            for name in names:
                if name:
                    by_package.setdefault(name, []).append(record)

        alerts = []
        for target in targets:
            for record in by_package.get(target.name, []):
                if self.affects(record, target):
                    alerts.append(self.to_alert(record, target.version, target.name))
        return alerts

    async def _query_api(self, targets: list[ScanTarget]) -> list[SecurityAlert]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                hits: list[tuple[ScanTarget, str]] = []
                for start in range(0, len(targets), BATCH_SIZE):
                    batch = targets[start:start + BATCH_SIZE]
                    hits.extend(await self._query_batch(client, batch))

                vuln_ids = sorted({vuln_id for _, vuln_id in hits})

                async def fetch(vuln_id: str) -> tuple[str, dict[str, Any]]:
                    async with semaphore:
                        response = await client.get(f"{OSV_API}/vulns/{vuln_id}")
                        response.raise_for_status()
                        return vuln_id, response.json()

                details = dict(await asyncio.gather(*(fetch(v) for v in vuln_ids)))
        except httpx.TimeoutException as e:
            raise self.unavailable(f"timeout talking to OSV: {e}") from e
        except httpx.HTTPError as e:
            raise self.unavailable(f"HTTP error talking to OSV: {e}") from e
        except ValueError as e:
            raise self.unavailable(f"malformed OSV response: {e}") from e

        return [
            self.to_alert(details[vuln_id], target.version, target.name)
            for target, vuln_id in hits
        ]

    async def _query_batch(
        self, client: httpx.AsyncClient, batch: list[ScanTarget]
    ) -> list[tuple[ScanTarget, str]]:
        payload = {
            "queries": [
                {"package": {"name": t.name, "ecosystem": ECOSYSTEM}, "version": t.version}
                for t in batch
            ]
        }
        response = await client.post(f"{OSV_API}/querybatch", json=payload)
        response.raise_for_status()
        results = response.json().get("results") or []

        hits = []
        for target, result in zip(batch, results):
            for vuln in (result or {}).get("vulns") or []:
                if vuln.get("id"):
                    hits.append((target, vuln["id"]))
        return hits

    def extract_patched_version(
        self,
        raw: dict[str, Any],
        current_version: str | None = None,
        package: str | None = None,
    ) -> str | None:
        """Fixed version of the range containing ``current_version``."""
        affected = _affected_for(raw, package) if package else raw.get("affected") or []
        fixed = [
            event["fixed"]
            for item in affected
            for range_ in item.get("ranges") or []
            if range_.get("type") != "GIT"
            for event in range_.get("events") or []
            if "fixed" in event
        ]
        return select_fix(fixed, current_version)

    def to_alert(
        self,
        raw: dict[str, Any],
        current_version: str | None = None,
        package: str | None = None,
    ) -> SecurityAlert:
        affected = _affected_for(raw, package) if package else raw.get("affected") or []
        if package is None and affected:
            package = (affected[0].get("package") or {}).get("name")
        package = package or "unknown"

        events = [
            event
            for item in affected
            for range_ in item.get("ranges") or []
            if range_.get("type") != "GIT"
            for event in range_.get("events") or []
        ]

        vuln_id = raw.get("id", "")
        aliases = [a for a in raw.get("aliases") or [] if isinstance(a, str)]
        cve = next(
            (a for a in [vuln_id, *aliases] if a.startswith("CVE-")),
            None,
        )
        references = [r.get("url") for r in raw.get("references") or [] if r.get("url")]
        severity = (raw.get("database_specific") or {}).get("severity")

        patched = self.extract_patched_version(raw, current_version, package)
        if patched and current_version and compare_versions(patched, current_version) <= 0:
            patched = None

        return SecurityAlert(
            package_name=package,
            current_version=current_version or "unknown",
            severity=self.normalize_severity(severity),
            title=raw.get("summary") or vuln_id or f"Vulnerability in {package}",
            provider=self.name,
            vulnerable_versions=_describe_range(events),
            description=raw.get("details"),
            cve=cve,
            patched_version=patched,
            url=references[0] if references else f"https://osv.dev/vulnerability/{vuln_id}",
        )
