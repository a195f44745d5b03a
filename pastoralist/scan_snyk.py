"""Snyk CLI provider."""

import logging
from typing import Any

from .errors import ProviderUnavailable
from .models import ScanTarget, SecurityAlert
from .scanners import SecurityProvider, parse_json_output, pick_patched_version, run_cli

logger = logging.getLogger(__name__)


class SnykProvider(SecurityProvider):
    """Vulnerabilities reported by ``snyk test --json``."""

    name = "snyk"

    async def _ensure_authenticated(self) -> dict[str, str] | None:
        if self.token:
            return {"SNYK_TOKEN": self.token}
        try:
            configured = await run_cli(self.name, ["snyk", "config", "get", "api"], self.root)
        except ProviderUnavailable:
            configured = ""
        if not configured.strip():
            raise self.unavailable("no Snyk token; set SNYK_TOKEN or run `snyk auth`")
        return None

    async def scan(self, targets: list[ScanTarget]) -> list[SecurityAlert]:
        env = await self._ensure_authenticated()
        # exit 1 means vulnerabilities were found; stdout still carries JSON
        output = await run_cli(
            self.name, ["snyk", "test", "--json"], self.root, env=env, ok_codes=(0, 1)
        )
        result = parse_json_output(self.name, output)
        projects = result if isinstance(result, list) else [result]

        alerts = []
        for project in projects:
            if not isinstance(project, dict):
                continue
            if project.get("error") and not project.get("vulnerabilities"):
                raise self.unavailable(str(project["error"]))
            for vuln in project.get("vulnerabilities") or []:
                if isinstance(vuln, dict):
                    alerts.append(self.to_alert(vuln))
        logger.debug("Snyk reported %d vulnerable path(s)", len(alerts))
        return alerts

    def extract_patched_version(self, raw: dict[str, Any]) -> str | None:
        upgrade_path = raw.get("upgradePath") or []
        # a one-element path has no upgrade target beyond the project itself
        if len(upgrade_path) < 2:
            upgrade_path = []
        return pick_patched_version(raw.get("fixedIn") or None, upgrade_path, raw.get("version"))

    def to_alert(self, raw: dict[str, Any], current_version: str | None = None) -> SecurityAlert:
        package = raw.get("packageName") or raw.get("name") or "unknown"
        vulnerable = (raw.get("semver") or {}).get("vulnerable") or []
        cves = (raw.get("identifiers") or {}).get("CVE") or []
        vuln_id = raw.get("id", "")

        return SecurityAlert(
            package_name=package,
            current_version=current_version or raw.get("version") or "unknown",
            severity=self.normalize_severity(raw.get("severity")),
            title=raw.get("title") or vuln_id or f"Vulnerability in {package}",
            provider=self.name,
            vulnerable_versions=" || ".join(vulnerable),
            description=raw.get("description"),
            cve=cves[0] if cves else None,
            patched_version=self.extract_patched_version(raw),
            url=raw.get("url") or (f"https://security.snyk.io/vuln/{vuln_id}" if vuln_id else None),
        )
