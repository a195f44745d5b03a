"""GitHub Dependabot alerts provider."""

import logging
import re
from pathlib import Path
from typing import Any

import httpx

from .models import ScanTarget, SecurityAlert
from .scanners import DEFAULT_TIMEOUT, SecurityProvider, parse_json_output, run_cli

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
ECOSYSTEM = "npm"

_REMOTE = re.compile(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")
_LOWER_BOUND = re.compile(r">=\s*([^\s,]+)")
_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


def parse_remote(url: str) -> tuple[str, str] | None:
    """``git@github.com:owner/repo.git`` -> ``("owner", "repo")``."""
    match = _REMOTE.search(url.strip())
    if not match:
        return None
    return match.group(1), match.group(2)


def _flatten(pages: Any) -> list[dict[str, Any]]:
    if isinstance(pages, dict):
        return [pages]
    alerts = []
    for item in pages or []:
        if isinstance(item, list):
            alerts.extend(alert for alert in item if isinstance(alert, dict))
        elif isinstance(item, dict):
            alerts.append(item)
    return alerts


class GitHubProvider(SecurityProvider):
    """Open Dependabot alerts for the repository hosting the project."""

    name = "github"

    def __init__(
        self,
        root: Path | str = ".",
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        owner: str | None = None,
        repo: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(root, token, timeout)
        self.owner = owner
        self.repo = repo
        self.transport = transport

    async def resolve_repository(self) -> tuple[str, str]:
        """Owner and repo from configuration, else the git origin remote."""
        if self.owner and self.repo:
            return self.owner, self.repo
        output = await run_cli(
            self.name, ["git", "config", "--get", "remote.origin.url"], self.root
        )
        parsed = parse_remote(output)
        if parsed is None:
            raise self.unavailable(f"origin is not a GitHub remote: {output.strip()}")
        return self.owner or parsed[0], self.repo or parsed[1]

    async def scan(self, targets: list[ScanTarget]) -> list[SecurityAlert]:
        owner, repo = await self.resolve_repository()
        if self.token:
            raw_alerts = await self._fetch_with_api(owner, repo)
        else:
            logger.debug("No GitHub token; falling back to the gh CLI")
            raw_alerts = await self._fetch_with_cli(owner, repo)

        versions = {target.name: target.version for target in targets}
        alerts = []
        for raw in raw_alerts:
            if raw.get("state") != "open":
                continue
            package = ((raw.get("security_vulnerability") or {}).get("package") or {})
            if package.get("ecosystem", ECOSYSTEM).lower() != ECOSYSTEM:
                continue
            alerts.append(self.to_alert(raw, versions.get(package.get("name"))))
        return alerts

    async def _fetch_with_api(self, owner: str, repo: str) -> list[dict[str, Any]]:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        url: str | None = f"{GITHUB_API}/repos/{owner}/{repo}/dependabot/alerts"
        params: dict[str, Any] | None = {"state": "open", "per_page": 100}
        alerts: list[dict[str, Any]] = []
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=headers, transport=self.transport
            ) as client:
                while url:
                    response = await client.get(url, params=params)
                    if response.status_code in (401, 403, 404):
                        raise self.unavailable(
                            f"cannot read Dependabot alerts for {owner}/{repo} "
                            f"(HTTP {response.status_code}); check token permissions"
                        )
                    response.raise_for_status()
                    alerts.extend(_flatten(response.json()))
                    match = _NEXT_LINK.search(response.headers.get("link", ""))
                    url = match.group(1) if match else None
                    params = None
        except httpx.HTTPError as e:
            raise self.unavailable(f"HTTP error talking to GitHub: {e}") from e
        except ValueError as e:
            raise self.unavailable(f"malformed GitHub response: {e}") from e
        return alerts

    async def _fetch_with_cli(self, owner: str, repo: str) -> list[dict[str, Any]]:
        output = await run_cli(
            self.name,
            [
                "gh",
                "api",
                f"repos/{owner}/{repo}/dependabot/alerts?state=open&per_page=100",
                "--paginate",
            ],
            self.root,
        )
        return _flatten(parse_json_output(self.name, output))

    def extract_patched_version(self, raw: dict[str, Any]) -> str | None:
        vulnerability = raw.get("security_vulnerability") or raw
        patched = vulnerability.get("first_patched_version") or {}
        return patched.get("identifier") or None

    def to_alert(self, raw: dict[str, Any], current_version: str | None = None) -> SecurityAlert:
        vulnerability = raw.get("security_vulnerability") or {}
        advisory = raw.get("security_advisory") or {}
        vulnerable_range = vulnerability.get("vulnerable_version_range") or ""

        if not current_version:
            match = _LOWER_BOUND.search(vulnerable_range)
            current_version = match.group(1) if match else "unknown"

        return SecurityAlert(
            package_name=(vulnerability.get("package") or {}).get("name", "unknown"),
            current_version=current_version,
            severity=self.normalize_severity(
                vulnerability.get("severity") or advisory.get("severity")
            ),
            title=advisory.get("summary") or advisory.get("ghsa_id") or "Dependabot alert",
            provider=self.name,
            vulnerable_versions=vulnerable_range,
            description=advisory.get("description"),
            cve=advisory.get("cve_id"),
            patched_version=self.extract_patched_version(raw),
            url=raw.get("html_url"),
        )
