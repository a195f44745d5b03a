"""Socket.dev CLI provider."""

from typing import Any

from .models import ScanTarget, SecurityAlert
from .scanners import SecurityProvider, parse_json_output, pick_patched_version, run_cli


class SocketProvider(SecurityProvider):
    """Supply-chain and vulnerability issues from ``socket report create``."""

    name = "socket"

    async def scan(self, targets: list[ScanTarget]) -> list[SecurityAlert]:
        if not self.token:
            raise self.unavailable("no Socket API key; set SOCKET_SECURITY_API_KEY")
        output = await run_cli(
            self.name,
            ["socket", "report", "create", "--format", "json"],
            self.root,
            env={"SOCKET_SECURITY_API_KEY": self.token},
        )
        report = parse_json_output(self.name, output)
        if not isinstance(report, dict):
            raise self.unavailable("unexpected report shape")

        alerts = []
        for package in report.get("packages") or []:
            for issue in package.get("issues") or []:
                alerts.append(self.to_alert({**issue, "package": package}))
        return alerts

    def extract_patched_version(self, raw: dict[str, Any]) -> str | None:
        # Socket reports do not carry fix versions today
        return pick_patched_version(raw.get("fixedVersion"), raw.get("upgradePath"))

    def to_alert(self, raw: dict[str, Any], current_version: str | None = None) -> SecurityAlert:
        package = raw.get("package") or {}
        name = package.get("name") or "unknown"
        version = current_version or package.get("version") or "unknown"
        is_cve = raw.get("type") == "vulnerability"

        return SecurityAlert(
            package_name=name,
            current_version=version,
            severity=self.normalize_severity(raw.get("severity")),
            title=raw.get("title") or raw.get("type") or "Socket issue",
            provider=self.name,
            vulnerable_versions=f"<= {version}" if is_cve else "",
            description=raw.get("description"),
            cve=raw.get("cve") if is_cve else None,
            patched_version=self.extract_patched_version(raw),
            url=raw.get("url") or f"https://socket.dev/npm/package/{name}/overview/{version}",
        )
