"""Run security providers concurrently and merge their alerts."""

import asyncio
import logging
from typing import Callable

from .config import Settings
from .errors import ProviderError
from .models import ProviderResult, ScanReport, ScanTarget, SecurityAlert, Severity
from .parse_node import Manifest
from .scan_github import GitHubProvider
from .scan_osv import OSVProvider
from .scan_snyk import SnykProvider
from .scan_socket import SocketProvider
from .scanners import DEFAULT_TIMEOUT, SecurityProvider
from .versions import clean_version, compare_versions

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings, str | None], SecurityProvider]

REGISTRY: dict[str, ProviderFactory] = {
    "osv": lambda settings, token: OSVProvider(
        settings.root,
        token,
        settings.security.timeout,
        database=settings.security.osv_database,
    ),
    "github": lambda settings, token: GitHubProvider(
        settings.root,
        token,
        settings.security.timeout,
        owner=settings.security.github_owner,
        repo=settings.security.github_repo,
    ),
    "snyk": lambda settings, token: SnykProvider(settings.root, token, settings.security.timeout),
    "socket": lambda settings, token: SocketProvider(settings.root, token, settings.security.timeout),
}


def build_providers(settings: Settings) -> list[SecurityProvider]:
    """Instantiate the configured providers, once each, in configured order."""
    providers = []
    seen = set()
    for requested in settings.security.providers:
        if requested.name in seen:
            continue
        seen.add(requested.name)
        factory = REGISTRY[requested.name]
        providers.append(factory(settings, settings.security.token_for(requested)))
    return providers


def collect_targets(manifests: list[Manifest], exclude: list[str] | None = None) -> list[ScanTarget]:
    """Concrete package@version pairs to scan.

    Declared ranges are reduced to their base version; an override pin in
    any manifest replaces the declared version for that package.
    """
    exclude = set(exclude or [])
    versions: dict[str, str] = {}
    for manifest in manifests:
        declared = {**manifest.dev_dependencies, **manifest.dependencies}
        for name, spec in declared.items():
            version = clean_version(spec)
            if version[:1].isdigit():
                versions.setdefault(name, version)

    for manifest in manifests:
        for entry in manifest.override_entries():
            version = clean_version(entry.version)
            if entry.parent is None and version[:1].isdigit():
                versions[entry.package] = version

    return [
        ScanTarget(name, version)
        for name, version in sorted(versions.items())
        if name not in exclude
    ]


async def run_provider(
    provider: SecurityProvider, targets: list[ScanTarget], timeout: float
) -> ProviderResult:
    """Run one provider; any failure degrades it to an unavailable result."""
    try:
        alerts = await asyncio.wait_for(provider.scan(targets), timeout)
    except asyncio.TimeoutError:
        message = f"timed out after {timeout:g}s"
    except ProviderError as e:
        message = e.message
    except Exception as e:
        logger.debug("Provider %s crashed", provider.name, exc_info=True)
        message = f"{type(e).__name__}: {e}"
    else:
        logger.debug("Provider %s returned %d alert(s)", provider.name, len(alerts))
        return ProviderResult(provider.name, "ok", alerts)

    logger.warning("Security provider %s unavailable: %s", provider.name, message)
    return ProviderResult(provider.name, "unavailable", message=message)


def _fix_beats(candidate: SecurityAlert, current: SecurityAlert) -> bool:
    if candidate.patched_version and not current.patched_version:
        return True
    if current.patched_version and not candidate.patched_version:
        return False
    if candidate.patched_version and current.patched_version:
        order = compare_versions(candidate.patched_version, current.patched_version)
        if order:
            return order > 0
    return candidate.severity > current.severity


def deduplicate(alerts: list[SecurityAlert]) -> list[SecurityAlert]:
    """Collapse alerts describing the same issue, keeping the richest one.

    Alerts are keyed on (package, CVE or title, current version). The
    survivor is the one with a patched version, then the higher patched
    version, then the higher severity. The survivor carries the highest
    severity any provider assigned, and ``sources`` lists every provider
    that reported the issue.
    """
    merged: dict[tuple[str, str, str], SecurityAlert] = {}
    for alert in alerts:
        key = alert.identity
        current = merged.get(key)
        if current is None:
            merged[key] = alert
            continue
        sources = current.sources + [s for s in alert.sources if s not in current.sources]
        winner, other = (alert, current) if _fix_beats(alert, current) else (current, alert)
        winner.sources = sources
        winner.severity = max(winner.severity, other.severity)
        winner.cve = winner.cve or other.cve
        winner.url = winner.url or other.url
        winner.description = winner.description or other.description
        merged[key] = winner
    return list(merged.values())


def filter_by_threshold(alerts: list[SecurityAlert], threshold: Severity) -> list[SecurityAlert]:
    return [alert for alert in alerts if alert.severity >= threshold]


def sort_alerts(alerts: list[SecurityAlert]) -> list[SecurityAlert]:
    return sorted(alerts, key=lambda a: (-a.severity.rank, a.package_name, a.title))


async def aggregate(
    providers: list[SecurityProvider],
    targets: list[ScanTarget],
    threshold: Severity = Severity.MEDIUM,
    timeout: float = DEFAULT_TIMEOUT,
    exclude: list[str] | None = None,
) -> ScanReport:
    """Scan with every provider and produce one filtered, sorted report.

    Args:
        providers: Provider instances, typically from build_providers()
        targets: Package versions to check
        threshold: Minimum severity to keep
        timeout: Per-provider timeout in seconds
        exclude: Package names whose alerts are ignored

    Returns:
        ScanReport with surviving alerts and one result per provider
    """
    results = list(
        await asyncio.gather(*(run_provider(p, targets, timeout) for p in providers))
    )
    excluded = set(exclude or [])
    alerts = [
        alert
        for result in results
        for alert in result.alerts
        if alert.package_name not in excluded
    ]
    alerts = sort_alerts(filter_by_threshold(deduplicate(alerts), threshold))
    return ScanReport(alerts=alerts, results=results, threshold=threshold)


def scan(
    providers: list[SecurityProvider],
    targets: list[ScanTarget],
    threshold: Severity = Severity.MEDIUM,
    timeout: float = DEFAULT_TIMEOUT,
    exclude: list[str] | None = None,
) -> ScanReport:
    """Synchronous entry point around aggregate()."""
    return asyncio.run(aggregate(providers, targets, threshold, timeout, exclude))
