"""Turn security alerts into proposed override writes."""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable

from .detect import mechanism_for
from .models import (
    Decision,
    DependentsIndex,
    Mechanism,
    SecurityAlert,
    WritePlan,
    WritePlanEntry,
)
from .parse_node import Manifest
from .versions import compare_versions, max_version

logger = logging.getLogger(__name__)

DecisionFn = Callable[[WritePlanEntry], Decision]


@dataclass
class Proposal:
    """A write plan plus the alerts it could not act on."""

    plan: WritePlan = field(default_factory=WritePlan)
    unfixable: list[SecurityAlert] = field(default_factory=list)
    skipped: list[SecurityAlert] = field(default_factory=list)


def owning_manifest(manifests: list[Manifest], package: str) -> Manifest:
    """Manifest already overriding ``package``, else the root manifest."""
    for manifest in manifests:
        if any(e.package == package and e.parent is None for e in manifest.override_entries()):
            return manifest
    return next((m for m in manifests if m.is_root), manifests[0])


def choose_mechanism(manifest: Manifest, package: str, package_manager: str) -> Mechanism:
    """Pick the override field a new pin for ``package`` goes into."""
    for entry in manifest.override_entries():
        if entry.package == package and entry.parent is None:
            return entry.mechanism
    present = manifest.mechanisms()
    if present:
        return present[0]
    return mechanism_for(package_manager)


def security_reason(alert: SecurityAlert) -> str:
    if alert.cve:
        return f"Security fix: {alert.title} ({alert.cve}, {alert.severity.value})"
    return f"Security fix: {alert.title} ({alert.severity.value})"


def propose(
    alerts: list[SecurityAlert],
    manifests: list[Manifest],
    index: DependentsIndex,
    package_manager: str = "npm",
) -> Proposal:
    """Propose one pin per vulnerable, directly declared package.

    Args:
        alerts: Filtered, sorted alerts (most severe first)
        manifests: Workspace manifests, root first
        index: Dependents index; packages absent from it are not pinned
        package_manager: Detected package manager for new override fields

    Returns:
        Proposal with the plan in alert order
    """
    proposal = Proposal()
    by_package: dict[str, list[SecurityAlert]] = {}
    for alert in alerts:
        if not alert.fix_available:
            proposal.unfixable.append(alert)
            continue
        by_package.setdefault(alert.package_name, []).append(alert)

    for package, package_alerts in by_package.items():
        if package not in index:
            logger.debug("Not pinning %s: no manifest declares it directly", package)
            proposal.skipped.extend(package_alerts)
            continue

        target = max_version([a.patched_version for a in package_alerts])
        manifest = owning_manifest(manifests, package)
        mechanism = choose_mechanism(manifest, package, package_manager)
        existing = next(
            (
                e
                for e in manifest.override_entries()
                if e.package == package and e.parent is None and e.mechanism is mechanism
            ),
            None,
        )
        if existing and compare_versions(existing.version, target) >= 0:
            logger.debug("%s already pinned to %s", package, existing.version)
            proposal.skipped.extend(package_alerts)
            continue

        alert = package_alerts[0]
        proposal.plan.entries.append(
            WritePlanEntry(
                manifest=manifest.path,
                mechanism=mechanism,
                package=package,
                from_version=existing.version if existing else alert.current_version,
                to_version=target,
                reason=security_reason(alert),
                alert=alert,
            )
        )
    return proposal


def confirm(
    plan: WritePlan,
    interactive: bool = False,
    force: bool = False,
    decide: DecisionFn | None = None,
) -> WritePlan:
    """Filter a plan down to the entries that should be applied.

    ``force`` accepts everything. ``interactive`` asks ``decide`` about each
    entry. With neither, nothing is applied.
    """
    if force:
        return WritePlan(list(plan.entries))
    if not interactive:
        return WritePlan()
    if decide is None:
        raise ValueError("interactive confirmation needs a decision function")

    accepted = WritePlan()
    for entry in plan.entries:
        decision = decide(entry)
        if decision.action == "accept":
            accepted.entries.append(entry)
        elif decision.action == "edit":
            accepted.entries.append(replace(entry, reason=decision.reason or entry.reason))
        else:
            logger.debug("Rejected %s -> %s", entry.package, entry.to_version)
    return accepted
