"""Appendix reconciliation: keep overrides and their documentation in sync."""

import copy
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from .errors import ReconciliationError
from .models import (
    AppendixEntry,
    DependentsIndex,
    Mechanism,
    OverrideEntry,
    WritePlanEntry,
)
from .parse_node import Manifest, parse_overrides

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    """Final override fields and appendix for one manifest."""

    manifest: Manifest
    overrides: dict[Mechanism, dict[str, Any]] = field(default_factory=dict)
    appendix: dict[str, AppendixEntry] = field(default_factory=dict)
    deletions: list[OverrideEntry] = field(default_factory=list)
    applied: list[WritePlanEntry] = field(default_factory=list)

    @property
    def path(self) -> Path:
        return self.manifest.path

    def appendix_json(self) -> dict[str, Any]:
        return {key: appendix_item(entry) for key, entry in self.appendix.items()}


def appendix_item(entry: AppendixEntry) -> dict[str, Any]:
    """Serialize an appendix entry the way it is stored in package.json."""
    ledger = dict(entry.ledger)
    if entry.reason:
        ledger["reason"] = entry.reason
    item: dict[str, Any] = {"dependents": dict(entry.dependents), "ledger": ledger}
    if entry.patches:
        item["patches"] = list(entry.patches)
    return item


def check_conflicts(manifest: Manifest, entries: list[OverrideEntry]) -> None:
    """Raise if one package is pinned through more than one mechanism."""
    seen: dict[str, Mechanism] = {}
    for entry in entries:
        if entry.parent:
            continue
        other = seen.setdefault(entry.package, entry.mechanism)
        if other is not entry.mechanism:
            raise ReconciliationError(
                manifest.path,
                f"{entry.package} is overridden in both {other.field} and {entry.mechanism.field}",
            )


def _set_path(tree: dict[str, Any], selector: tuple[str, ...], value: str) -> None:
    node = tree
    for key in selector[:-1]:
        node = node.setdefault(key, {})
    node[selector[-1]] = value


def _delete_path(tree: dict[str, Any], selector: tuple[str, ...]) -> None:
    trail = []
    node = tree
    for key in selector[:-1]:
        trail.append((node, key))
        node = node[key]
    node.pop(selector[-1], None)
    for parent, key in reversed(trail):
        if parent[key]:
            break
        del parent[key]


def _dependents_for(entry: OverrideEntry, index: DependentsIndex) -> dict[str, str]:
    declared = index.get(entry.justified_by, {})
    if entry.parent:
        return {
            name: f"{entry.parent}@{spec} (nested override)"
            for name, spec in sorted(declared.items())
        }
    return dict(sorted(declared.items()))


def _security_ledger(plan: WritePlanEntry, today: str) -> dict[str, Any]:
    ledger: dict[str, Any] = {"addedDate": today}
    alert = plan.alert
    if alert is None:
        return ledger
    ledger["securityChecked"] = True
    ledger["securityCheckDate"] = today
    ledger["securityProvider"] = alert.provider
    if alert.cve:
        ledger["cve"] = alert.cve
    ledger["severity"] = alert.severity.value
    if alert.url:
        ledger["url"] = alert.url
    return ledger


def _previous(entry: OverrideEntry, existing: dict[str, AppendixEntry]) -> AppendixEntry | None:
    if entry.key in existing:
        return existing[entry.key]
    for item in existing.values():
        if item.package == entry.package:
            return item
    return None


def apply_plan(
    fields: dict[Mechanism, dict[str, Any]],
    entries: list[OverrideEntry],
    plan: list[WritePlanEntry],
) -> dict[tuple[Mechanism, tuple[str, ...]], WritePlanEntry]:
    """Write plan versions into ``fields``; returns which selectors they hit."""
    patched = {}
    for item in plan:
        target = next(
            (
                entry
                for entry in entries
                if entry.package == item.package
                and entry.mechanism is item.mechanism
                and entry.parent is None
            ),
            None,
        )
        selector = target.selector if target else (item.package,)
        _set_path(fields.setdefault(item.mechanism, {}), selector, item.to_version)
        patched[(item.mechanism, selector)] = item
    return patched


def reconcile(
    manifest: Manifest,
    index: DependentsIndex,
    plan: list[WritePlanEntry] | None = None,
    today: str | None = None,
    patches: dict[str, list[str]] | None = None,
) -> Reconciliation:
    """Compute final overrides and appendix for a manifest.

    Args:
        manifest: Manifest carrying overrides (or receiving plan entries)
        index: Workspace-wide dependents index
        plan: Accepted write plan entries targeting this manifest
        today: ISO date used for new ledger entries
        patches: Package name -> patch files to list on matching entries

    Returns:
        The reconciled override fields, appendix and deletions
    """
    plan = plan or []
    patches = patches or {}
    today = today or date.today().isoformat()

    entries = manifest.override_entries()
    check_conflicts(manifest, entries)
    existing = manifest.appendix()

    fields = {
        mechanism: copy.deepcopy(manifest.overrides_for(mechanism))
        for mechanism in manifest.mechanisms()
    }
    patched = apply_plan(fields, entries, plan)

    result = Reconciliation(manifest=manifest, applied=list(patched.values()))
    for mechanism in list(fields):
        for entry in parse_overrides(fields[mechanism], mechanism):
            dependents = _dependents_for(entry, index)
            if not dependents:
                logger.info(
                    "Removing orphaned override %s from %s", entry.key, manifest.path
                )
                _delete_path(fields[mechanism], entry.selector)
                result.deletions.append(entry)
                continue

            item = result.appendix.get(entry.key)
            if item is not None:
                item.dependents = dict(sorted({**item.dependents, **dependents}.items()))
                continue

            plan_item = patched.get((mechanism, entry.selector))
            previous = _previous(entry, existing)
            if plan_item is not None:
                ledger = _security_ledger(plan_item, today)
                reason = plan_item.reason
            elif previous is not None:
                ledger = dict(previous.ledger) or {"addedDate": today}
                reason = previous.reason
            else:
                ledger = {"addedDate": today}
                reason = None
            result.appendix[entry.key] = AppendixEntry(
                package=entry.package,
                version=entry.version,
                dependents=dependents,
                reason=reason,
                ledger=ledger,
                patches=list(patches.get(entry.package, [])),
            )

    result.overrides = fields
    result.appendix = dict(sorted(result.appendix.items()))
    return result
