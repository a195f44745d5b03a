"""One end-to-end run: resolve, index, detect patches, scan, plan, reconcile, write."""

import logging
from pathlib import Path

from .aggregate import build_providers, collect_targets, scan
from .appendix import reconcile
from .config import Settings
from .detect import identify
from .errors import ReconciliationError
from .graph import build_index
from .models import Deletion, RunResult, WritePlan
from .patches import detect_patches, find_unused_patches
from .planner import DecisionFn, confirm, propose
from .scanners import SecurityProvider
from .workspaces import resolve_workspaces
from .writer import commit, render

logger = logging.getLogger(__name__)


def run(
    settings: Settings,
    decide: DecisionFn | None = None,
    providers: list[SecurityProvider] | None = None,
    today: str | None = None,
) -> RunResult:
    """Reconcile every manifest in the workspace and write the results.

    Args:
        settings: Resolved configuration
        decide: Decision function for interactive confirmation
        providers: Provider instances; built from settings when omitted
        today: ISO date recorded for new appendix entries

    Returns:
        RunResult describing what was found, planned and written
    """
    root = Path(settings.root).resolve()
    paths = resolve_workspaces(root, settings.workspaces, settings.ignore)
    manifests, index = build_index(paths, root, include_dev=settings.include_dev)
    result = RunResult(manifests=paths, dry_run=settings.dry_run)

    patches = detect_patches(root)
    if patches:
        logger.debug("Found patches for: %s", ", ".join(sorted(patches)))
    result.unused_patches = find_unused_patches(patches, index)

    accepted = WritePlan()
    if settings.security.enabled:
        security = settings.security
        if providers is None:
            providers = build_providers(settings.model_copy(update={"root": root}))
        targets = collect_targets(manifests, security.exclude_packages)
        logger.debug("Scanning %d package(s) with %d provider(s)", len(targets), len(providers))
        result.scan = scan(
            providers,
            targets,
            security.severity_threshold,
            security.timeout,
            security.exclude_packages,
        )
        proposal = propose(result.scan.alerts, manifests, index, identify(root))
        result.proposed = proposal.plan
        if settings.dry_run:
            # no prompting in a dry run; show what accepting would change
            if settings.force or settings.interactive:
                accepted = WritePlan(list(proposal.plan.entries))
        else:
            accepted = confirm(proposal.plan, settings.interactive, settings.force, decide)

    staged: dict[Path, str] = {}
    for manifest in manifests:
        plan_items = accepted.for_manifest(manifest.path)
        if not (plan_items or manifest.override_entries() or manifest.appendix()):
            continue
        try:
            reconciliation = reconcile(manifest, index, plan_items, today, patches)
        except ReconciliationError as e:
            logger.error("%s", e)
            result.errors[manifest.path] = str(e)
            continue
        result.deletions.extend(
            Deletion(manifest.path, entry) for entry in reconciliation.deletions
        )
        result.applied.entries.extend(reconciliation.applied)
        text = render(reconciliation)
        if text is not None:
            staged[manifest.path] = text

    result.changed = list(staged)
    if staged and not settings.dry_run:
        commit(staged)
        result.written = True
    return result
