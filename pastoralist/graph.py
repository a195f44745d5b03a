"""Dependents graph: which manifests directly declare which packages."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from .models import DependentsIndex
from .parse_node import Manifest, load_manifest

logger = logging.getLogger(__name__)


@dataclass
class Contribution:
    """What a single manifest adds to the index."""

    manifest: Manifest
    declared: dict[str, str]


def relative_identity(path: Path, root: Path) -> str:
    try:
        rel = path.resolve().parent.relative_to(root.resolve())
    except ValueError:
        return str(path.parent)
    return rel.as_posix() if rel.parts else "."


def scan_manifest(path: Path, is_root: bool, include_dev: bool = True) -> Contribution:
    """Read one manifest and collect its direct declarations."""
    manifest = load_manifest(path, is_root=is_root)
    declared = dict(manifest.dependencies)
    if include_dev:
        for name, spec in manifest.dev_dependencies.items():
            declared.setdefault(name, spec)
    return Contribution(manifest=manifest, declared=declared)


def merge_contributions(contributions: list[Contribution], root: Path) -> DependentsIndex:
    """Merge per-manifest contributions, in order, into one index."""
    index: DependentsIndex = {}
    used: set[str] = set()
    for contribution in contributions:
        manifest = contribution.manifest
        identity = manifest.name or relative_identity(manifest.path, root)
        if identity in used:
            identity = relative_identity(manifest.path, root)
        used.add(identity)
        for package, spec in contribution.declared.items():
            index.setdefault(package, {})[identity] = spec
    return index


def build_index(
    paths: list[Path],
    root: Path | str,
    include_dev: bool = True,
    max_workers: int = 8,
) -> tuple[list[Manifest], DependentsIndex]:
    """Parse manifests in parallel and build the dependents index.

    Args:
        paths: Manifest paths, root first
        root: Workspace root directory
        include_dev: Whether devDependencies count as dependents
        max_workers: Thread pool size for parsing

    Returns:
        Parsed manifests (same order as ``paths``) and the index
    """
    root = Path(root).resolve()
    if not paths:
        return [], {}

    def scan(item: tuple[int, Path]) -> Contribution:
        position, path = item
        return scan_manifest(path, is_root=position == 0, include_dev=include_dev)

    workers = max(1, min(max_workers, len(paths)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        contributions = list(executor.map(scan, enumerate(paths)))

    index = merge_contributions(contributions, root)
    logger.debug(
        "Indexed %d package(s) across %d manifest(s)", len(index), len(contributions)
    )
    return [c.manifest for c in contributions], index
