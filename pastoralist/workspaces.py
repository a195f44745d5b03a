"""Workspace resolution: from a workspace spec to concrete manifest paths."""

import logging
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath

from .errors import ConfigError
from .parse_node import load_manifest

logger = logging.getLogger(__name__)

AUTO_DETECT = ("workspace", "workspaces")
MANIFEST = "package.json"


def _validate_pattern(pattern: str) -> None:
    if not pattern or not pattern.strip():
        raise ConfigError("Empty workspace pattern")
    posix = PurePosixPath(pattern)
    if posix.is_absolute() or Path(pattern).is_absolute():
        raise ConfigError(f"Workspace pattern must be relative to the root: {pattern}")
    if ".." in posix.parts:
        raise ConfigError(f"Workspace pattern escapes the root: {pattern}")


def _is_excluded(path: Path, root: Path, ignore: list[str]) -> bool:
    rel = path.relative_to(root)
    if "node_modules" in rel.parts:
        return True
    current = root
    for part in rel.parts[:-1]:
        current = current / part
        if current.is_symlink():
            return True
    rel_posix = rel.as_posix()
    return any(fnmatch(rel_posix, pattern) for pattern in ignore)


def _expand(pattern: str, root: Path, ignore: list[str]) -> list[Path]:
    _validate_pattern(pattern)
    pattern = pattern.rstrip("/")
    if pattern.endswith(MANIFEST):
        candidates = [path for path in root.glob(pattern) if path.is_file()]
    else:
        candidates = [
            path / MANIFEST
            for path in root.glob(pattern)
            if path.is_dir() and (path / MANIFEST).is_file()
        ]
    return sorted(path for path in candidates if not _is_excluded(path, root, ignore))


def resolve_workspaces(
    root: Path | str,
    spec: str | list[str] | None = None,
    ignore: list[str] | None = None,
) -> list[Path]:
    """Expand a workspace spec into manifest paths, root first.

    Args:
        root: Directory holding the root package.json
        spec: None for root only, ``"workspace"`` to read the root's
            ``workspaces`` field, or explicit glob patterns
        ignore: Glob patterns (relative to root) to exclude

    Returns:
        Ordered, deduplicated list of package.json paths
    """
    root = Path(root).resolve()
    ignore = ignore or []
    root_manifest = root / MANIFEST
    if not root_manifest.is_file():
        raise ConfigError(f"No package.json found at {root}")

    if spec is None:
        return [root_manifest]

    if isinstance(spec, str):
        if spec not in AUTO_DETECT:
            raise ConfigError(f"Unknown workspace specification: {spec}")
        patterns = load_manifest(root_manifest, is_root=True).workspaces
        if not patterns:
            logger.debug("Root manifest declares no workspaces; using root only")
            return [root_manifest]
        explicit = False
    else:
        patterns = list(spec)
        explicit = True

    resolved = [root_manifest]
    seen = {root_manifest}
    for pattern in patterns:
        matches = _expand(pattern, root, ignore)
        if not matches and explicit:
            logger.warning("Workspace pattern matched no package.json files: %s", pattern)
        for path in matches:
            if path not in seen:
                seen.add(path)
                resolved.append(path)

    logger.debug("Resolved %d manifest(s)", len(resolved))
    return resolved
