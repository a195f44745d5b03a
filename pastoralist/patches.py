"""patch-package patch file detection."""

import logging
from pathlib import Path

from .models import DependentsIndex

logger = logging.getLogger(__name__)

PATCH_PATTERNS = [
    "patches/*.patch",
    ".patches/*.patch",
    "*.patch",
    "patches/**/*.patch",
]

PatchMap = dict[str, list[str]]


def package_for_patch(filename: str) -> str | None:
    """Package a patch file belongs to.

    patch-package names files ``name+version.patch`` and
    ``@scope+name+version.patch``; a name without ``+`` is taken whole.
    """
    if not filename.endswith(".patch"):
        return None
    stem = filename[: -len(".patch")]
    if "+" not in stem:
        return stem or None
    parts = stem.split("+")
    if stem.startswith("@") and len(parts) >= 2:
        return f"{parts[0]}/{parts[1]}"
    return parts[0] or None


def detect_patches(root: Path | str) -> PatchMap:
    """Map package names to patch files found under ``root``.

    Args:
        root: Workspace root directory

    Returns:
        Package name -> sorted patch paths relative to the root
    """
    root = Path(root)
    found: set[Path] = set()
    try:
        for pattern in PATCH_PATTERNS:
            found.update(path for path in root.glob(pattern) if path.is_file())
    except OSError as e:
        logger.warning("Could not scan %s for patches: %s", root, e)
        return {}

    patches: PatchMap = {}
    for path in sorted(found):
        package = package_for_patch(path.name)
        if package is None:
            continue
        relative = path.relative_to(root).as_posix()
        logger.debug("Found patch for %s: %s", package, relative)
        patches.setdefault(package, []).append(relative)
    return patches


def find_unused_patches(patches: PatchMap, index: DependentsIndex) -> list[str]:
    """Patch files for packages no manifest in the workspace declares."""
    unused = []
    for package, files in sorted(patches.items()):
        if package not in index:
            unused.extend(files)
    return unused
