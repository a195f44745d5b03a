"""Package manager detection from lockfiles."""

from pathlib import Path

from .models import Mechanism

# Checked in order; the first lockfile found wins.
LOCKFILES = [
    ("bun.lockb", "bun"),
    ("bun.lock", "bun"),
    ("yarn.lock", "yarn"),
    ("pnpm-lock.yaml", "pnpm"),
    ("package-lock.json", "npm"),
]

_MECHANISMS = {
    "yarn": Mechanism.RESOLUTIONS,
    "pnpm": Mechanism.PNPM,
    "npm": Mechanism.OVERRIDES,
    "bun": Mechanism.OVERRIDES,
}


def identify(root: Path | str) -> str:
    """Detect the package manager used in a project directory.

    Args:
        root: Directory holding the root package.json

    Returns:
        Detected package manager: 'bun', 'yarn', 'pnpm' or 'npm'
    """
    root = Path(root)
    for filename, manager in LOCKFILES:
        if (root / filename).exists():
            return manager
    return "npm"


def mechanism_for(package_manager: str) -> Mechanism:
    """Override mechanism a package manager honours."""
    return _MECHANISMS.get(package_manager, Mechanism.OVERRIDES)
