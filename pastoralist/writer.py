"""Serialize reconciled manifests and commit them atomically."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from .appendix import Reconciliation
from .errors import WriteError
from .models import Mechanism
from .parse_node import APPENDIX_NAMESPACE, ManifestEdit

logger = logging.getLogger(__name__)


def build_edit(reconciliation: Reconciliation) -> ManifestEdit:
    """Collect the top-level field edits a reconciliation implies."""
    manifest = reconciliation.manifest
    edit = ManifestEdit(manifest)
    present = manifest.mechanisms()

    for mechanism, value in reconciliation.overrides.items():
        current = manifest.overrides_for(mechanism) if mechanism in present else None
        if value == current:
            continue
        if mechanism is Mechanism.PNPM:
            pnpm = manifest.raw.get("pnpm")
            pnpm = dict(pnpm) if isinstance(pnpm, dict) else {}
            if value:
                pnpm["overrides"] = value
            else:
                pnpm.pop("overrides", None)
            if pnpm:
                edit.set("pnpm", pnpm)
            else:
                edit.delete("pnpm")
        elif value:
            edit.set(mechanism.value, value)
        else:
            edit.delete(mechanism.value)

    block: dict[str, Any] = manifest.pastoralist
    appendix = reconciliation.appendix_json()
    if appendix:
        block["appendix"] = appendix
    else:
        block.pop("appendix", None)
    if block != manifest.raw.get(APPENDIX_NAMESPACE, {}):
        if block:
            edit.set(APPENDIX_NAMESPACE, block)
        else:
            edit.delete(APPENDIX_NAMESPACE)
    return edit


def render(reconciliation: Reconciliation) -> str | None:
    """New manifest text, or None when nothing changes."""
    text = build_edit(reconciliation).render()
    return None if text == reconciliation.manifest.text else text


def _cleanup(paths: list[Path]) -> None:
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove staged file %s: %s", path, e)


def commit(staged: dict[Path, str]) -> list[Path]:
    """Write every manifest or none of them.

    Each new text is first written to a temporary file beside its target.
    Only once all of them exist are they moved into place.

    Args:
        staged: Target path -> new content

    Returns:
        Paths that were replaced
    """
    temporaries: list[tuple[Path, Path]] = []
    try:
        for target, text in staged.items():
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                newline="",
                dir=target.parent,
                prefix=f".{target.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                temporaries.append((Path(handle.name), target))
                handle.write(text)
            shutil.copymode(target, handle.name)
    except OSError as e:
        _cleanup([tmp for tmp, _ in temporaries])
        raise WriteError(f"Failed to stage manifest updates: {e}") from e

    written = []
    for position, (tmp, target) in enumerate(temporaries):
        try:
            os.replace(tmp, target)
        except OSError as e:
            _cleanup([t for t, _ in temporaries[position:]])
            raise WriteError(f"Failed to replace {target}: {e}") from e
        written.append(target)
        logger.debug("Wrote %s", target)
    return written
