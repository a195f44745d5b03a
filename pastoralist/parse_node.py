"""Node.js package.json parsing and field-level rewriting."""

import json
import re
from dataclasses import dataclass, field
from json.decoder import scanstring
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .models import AppendixEntry, Mechanism, OverrideEntry

APPENDIX_NAMESPACE = "pastoralist"

_DECODER = json.JSONDecoder()
_WHITESPACE = re.compile(r"\s*")
_INDENT = re.compile(r"^([ \t]+)\S", re.MULTILINE)
_DELETE = object()


@dataclass
class Manifest:
    """A parsed package.json.

    ``raw`` is read-only for callers; edits go through :class:`ManifestEdit`.
    """

    path: Path
    raw: dict[str, Any]
    text: str
    indent: str = "  "
    newline: str = "\n"
    is_root: bool = False

    @property
    def name(self) -> str | None:
        name = self.raw.get("name")
        return name if isinstance(name, str) and name else None

    @property
    def dependencies(self) -> dict[str, str]:
        return _string_map(self.raw.get("dependencies"))

    @property
    def dev_dependencies(self) -> dict[str, str]:
        return _string_map(self.raw.get("devDependencies"))

    @property
    def overrides(self) -> dict[str, Any]:
        value = self.raw.get("overrides")
        return dict(value) if isinstance(value, dict) else {}

    @property
    def resolutions(self) -> dict[str, Any]:
        value = self.raw.get("resolutions")
        return dict(value) if isinstance(value, dict) else {}

    @property
    def pnpm_overrides(self) -> dict[str, Any]:
        pnpm = self.raw.get("pnpm")
        if isinstance(pnpm, dict) and isinstance(pnpm.get("overrides"), dict):
            return dict(pnpm["overrides"])
        return {}

    @property
    def pastoralist(self) -> dict[str, Any]:
        value = self.raw.get(APPENDIX_NAMESPACE)
        return dict(value) if isinstance(value, dict) else {}

    @property
    def workspaces(self) -> list[str]:
        value = self.raw.get("workspaces")
        if isinstance(value, dict):
            value = value.get("packages")
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str)]
        return []

    def overrides_for(self, mechanism: Mechanism) -> dict[str, Any]:
        if mechanism is Mechanism.OVERRIDES:
            return self.overrides
        if mechanism is Mechanism.RESOLUTIONS:
            return self.resolutions
        return self.pnpm_overrides

    def mechanisms(self) -> list[Mechanism]:
        """Override mechanisms whose field exists in this manifest."""
        present = []
        if isinstance(self.raw.get("overrides"), dict):
            present.append(Mechanism.OVERRIDES)
        pnpm = self.raw.get("pnpm")
        if isinstance(pnpm, dict) and isinstance(pnpm.get("overrides"), dict):
            present.append(Mechanism.PNPM)
        if isinstance(self.raw.get("resolutions"), dict):
            present.append(Mechanism.RESOLUTIONS)
        return present

    def override_entries(self) -> list[OverrideEntry]:
        entries: list[OverrideEntry] = []
        for mechanism in self.mechanisms():
            entries.extend(parse_overrides(self.overrides_for(mechanism), mechanism))
        return entries

    def appendix(self) -> dict[str, AppendixEntry]:
        raw = self.pastoralist.get("appendix")
        if not isinstance(raw, dict):
            return {}
        appendix = {}
        for key, item in raw.items():
            package, version = split_key(key)
            if not isinstance(item, dict):
                item = {}
            ledger = dict(item.get("ledger") or {})
            reason = ledger.get("reason") or item.get("reason")
            appendix[key] = AppendixEntry(
                package=package,
                version=version,
                dependents=_string_map(item.get("dependents")),
                reason=reason,
                ledger=ledger,
                patches=_string_list(item.get("patches")),
            )
        return appendix


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {k: v for k, v in value.items() if isinstance(v, str)}


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def split_key(key: str) -> tuple[str, str]:
    """Split ``name@version`` keeping the scope of ``@scope/name@version``."""
    at = key.rfind("@")
    if at <= 0:
        return key, ""
    return key[:at], key[at + 1:]


def strip_selector_range(name: str) -> str:
    """``lodash@^4`` -> ``lodash``; ``@scope/pkg@1`` -> ``@scope/pkg``."""
    at = name.find("@", 1)
    return name[:at] if at > 0 else name


def _path_segments(selector: str) -> list[str]:
    parts = selector.split("/")
    segments = []
    i = 0
    while i < len(parts):
        part = parts[i]
        if part.startswith("@") and i + 1 < len(parts):
            segments.append(f"{part}/{parts[i + 1]}")
            i += 2
        else:
            segments.append(part)
            i += 1
    return [segment for segment in segments if segment and segment != "**"]


def _walk_nested(
    value: Any,
    selector: tuple[str, ...],
    parent: str,
    mechanism: Mechanism,
) -> list[OverrideEntry]:
    entries = []
    for key, sub in value.items():
        path = selector + (key,)
        if key == ".":
            if isinstance(sub, str):
                package = strip_selector_range(selector[-1])
                owner = None if len(selector) == 1 else parent
                entries.append(OverrideEntry(package, sub, mechanism, path, owner))
        elif isinstance(sub, str):
            entries.append(
                OverrideEntry(strip_selector_range(key), sub, mechanism, path, parent)
            )
        elif isinstance(sub, dict):
            entries.extend(_walk_nested(sub, path, parent, mechanism))
    return entries


def parse_overrides(overrides: dict[str, Any], mechanism: Mechanism) -> list[OverrideEntry]:
    """Flatten one override field into entries.

    Handles npm nesting (``{"a": {"b": "1.0.0"}}`` and ``"."``), pnpm
    ``a>b`` selectors and yarn ``a/b`` or ``**/b`` resolution paths.
    """
    entries: list[OverrideEntry] = []
    for key, value in overrides.items():
        if isinstance(value, dict):
            if mechanism is Mechanism.OVERRIDES:
                entries.extend(
                    _walk_nested(value, (key,), strip_selector_range(key), mechanism)
                )
            continue
        if not isinstance(value, str):
            continue

        parent = None
        if mechanism is Mechanism.PNPM and ">" in key:
            names = [strip_selector_range(part.strip()) for part in key.split(">")]
            package, parent = names[-1], names[0]
        elif mechanism is Mechanism.RESOLUTIONS:
            segments = _path_segments(key)
            package = strip_selector_range(segments[-1]) if segments else key
            if len(segments) > 1:
                parent = strip_selector_range(segments[0])
        else:
            package = strip_selector_range(key)
        entries.append(OverrideEntry(package, value, mechanism, (key,), parent))
    return entries


def detect_indent(text: str) -> str:
    match = _INDENT.search(text)
    return match.group(1) if match else "  "


def detect_newline(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def parse_package_json(content: str, path: Path | str = "package.json", is_root: bool = False) -> Manifest:
    """Parse package.json content into Manifest.

    Args:
        content: The package.json file content
        path: Where the content came from
        is_root: Whether this is the workspace root manifest

    Returns:
        Parsed Manifest object
    """
    try:
        raw = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} does not contain a JSON object")
    return Manifest(
        path=Path(path),
        raw=raw,
        text=content,
        indent=detect_indent(content),
        newline=detect_newline(content),
        is_root=is_root,
    )


def load_manifest(path: Path, is_root: bool = False) -> Manifest:
    try:
        content = path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    return parse_package_json(content, path, is_root=is_root)


@dataclass
class _Member:
    key: str
    key_start: int
    value_start: int
    value_end: int


def _skip(text: str, idx: int) -> int:
    return _WHITESPACE.match(text, idx).end()


def _scan_members(text: str) -> tuple[list[_Member], int, int]:
    """Locate top-level members; returns members, '{' index, '}' index."""
    open_idx = _skip(text, 0)
    if text[open_idx:open_idx + 1] != "{":
        raise ValueError("manifest is not a JSON object")
    idx = _skip(text, open_idx + 1)
    members: list[_Member] = []
    if text[idx] == "}":
        return members, open_idx, idx
    while True:
        if text[idx] != '"':
            raise ValueError(f"expected key at offset {idx}")
        key_start = idx
        key, idx = scanstring(text, idx + 1)
        idx = _skip(text, idx)
        if text[idx] != ":":
            raise ValueError(f"expected ':' at offset {idx}")
        value_start = _skip(text, idx + 1)
        _, value_end = _DECODER.raw_decode(text, value_start)
        members.append(_Member(key, key_start, value_start, value_end))
        idx = _skip(text, value_end)
        if text[idx] == ",":
            idx = _skip(text, idx + 1)
            continue
        if text[idx] == "}":
            return members, open_idx, idx
        raise ValueError(f"unexpected character at offset {idx}")


@dataclass
class ManifestEdit:
    """Accumulates top-level field edits and serializes them in one pass.

    Only edited members are re-rendered; every other byte of the original
    text is carried over unchanged.
    """

    manifest: Manifest
    _edits: dict[str, Any] = field(default_factory=dict)

    def set(self, key: str, value: Any) -> None:
        self._edits[key] = value

    def delete(self, key: str) -> None:
        self._edits[key] = _DELETE

    @property
    def pending(self) -> dict[str, Any]:
        return dict(self._edits)

    def _dump(self, value: Any) -> str:
        indent = self.manifest.indent
        rendered = json.dumps(value, indent=indent, ensure_ascii=False)
        return rendered.replace("\n", self.manifest.newline + indent)

    def render(self) -> str:
        text = self.manifest.text
        edits = {
            key: value
            for key, value in self._edits.items()
            if not (value is _DELETE and key not in self.manifest.raw)
        }
        if not edits:
            return text

        members, open_idx, close_idx = _scan_members(text)
        newline = self.manifest.newline
        default_sep = "," + newline + self.manifest.indent
        if len(members) > 1:
            default_sep = text[members[0].value_end:members[1].key_start]

        pieces: list[tuple[str, str | None]] = []  # (member text, original separator)
        previous_end = None
        for member in members:
            separator = text[previous_end:member.key_start] if previous_end is not None else None
            previous_end = member.value_end
            if member.key in edits:
                value = edits.pop(member.key)
                if value is _DELETE:
                    continue
                body = text[member.key_start:member.value_start] + self._dump(value)
            else:
                body = text[member.key_start:member.value_end]
            pieces.append((body, separator))

        for key, value in edits.items():
            if value is _DELETE:
                continue
            body = json.dumps(key, ensure_ascii=False) + ": " + self._dump(value)
            pieces.append((body, None))

        if not pieces:
            return text[:open_idx + 1] + "}" + text[close_idx + 1:]

        out = []
        for position, (body, separator) in enumerate(pieces):
            if position:
                out.append(separator if separator is not None else default_sep)
            out.append(body)

        if members:
            head = text[:members[0].key_start]
            tail = text[members[-1].value_end:]
        else:
            head = text[:open_idx + 1] + newline + self.manifest.indent
            tail = newline + text[close_idx:]
        return head + "".join(out) + tail
