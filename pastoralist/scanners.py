"""Security provider interface shared by all vulnerability sources.

Every provider turns its own response shape into :class:`SecurityAlert`
objects. Providers that depend on an executable, a network service or a
credential raise :class:`ProviderUnavailable` instead of returning partial
data; the aggregator treats that as "no alerts from this provider".
"""

import asyncio
import json
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from .errors import ProviderUnavailable
from .models import ScanTarget, SecurityAlert, Severity
from .versions import compare_versions

DEFAULT_TIMEOUT = 30.0

SEVERITY_ALIASES = {
    "info": Severity.LOW,
    "low": Severity.LOW,
    "moderate": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "middle": Severity.MEDIUM,
    "high": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


class SecurityProvider(ABC):
    """Abstract base class for vulnerability sources.

    Implementations must provide:
    - name: Identifier used in configuration (e.g. 'osv', 'snyk')
    - scan(): Produce alerts for a set of package@version targets
    - extract_patched_version(): Pull the fix version out of a raw record
    - to_alert(): Convert a raw record into a SecurityAlert
    """

    name: str = ""

    def __init__(self, root: Path | str = ".", token: str | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.root = Path(root)
        self.token = token
        self.timeout = timeout

    @abstractmethod
    async def scan(self, targets: list[ScanTarget]) -> list[SecurityAlert]:
        """Return alerts for the given targets."""
        ...

    @abstractmethod
    def extract_patched_version(self, raw: dict[str, Any]) -> str | None:
        ...

    @abstractmethod
    def to_alert(self, raw: dict[str, Any], current_version: str | None = None) -> SecurityAlert:
        ...

    def normalize_severity(self, raw: Any) -> Severity:
        """Map a vendor severity onto the shared scale.

        Anything unrecognized becomes ``medium`` so an alert is never
        dropped because its severity could not be parsed.
        """
        if isinstance(raw, str):
            return SEVERITY_ALIASES.get(raw.strip().lower(), Severity.MEDIUM)
        return Severity.MEDIUM

    def unavailable(self, message: str) -> ProviderUnavailable:
        return ProviderUnavailable(self.name, message)


def select_fix(candidates: list[str], current: str | None = None) -> str | None:
    """Pick the lowest fixed version above ``current`` (or the highest one)."""
    candidates = [c for c in candidates if isinstance(c, str) and c]
    if not candidates:
        return None
    ordered = sorted(candidates, key=_VersionKey)
    if current:
        for candidate in ordered:
            if compare_versions(candidate, current) > 0:
                return candidate
    return ordered[-1]


class _VersionKey:
    __slots__ = ("version",)

    def __init__(self, version: str):
        self.version = version

    def __lt__(self, other: "_VersionKey") -> bool:
        return compare_versions(self.version, other.version) < 0


def pick_patched_version(
    fixed: str | list[str] | None,
    upgrade_path: list[Any] | None = None,
    current: str | None = None,
) -> str | None:
    """Explicit fixed version first, then the tail of an upgrade path."""
    if isinstance(fixed, str) and fixed:
        return fixed
    if isinstance(fixed, list):
        chosen = select_fix(fixed, current)
        if chosen:
            return chosen
    if upgrade_path:
        last = upgrade_path[-1]
        if isinstance(last, str) and last:
            at = last.rfind("@")
            return last[at + 1:] if at > 0 else last
    return None


async def run_cli(
    provider: str,
    args: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    ok_codes: tuple[int, ...] = (0,),
) -> str:
    """Run an external command and return its stdout.

    Raises ProviderUnavailable when the binary is missing or the exit code
    is not in ``ok_codes``. The child is killed if the caller is cancelled.
    """
    executable = shutil.which(args[0])
    if executable is None:
        raise ProviderUnavailable(provider, f"{args[0]} not found on PATH")

    process = await asyncio.create_subprocess_exec(
        executable,
        *args[1:],
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd),
        env={**os.environ, **env} if env else None,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise

    if process.returncode not in ok_codes:
        detail = stderr.decode("utf-8", errors="replace").strip()[:200]
        raise ProviderUnavailable(
            provider, f"{args[0]} exited with {process.returncode}: {detail}"
        )
    return stdout.decode("utf-8", errors="replace")


def parse_json_output(provider: str, output: str) -> Any:
    """Parse one or more concatenated JSON documents from CLI output."""
    decoder = json.JSONDecoder()
    documents = []
    idx = 0
    output = output.strip()
    try:
        while idx < len(output):
            document, idx = decoder.raw_decode(output, idx)
            documents.append(document)
            while idx < len(output) and output[idx].isspace():
                idx += 1
    except json.JSONDecodeError as e:
        raise ProviderUnavailable(provider, f"unparseable output: {e}") from e
    if not documents:
        raise ProviderUnavailable(provider, "empty output")
    return documents[0] if len(documents) == 1 else documents
