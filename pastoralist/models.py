"""Core data models for Pastoralist."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

# package name -> dependent identity -> declared range
DependentsIndex = dict[str, dict[str, str]]


class Severity(str, Enum):
    """Ordered alert severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Mechanism(str, Enum):
    """Override mechanism and the manifest field it lives in."""

    OVERRIDES = "overrides"  # npm, bun
    RESOLUTIONS = "resolutions"  # yarn
    PNPM = "pnpm"  # pnpm.overrides

    @property
    def field(self) -> str:
        return "pnpm.overrides" if self is Mechanism.PNPM else self.value


@dataclass(frozen=True)
class OverrideEntry:
    """A single pinned version declared in one of the override fields."""

    package: str
    version: str
    mechanism: Mechanism
    selector: tuple[str, ...]  # raw keys from the mechanism root to the value
    parent: str | None = None  # set for nested / "a>b" / "a/b" selectors

    @property
    def key(self) -> str:
        return f"{self.package}@{self.version}"

    @property
    def justified_by(self) -> str:
        """Package whose direct declaration keeps this override alive."""
        return self.parent or self.package


@dataclass
class AppendixEntry:
    """Documentation of why one pinned package@version exists."""

    package: str
    version: str
    dependents: dict[str, str] = field(default_factory=dict)
    reason: str | None = None
    ledger: dict[str, Any] = field(default_factory=dict)
    patches: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.package}@{self.version}"

    @property
    def is_orphaned(self) -> bool:
        return not self.dependents


@dataclass
class SecurityAlert:
    """A vulnerability report normalized across providers."""

    package_name: str
    current_version: str
    severity: Severity
    title: str
    provider: str
    vulnerable_versions: str = ""
    description: str | None = None
    cve: str | None = None
    patched_version: str | None = None
    url: str | None = None
    sources: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.sources:
            self.sources = [self.provider]

    @property
    def fix_available(self) -> bool:
        return bool(self.patched_version)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.package_name, self.cve or self.title, self.current_version)


@dataclass(frozen=True)
class ScanTarget:
    """A package@version submitted to security providers."""

    name: str
    version: str


@dataclass
class WritePlanEntry:
    """One proposed override write."""

    manifest: Path
    mechanism: Mechanism
    package: str
    from_version: str | None
    to_version: str
    reason: str
    alert: SecurityAlert | None = None


@dataclass
class WritePlan:
    """Ordered set of override writes for one run."""

    entries: list[WritePlanEntry] = field(default_factory=list)

    def for_manifest(self, path: Path) -> list[WritePlanEntry]:
        return [entry for entry in self.entries if entry.manifest == path]

    def __bool__(self):
        return bool(self.entries)

    def __len__(self):
        return len(self.entries)


@dataclass(frozen=True)
class Decision:
    """Outcome of confirming a single write plan entry."""

    action: str  # accept, reject, edit
    reason: str | None = None

    @classmethod
    def accept(cls) -> "Decision":
        return cls("accept")

    @classmethod
    def reject(cls) -> "Decision":
        return cls("reject")

    @classmethod
    def edit(cls, reason: str) -> "Decision":
        return cls("edit", reason)


@dataclass
class ProviderResult:
    """Outcome of running one provider."""

    provider: str
    status: str  # ok, unavailable
    alerts: list[SecurityAlert] = field(default_factory=list)
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class ScanReport:
    """Aggregated, filtered security scan output."""

    alerts: list[SecurityAlert]
    results: list[ProviderResult]
    threshold: Severity = Severity.LOW

    @property
    def no_data(self) -> bool:
        return not any(result.ok for result in self.results)

    @property
    def unavailable(self) -> list[ProviderResult]:
        return [result for result in self.results if not result.ok]


@dataclass
class Deletion:
    """An orphaned override removed during reconciliation."""

    manifest: Path
    entry: OverrideEntry


@dataclass
class RunResult:
    """Everything one invocation computed and did."""

    manifests: list[Path] = field(default_factory=list)
    changed: list[Path] = field(default_factory=list)
    written: bool = False
    dry_run: bool = False
    deletions: list[Deletion] = field(default_factory=list)
    proposed: WritePlan = field(default_factory=WritePlan)
    applied: WritePlan = field(default_factory=WritePlan)
    scan: ScanReport | None = None
    errors: dict[Path, str] = field(default_factory=dict)
    unused_patches: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.errors:
            return 1
        if self.scan is not None and self.scan.no_data:
            return 1
        if self.dry_run and self.changed:
            return 2
        return 0
