"""Configuration loading and validation."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError
from .models import Severity

CONFIG_FILES = [".pastoralistrc", ".pastoralistrc.json", "pastoralist.json"]

PROVIDER_TOKEN_ENV = {
    "github": "GITHUB_TOKEN",
    "snyk": "SNYK_TOKEN",
    "socket": "SOCKET_SECURITY_API_KEY",
}

ProviderName = Literal["osv", "github", "snyk", "socket"]
WorkspaceSpec = Optional[Union[Literal["workspace", "workspaces"], list[str]]]


class ProviderSettings(BaseModel):
    """A requested security provider."""
    name: ProviderName
    token: Optional[str] = None


class SecuritySettings(BaseModel):
    """Security scan configuration."""
    enabled: bool = False
    providers: list[ProviderSettings] = Field(
        default_factory=lambda: [ProviderSettings(name="osv")]
    )
    severity_threshold: Severity = Severity.MEDIUM
    timeout: float = 30.0
    osv_database: Optional[Path] = None
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    exclude_packages: list[str] = Field(default_factory=list)

    def token_for(self, provider: ProviderSettings) -> str | None:
        if provider.token:
            return provider.token
        env_var = PROVIDER_TOKEN_ENV.get(provider.name)
        return os.environ.get(env_var) if env_var else None


class Settings(BaseModel):
    """Resolved configuration for one run."""
    root: Path = Path(".")
    workspaces: WorkspaceSpec = None
    ignore: list[str] = Field(default_factory=list)
    include_dev: bool = True
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    interactive: bool = False
    force: bool = False
    dry_run: bool = False

    @property
    def root_manifest(self) -> Path:
        return self.root / "package.json"


def _providers(value: Any, token: str | None) -> list[dict]:
    names = value if isinstance(value, list) else [value]
    return [{"name": name, "token": token} for name in names]


def translate_block(block: dict[str, Any]) -> dict[str, Any]:
    """Map a ``pastoralist`` config block (camelCase) onto Settings fields."""
    data: dict[str, Any] = {}
    if "depPaths" in block:
        data["workspaces"] = block["depPaths"]
    if "ignore" in block:
        data["ignore"] = block["ignore"]

    security: dict[str, Any] = {}
    if "checkSecurity" in block:
        security["enabled"] = block["checkSecurity"]
    raw = block.get("security")
    if isinstance(raw, dict):
        if "enabled" in raw:
            security["enabled"] = raw["enabled"]
        if "provider" in raw:
            security["providers"] = _providers(raw["provider"], raw.get("securityProviderToken"))
        if "severityThreshold" in raw:
            security["severity_threshold"] = raw["severityThreshold"]
        if "excludePackages" in raw:
            security["exclude_packages"] = raw["excludePackages"]
        if "interactive" in raw:
            data["interactive"] = raw["interactive"]
        if "autoFix" in raw:
            data["force"] = raw["autoFix"]
    if security:
        data["security"] = security
    return data


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def load_external_config(root: Path) -> dict[str, Any]:
    for filename in CONFIG_FILES:
        path = root / filename
        if path.exists():
            raw = _read_json(path)
            if not isinstance(raw, dict):
                raise ConfigError(f"{path} must contain a JSON object")
            return translate_block(raw)
    return {}


def load_settings(root: Path | str = ".", overrides: dict[str, Any] | None = None) -> Settings:
    """Build Settings from config files, package.json and explicit overrides.

    Later sources win: config file, then the ``pastoralist`` block of the
    root package.json, then ``overrides`` (typically from the CLI).
    """
    root = Path(root)
    data: dict[str, Any] = {"root": root}
    data = _merge(data, load_external_config(root))

    manifest = root / "package.json"
    if manifest.exists():
        raw = _read_json(manifest)
        block = raw.get("pastoralist") if isinstance(raw, dict) else None
        if isinstance(block, dict):
            data = _merge(data, translate_block(block))

    if overrides:
        data = _merge(data, overrides)

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
