"""Pytest configuration and fixtures."""

import asyncio
import json

import pytest

from pastoralist.models import SecurityAlert, Severity
from pastoralist.scanners import SecurityProvider


@pytest.fixture
def sample_package_json():
    """Sample package.json content for testing."""
    return """{
  "name": "test-project",
  "version": "1.0.0",
  "dependencies": {
    "express": "^4.18.0",
    "lodash": "~4.17.21"
  },
  "overrides": {
    "lodash": "4.17.21"
  }
}
"""


@pytest.fixture
def write_manifest(tmp_path):
    """Write a package.json (dict or raw text) under tmp_path and return its path."""

    def _write(data, directory=""):
        folder = tmp_path / directory if directory else tmp_path
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / "package.json"
        text = data if isinstance(data, str) else json.dumps(data, indent=2) + "\n"
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def monorepo(tmp_path, write_manifest):
    """A root plus two workspace packages that both depend on lodash."""
    write_manifest(
        {
            "name": "root",
            "private": True,
            "workspaces": ["packages/*"],
            "overrides": {"lodash": "4.17.21"},
        }
    )
    write_manifest(
        {"name": "app", "dependencies": {"lodash": "^4.17.0"}}, "packages/app"
    )
    write_manifest(
        {"name": "lib", "devDependencies": {"lodash": "~4.17.10"}}, "packages/lib"
    )
    return tmp_path


class StaticProvider(SecurityProvider):
    """Provider returning canned alerts, optionally after a delay or with an error."""

    def __init__(self, name, alerts=None, delay=0.0, error=None):
        super().__init__()
        self.name = name
        self.alerts = alerts or []
        self.delay = delay
        self.error = error
        self.calls = []

    async def scan(self, targets):
        self.calls.append(list(targets))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.alerts)

    def extract_patched_version(self, raw):
        return raw.get("patched_version")

    def to_alert(self, raw, current_version=None):
        return SecurityAlert(provider=self.name, **raw)


@pytest.fixture
def static_provider():
    """Factory for StaticProvider instances."""
    return StaticProvider


@pytest.fixture
def make_alert():
    """Factory for SecurityAlert objects with sensible defaults."""

    def _make(**kwargs):
        defaults = {
            "package_name": "qs",
            "current_version": "6.5.2",
            "severity": Severity.HIGH,
            "title": "Prototype pollution in qs",
            "provider": "osv",
            "cve": "CVE-2022-24999",
            "patched_version": "6.5.3",
        }
        defaults.update(kwargs)
        return SecurityAlert(**defaults)

    return _make
