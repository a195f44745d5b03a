"""Tests for workspace resolution."""

import logging

import pytest

from pastoralist.errors import ConfigError
from pastoralist.workspaces import resolve_workspaces


class TestResolveWorkspaces:
    """Test expansion of workspace specs into manifest paths."""

    def test_root_only_by_default(self, monorepo):
        """Should return only the root manifest without workspace patterns."""
        assert resolve_workspaces(monorepo) == [monorepo.resolve() / "package.json"]

    def test_auto_detect_from_root_manifest(self, monorepo):
        """Should read the root workspaces field."""
        root = monorepo.resolve()
        assert resolve_workspaces(monorepo, "workspace") == [
            root / "package.json",
            root / "packages/app/package.json",
            root / "packages/lib/package.json",
        ]

    def test_auto_detect_without_workspaces_field(self, tmp_path, write_manifest):
        """Should fall back to the root when none are declared."""
        write_manifest({"name": "solo"})
        assert resolve_workspaces(tmp_path, "workspaces") == [tmp_path.resolve() / "package.json"]

    def test_explicit_patterns(self, monorepo):
        """Should expand explicit globs in order, without duplicates."""
        root = monorepo.resolve()
        paths = resolve_workspaces(monorepo, ["packages/lib", "packages/*"])
        assert paths == [
            root / "package.json",
            root / "packages/lib/package.json",
            root / "packages/app/package.json",
        ]

    def test_ignore_patterns(self, monorepo):
        """Should drop manifests matching an ignore glob."""
        paths = resolve_workspaces(monorepo, ["packages/*"], ignore=["packages/lib/*"])
        assert [p.parent.name for p in paths[1:]] == ["app"]

    def test_node_modules_excluded(self, monorepo, write_manifest):
        """Should never descend into node_modules."""
        write_manifest({"name": "vendored"}, "packages/app/node_modules/vendored")
        paths = resolve_workspaces(monorepo, ["packages/**"])
        assert all("node_modules" not in p.parts for p in paths)
        assert len(paths) == 3

    def test_symlinked_directories_excluded(self, monorepo, write_manifest):
        """Should not follow a symlinked workspace directory."""
        write_manifest({"name": "elsewhere"}, "elsewhere")
        (monorepo / "packages" / "linked").symlink_to(
            monorepo / "elsewhere", target_is_directory=True
        )
        root = monorepo.resolve()
        paths = resolve_workspaces(monorepo, "workspace")
        assert root / "packages/linked/package.json" not in paths
        assert [p.parent.name for p in paths[1:]] == ["app", "lib"]

    def test_empty_match_logs_warning(self, monorepo, caplog):
        """Should warn when an explicit pattern matches nothing."""
        with caplog.at_level(logging.WARNING):
            paths = resolve_workspaces(monorepo, ["apps/*"])
        assert len(paths) == 1
        assert "apps/*" in caplog.text

    def test_pattern_escaping_root_rejected(self, monorepo):
        """Should reject patterns that leave the root."""
        with pytest.raises(ConfigError):
            resolve_workspaces(monorepo, ["../elsewhere/*"])

    def test_absolute_pattern_rejected(self, monorepo):
        """Should reject absolute patterns."""
        with pytest.raises(ConfigError):
            resolve_workspaces(monorepo, ["/packages/*"])

    def test_missing_root_manifest(self, tmp_path):
        """Should raise ConfigError without a root package.json."""
        with pytest.raises(ConfigError):
            resolve_workspaces(tmp_path)
