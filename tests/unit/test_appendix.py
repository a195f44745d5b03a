"""Tests for appendix reconciliation."""

import logging

import pytest

from pastoralist.appendix import appendix_item, reconcile
from pastoralist.errors import ReconciliationError
from pastoralist.graph import build_index
from pastoralist.models import Mechanism, WritePlanEntry
from pastoralist.workspaces import resolve_workspaces

TODAY = "2024-05-01"


def load(root, spec=None):
    paths = resolve_workspaces(root, spec)
    return build_index(paths, root)


class TestReconcile:
    """Test reconciliation of overrides against the dependents index."""

    def test_documents_each_override(self, tmp_path, write_manifest):
        """Should create an appendix entry with dependents and addedDate."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"lodash": "^4.17.0"},
                "overrides": {"lodash": "4.17.21"},
            }
        )
        manifests, index = load(tmp_path)
        result = reconcile(manifests[0], index, today=TODAY)
        assert result.overrides == {Mechanism.OVERRIDES: {"lodash": "4.17.21"}}
        assert result.appendix_json() == {
            "lodash@4.17.21": {
                "dependents": {"web": "^4.17.0"},
                "ledger": {"addedDate": TODAY},
            }
        }
        assert result.deletions == []

    def test_monorepo_dependents(self, monorepo):
        """Should list every workspace package that depends on the override."""
        manifests, index = load(monorepo, "workspace")
        result = reconcile(manifests[0], index, today=TODAY)
        entry = result.appendix["lodash@4.17.21"]
        assert entry.dependents == {"app": "^4.17.0", "lib": "~4.17.10"}

    def test_orphaned_override_removed(self, tmp_path, write_manifest, caplog):
        """Should delete overrides nothing depends on."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"qs": "6.5.2"},
                "overrides": {"left-pad": "1.3.0", "qs": "6.5.3"},
                "pastoralist": {
                    "appendix": {
                        "left-pad@1.3.0": {"dependents": {"web": "1.0.0"}, "ledger": {}}
                    }
                },
            }
        )
        manifests, index = load(tmp_path)
        with caplog.at_level(logging.INFO, logger="pastoralist"):
            result = reconcile(manifests[0], index, today=TODAY)
        assert result.overrides[Mechanism.OVERRIDES] == {"qs": "6.5.3"}
        assert list(result.appendix) == ["qs@6.5.3"]
        assert [d.key for d in result.deletions] == ["left-pad@1.3.0"]
        assert "left-pad@1.3.0" in caplog.text

    def test_orphaned_nested_parent_pruned(self, tmp_path, write_manifest):
        """Should drop nested overrides whose parent is no longer declared."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"qs": "6.5.2"},
                "overrides": {"react-scripts": {"json5": "2.2.2"}},
            }
        )
        manifests, index = load(tmp_path)
        result = reconcile(manifests[0], index, today=TODAY)
        assert result.overrides[Mechanism.OVERRIDES] == {}
        assert result.appendix == {}

    def test_nested_override_dependents(self, tmp_path, write_manifest):
        """Should attribute nested overrides to the parent dependency."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"react-scripts": "5.0.1"},
                "overrides": {"react-scripts": {"json5": "2.2.2"}},
            }
        )
        manifests, index = load(tmp_path)
        result = reconcile(manifests[0], index, today=TODAY)
        assert result.appendix["json5@2.2.2"].dependents == {
            "web": "react-scripts@5.0.1 (nested override)"
        }

    def test_version_change_replaces_key(self, tmp_path, write_manifest):
        """Should re-key the entry and keep its reason when the pin changes."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"lodash": "^4.17.0"},
                "overrides": {"lodash": "4.17.21"},
                "pastoralist": {
                    "appendix": {
                        "lodash@4.17.20": {
                            "dependents": {"web": "^4.17.0"},
                            "ledger": {"addedDate": "2023-01-01", "reason": "prototype pollution"},
                        }
                    }
                },
            }
        )
        manifests, index = load(tmp_path)
        result = reconcile(manifests[0], index, today=TODAY)
        assert list(result.appendix) == ["lodash@4.17.21"]
        entry = result.appendix["lodash@4.17.21"]
        assert entry.reason == "prototype pollution"
        assert entry.ledger["addedDate"] == "2023-01-01"

    def test_existing_ledger_kept(self, tmp_path, write_manifest):
        """Should not touch the ledger of an unchanged entry."""
        ledger = {"addedDate": "2023-01-01", "securityChecked": True, "reason": "CVE"}
        write_manifest(
            {
                "name": "web",
                "dependencies": {"qs": "6.5.2"},
                "overrides": {"qs": "6.5.3"},
                "pastoralist": {
                    "appendix": {"qs@6.5.3": {"dependents": {"web": "6.5.2"}, "ledger": ledger}}
                },
            }
        )
        manifests, index = load(tmp_path)
        result = reconcile(manifests[0], index, today=TODAY)
        assert appendix_item(result.appendix["qs@6.5.3"])["ledger"] == ledger

    def test_conflicting_mechanisms(self, tmp_path, write_manifest):
        """Should refuse a package pinned through two mechanisms."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"qs": "6.5.2"},
                "overrides": {"qs": "6.5.3"},
                "resolutions": {"qs": "6.5.2"},
            }
        )
        manifests, index = load(tmp_path)
        with pytest.raises(ReconciliationError):
            reconcile(manifests[0], index, today=TODAY)

    def test_plan_entry_applied_with_security_ledger(self, tmp_path, write_manifest, make_alert):
        """Should pin planned versions and record the advisory."""
        path = write_manifest({"name": "web", "dependencies": {"qs": "6.5.2"}})
        manifests, index = load(tmp_path)
        alert = make_alert(url="https://osv.dev/vulnerability/GHSA-hrpp-h998-j3pp")
        plan = [
            WritePlanEntry(
                manifest=path,
                mechanism=Mechanism.OVERRIDES,
                package="qs",
                from_version="6.5.2",
                to_version="6.5.3",
                reason="Security fix: qs",
                alert=alert,
            )
        ]
        result = reconcile(manifests[0], index, plan, today=TODAY)
        assert result.overrides == {Mechanism.OVERRIDES: {"qs": "6.5.3"}}
        assert len(result.applied) == 1
        assert appendix_item(result.appendix["qs@6.5.3"]) == {
            "dependents": {"web": "6.5.2"},
            "ledger": {
                "addedDate": TODAY,
                "securityChecked": True,
                "securityCheckDate": TODAY,
                "securityProvider": "osv",
                "cve": "CVE-2022-24999",
                "severity": "high",
                "url": "https://osv.dev/vulnerability/GHSA-hrpp-h998-j3pp",
                "reason": "Security fix: qs",
            },
        }

    def test_plan_updates_existing_pin_in_place(self, tmp_path, write_manifest, make_alert):
        """Should rewrite the existing selector rather than add a new one."""
        path = write_manifest(
            {
                "name": "web",
                "dependencies": {"qs": "6.5.2"},
                "pnpm": {"overrides": {"qs@<6.5.3": "6.5.2"}},
            }
        )
        manifests, index = load(tmp_path)
        plan = [
            WritePlanEntry(path, Mechanism.PNPM, "qs", "6.5.2", "6.5.3", "fix", make_alert())
        ]
        result = reconcile(manifests[0], index, plan, today=TODAY)
        assert result.overrides[Mechanism.PNPM] == {"qs@<6.5.3": "6.5.3"}

    def test_appendix_sorted(self, tmp_path, write_manifest):
        """Should order appendix keys deterministically."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"zod": "3.0.0", "axios": "1.0.0"},
                "overrides": {"zod": "3.22.3", "axios": "1.6.0"},
            }
        )
        manifests, index = load(tmp_path)
        result = reconcile(manifests[0], index, today=TODAY)
        assert list(result.appendix) == ["axios@1.6.0", "zod@3.22.3"]

    def test_patches_listed_on_matching_entries(self, tmp_path, write_manifest):
        """Should list patch files for the overridden package only."""
        write_manifest(
            {
                "name": "web",
                "dependencies": {"lodash": "^4.17.0", "qs": "6.5.2"},
                "overrides": {"lodash": "4.17.21", "qs": "6.5.3"},
            }
        )
        manifests, index = load(tmp_path)
        patches = {"lodash": ["patches/lodash+4.17.21.patch"]}
        result = reconcile(manifests[0], index, today=TODAY, patches=patches)
        assert appendix_item(result.appendix["lodash@4.17.21"])["patches"] == [
            "patches/lodash+4.17.21.patch"
        ]
        assert "patches" not in appendix_item(result.appendix["qs@6.5.3"])
