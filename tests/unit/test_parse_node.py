"""Tests for package.json parsing and field rewriting."""

import json

import pytest

from pastoralist.errors import ConfigError
from pastoralist.models import Mechanism, OverrideEntry
from pastoralist.parse_node import (
    ManifestEdit,
    parse_overrides,
    parse_package_json,
    split_key,
    strip_selector_range,
)


class TestParseOverrides:
    """Test flattening of the three override mechanisms."""

    def test_flat_npm_overrides(self):
        """Should parse plain name -> version pairs."""
        entries = parse_overrides({"lodash": "4.17.21"}, Mechanism.OVERRIDES)
        assert entries == [
            OverrideEntry("lodash", "4.17.21", Mechanism.OVERRIDES, ("lodash",), None)
        ]

    def test_nested_npm_overrides(self):
        """Should attribute nested pins to their parent package."""
        entries = parse_overrides(
            {"react-scripts": {".": "5.0.1", "json5": "2.2.2"}}, Mechanism.OVERRIDES
        )
        assert entries == [
            OverrideEntry("react-scripts", "5.0.1", Mechanism.OVERRIDES, ("react-scripts", "."), None),
            OverrideEntry("json5", "2.2.2", Mechanism.OVERRIDES, ("react-scripts", "json5"), "react-scripts"),
        ]

    def test_nested_selector_with_range(self):
        """Should strip the range from a nested parent selector."""
        entries = parse_overrides({"foo@^1.0.0": {"bar": "2.0.0"}}, Mechanism.OVERRIDES)
        assert entries[0].package == "bar"
        assert entries[0].parent == "foo"

    def test_pnpm_parent_selector(self):
        """Should split pnpm 'a>b' selectors."""
        entries = parse_overrides({"webpack>minimist": "1.2.6", "qs": "6.5.3"}, Mechanism.PNPM)
        assert entries[0].package == "minimist"
        assert entries[0].parent == "webpack"
        assert entries[1].package == "qs"
        assert entries[1].parent is None

    def test_yarn_resolution_paths(self):
        """Should parse yarn glob and scoped resolution paths."""
        entries = parse_overrides(
            {"**/minimist": "1.2.6", "@babel/core/json5": "2.2.2"},
            Mechanism.RESOLUTIONS,
        )
        assert entries[0].package == "minimist"
        assert entries[0].parent is None
        assert entries[1].package == "json5"
        assert entries[1].parent == "@babel/core"

    def test_ignores_non_string_values(self):
        """Should skip values that are neither strings nor objects."""
        assert parse_overrides({"a": 1, "b": None}, Mechanism.OVERRIDES) == []


class TestKeys:
    """Test name@version key handling."""

    def test_split_key_scoped(self):
        """Should keep the scope when splitting."""
        assert split_key("@scope/pkg@1.0.0") == ("@scope/pkg", "1.0.0")
        assert split_key("lodash@4.17.21") == ("lodash", "4.17.21")

    def test_strip_selector_range(self):
        """Should drop a trailing range from a selector."""
        assert strip_selector_range("lodash@^4") == "lodash"
        assert strip_selector_range("@scope/pkg@1") == "@scope/pkg"
        assert strip_selector_range("@scope/pkg") == "@scope/pkg"


class TestManifest:
    """Test the Manifest model."""

    def test_parse_package_json(self, sample_package_json):
        """Should expose typed views of the manifest."""
        manifest = parse_package_json(sample_package_json, "package.json", is_root=True)
        assert manifest.name == "test-project"
        assert manifest.dependencies == {"express": "^4.18.0", "lodash": "~4.17.21"}
        assert manifest.mechanisms() == [Mechanism.OVERRIDES]
        assert manifest.indent == "  "
        assert manifest.is_root

    def test_invalid_json_raises_config_error(self):
        """Should raise ConfigError for malformed JSON."""
        with pytest.raises(ConfigError):
            parse_package_json("{not json", "package.json")

    def test_non_object_raises_config_error(self):
        """Should reject a top-level array."""
        with pytest.raises(ConfigError):
            parse_package_json("[]", "package.json")

    def test_workspaces_object_form(self):
        """Should read the {packages: [...]} form of workspaces."""
        manifest = parse_package_json('{"workspaces": {"packages": ["apps/*"]}}')
        assert manifest.workspaces == ["apps/*"]

    def test_pnpm_mechanism(self):
        """Should detect pnpm.overrides."""
        manifest = parse_package_json('{"pnpm": {"overrides": {"qs": "6.5.3"}}}')
        assert manifest.mechanisms() == [Mechanism.PNPM]
        assert manifest.override_entries()[0].package == "qs"

    def test_appendix_reads_reason_from_ledger(self):
        """Should parse appendix entries and their reason."""
        content = json.dumps(
            {
                "pastoralist": {
                    "appendix": {
                        "@scope/pkg@1.0.0": {
                            "dependents": {"app": "^1.0.0"},
                            "ledger": {"addedDate": "2024-01-01", "reason": "CVE fix"},
                        }
                    }
                }
            }
        )
        appendix = parse_package_json(content).appendix()
        entry = appendix["@scope/pkg@1.0.0"]
        assert entry.package == "@scope/pkg"
        assert entry.version == "1.0.0"
        assert entry.dependents == {"app": "^1.0.0"}
        assert entry.reason == "CVE fix"
        assert entry.ledger["addedDate"] == "2024-01-01"


class TestManifestEdit:
    """Test field-level rewriting."""

    def test_untouched_manifest_renders_identically(self, sample_package_json):
        """Should return the original text when nothing is edited."""
        manifest = parse_package_json(sample_package_json)
        assert ManifestEdit(manifest).render() == sample_package_json

    def test_edit_preserves_other_bytes(self):
        """Should only re-render the edited member."""
        text = (
            '{\n'
            '    "name": "x",\n'
            '    "scripts": {"build":   "tsc"},\n'
            '    "overrides": {\n'
            '        "a": "1.0.0"\n'
            '    },\n'
            '    "version": "1.0.0"\n'
            '}'
        )
        manifest = parse_package_json(text)
        assert manifest.indent == "    "
        edit = ManifestEdit(manifest)
        edit.set("overrides", {"a": "2.0.0"})
        rendered = edit.render()
        assert rendered == text.replace('"a": "1.0.0"', '"a": "2.0.0"')

    def test_delete_member(self):
        """Should remove a member and its separator."""
        text = '{\n  "name": "x",\n  "overrides": {},\n  "version": "1.0.0"\n}\n'
        edit = ManifestEdit(parse_package_json(text))
        edit.delete("overrides")
        assert edit.render() == '{\n  "name": "x",\n  "version": "1.0.0"\n}\n'

    def test_delete_first_member(self):
        """Should keep the head of the document intact."""
        text = '{\n  "overrides": {},\n  "name": "x"\n}\n'
        edit = ManifestEdit(parse_package_json(text))
        edit.delete("overrides")
        assert edit.render() == '{\n  "name": "x"\n}\n'

    def test_append_new_member(self):
        """Should append new keys using the detected indentation."""
        text = '{\n  "name": "x",\n  "version": "1.0.0"\n}\n'
        edit = ManifestEdit(parse_package_json(text))
        edit.set("overrides", {"qs": "6.5.3"})
        assert edit.render() == (
            '{\n  "name": "x",\n  "version": "1.0.0",\n'
            '  "overrides": {\n    "qs": "6.5.3"\n  }\n}\n'
        )

    def test_set_on_empty_object(self):
        """Should produce valid JSON from an empty object."""
        edit = ManifestEdit(parse_package_json("{}\n"))
        edit.set("overrides", {"qs": "6.5.3"})
        assert json.loads(edit.render()) == {"overrides": {"qs": "6.5.3"}}

    def test_non_ascii_is_preserved(self):
        """Should not escape non-ASCII characters."""
        text = '{\n  "description": "café",\n  "overrides": {}\n}\n'
        edit = ManifestEdit(parse_package_json(text))
        edit.set("overrides", {"naïve": "1.0.0"})
        rendered = edit.render()
        assert '"café"' in rendered
        assert '"naïve": "1.0.0"' in rendered

    def test_delete_missing_key_is_noop(self):
        """Should ignore deletions of absent keys."""
        text = '{\n  "name": "x"\n}\n'
        edit = ManifestEdit(parse_package_json(text))
        edit.delete("resolutions")
        assert edit.render() == text
