"""Tests for manifest loading."""

import json

import pytest
import yaml

from stagebuild.components.io import (
    ManifestError,
    list_bundled_manifests,
    load_bundled_manifest,
    load_manifest,
    manifest_to_yaml_string,
    parse_manifest_data,
    resolve_manifest,
)
from stagebuild.types import BuildStrategy

MANIFEST_YAML = """\
name: demo
package_prefix: demo-
prerequisites: [cmake]
components:
  - name: foo
    version: "1.0"
    source:
      tarball: https://example.com/{name}-{version}.tar.gz
  - name: bar
    version: "2.0"
    source:
      git: https://example.com/bar.git
      ref: v{version}
    strategy: meson
    requires: [foo]
"""


class TestLoadManifest:
    """Tests for load_manifest."""

    def test_load_yaml(self, tmp_path):
        """Should load and validate a YAML manifest."""
        path = tmp_path / "demo.yaml"
        path.write_text(MANIFEST_YAML)

        manifest = load_manifest(path)

        assert manifest.name == "demo"
        assert manifest.package_prefix == "demo-"
        assert [c.name for c in manifest.components] == ["foo", "bar"]
        assert manifest.components[0].source.tarball == "https://example.com/foo-1.0.tar.gz"
        assert manifest.components[1].strategy == BuildStrategy.MESON
        assert manifest.components[1].source.ref == "v2.0"

    def test_load_json(self, tmp_path):
        """Should load JSON manifests by extension."""
        path = tmp_path / "demo.json"
        path.write_text(json.dumps(yaml.safe_load(MANIFEST_YAML)))

        manifest = load_manifest(path)
        assert len(manifest.components) == 2

    def test_missing_file(self, tmp_path):
        """Should raise ManifestError for a missing file."""
        with pytest.raises(ManifestError) as exc_info:
            load_manifest(tmp_path / "missing.yaml")
        assert exc_info.value.code == "manifest_not_found"

    def test_invalid_yaml(self, tmp_path):
        """Should wrap YAML syntax errors."""
        path = tmp_path / "bad.yaml"
        path.write_text("name: [unterminated\n")
        with pytest.raises(ManifestError) as exc_info:
            load_manifest(path)
        assert exc_info.value.code == "manifest_unreadable"

    def test_not_a_mapping(self, tmp_path):
        """A top-level list is not a manifest."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ManifestError):
            load_manifest(path)

    def test_schema_errors(self, tmp_path):
        """Schema violations should be reported as invalid_manifest."""
        path = tmp_path / "invalid.yaml"
        path.write_text("name: demo\ncomponents:\n  - name: foo\n    version: '1'\n")
        with pytest.raises(ManifestError) as exc_info:
            load_manifest(path)
        assert exc_info.value.code == "invalid_manifest"


class TestBundledManifests:
    """Tests for the manifests shipped with the package."""

    def test_plasma6_is_bundled(self):
        """The plasma6 manifest should be listed."""
        assert "plasma6" in list_bundled_manifests()

    def test_plasma6_loads(self):
        """The bundled manifest should validate."""
        manifest = load_bundled_manifest("plasma6")

        names = [c.name for c in manifest.components]
        assert names[0] == "qtpositioning"
        assert names[-1] == "fonts"
        assert manifest.package_prefix == "plasma-"
        assert "cmake" in manifest.prerequisites

        by_name = {c.name: c for c in manifest.components}
        kwin = by_name["kwin-x11"]
        assert kwin.source.is_git
        assert kwin.install_to_prefix
        assert len(kwin.patches) == 4

        fonts = by_name["fonts"]
        assert fonts.strategy == BuildStrategy.ASSETS
        assert all(a.destination == "share/fonts/noto" for a in fonts.assets)
        assert fonts.install_to_prefix
        assert fonts.post_install == [["fc-cache", "-fv"]]
        assert "NotoColorEmoji.ttf" in [a.filename for a in fonts.assets]

        kdoctools = by_name["kdoctools"]
        assert kdoctools.path_prepend == ["bin"]
        assert "KF6::meinproc6" in kdoctools.post_configure[0][-1]

    def test_unknown_bundled_manifest(self):
        """Unknown bundled names should raise ManifestError."""
        with pytest.raises(ManifestError) as exc_info:
            load_bundled_manifest("nope")
        assert exc_info.value.code == "manifest_not_found"

    def test_resolve_defaults_to_bundled(self):
        """resolve_manifest(None) should return the default manifest."""
        assert resolve_manifest(None).name == "plasma6"

    def test_resolve_path(self, tmp_path):
        """resolve_manifest should load files when given a path."""
        path = tmp_path / "demo.yaml"
        path.write_text(MANIFEST_YAML)
        assert resolve_manifest(path).name == "demo"


class TestManifestToYaml:
    """Tests for manifest serialization."""

    def test_serialized_manifest_reloads(self):
        """Serialized manifests should validate again with the same components."""
        manifest = parse_manifest_data(yaml.safe_load(MANIFEST_YAML))
        text = manifest_to_yaml_string(manifest)

        reloaded = parse_manifest_data(yaml.safe_load(text))
        assert [c.name for c in reloaded.components] == ["foo", "bar"]
        assert reloaded.components[1].requires == ["foo"]
