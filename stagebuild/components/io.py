"""Manifest loading.

This module provides helpers for loading component manifests from
YAML/JSON files and from the manifests bundled with the package.
"""

import json
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from stagebuild.components.schema import ManifestSchema

BUNDLED_MANIFEST_PACKAGE = "stagebuild.manifests"
DEFAULT_MANIFEST = "plasma6"


class ManifestError(Exception):
    """Raised when a manifest cannot be loaded or validated."""

    def __init__(self, message: str, code: str = "manifest_error") -> None:
        super().__init__(message)
        self.code = code


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_manifest_data(data: dict[str, Any]) -> ManifestSchema:
    """Validate manifest data.

    Raises:
        ManifestError: If data does not match the schema.
    """
    try:
        return ManifestSchema.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest: {e}", code="invalid_manifest") from e


def load_manifest(path: Path) -> ManifestSchema:
    """Load and validate a manifest from a YAML or JSON file.

    Args:
        path: Path to the manifest (format chosen by extension).

    Returns:
        Validated ManifestSchema instance.

    Raises:
        ManifestError: If the file is missing, unreadable or invalid.
    """
    if not path.is_file():
        raise ManifestError(f"Manifest not found: {path}", code="manifest_not_found")

    try:
        if path.suffix.lower() == ".json":
            data = load_json(path)
        else:
            data = load_yaml(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ManifestError(f"Failed to read {path}: {e}", code="manifest_unreadable") from e

    return parse_manifest_data(data)


def list_bundled_manifests() -> list[str]:
    """Return the names of manifests shipped with the package."""
    root = resources.files(BUNDLED_MANIFEST_PACKAGE)
    return sorted(
        entry.name.rsplit(".", 1)[0]
        for entry in root.iterdir()
        if entry.name.endswith(".yaml")
    )


def load_bundled_manifest(name: str = DEFAULT_MANIFEST) -> ManifestSchema:
    """Load a manifest shipped with the package.

    Raises:
        ManifestError: If no bundled manifest has that name.
    """
    resource = resources.files(BUNDLED_MANIFEST_PACKAGE).joinpath(f"{name}.yaml")
    if not resource.is_file():
        raise ManifestError(
            f"No bundled manifest named '{name}'", code="manifest_not_found"
        )
    data = yaml.safe_load(resource.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ManifestError(f"Bundled manifest '{name}' is not a mapping")
    return parse_manifest_data(data)


def resolve_manifest(path: Path | None) -> ManifestSchema:
    """Load the manifest at ``path``, or the default bundled one."""
    if path is None:
        return load_bundled_manifest(DEFAULT_MANIFEST)
    return load_manifest(path)


def manifest_to_yaml_string(manifest: ManifestSchema) -> str:
    """Serialize a manifest to a YAML string."""
    data = manifest.model_dump(mode="json", exclude_none=True, exclude_defaults=True)
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


__all__ = [
    "DEFAULT_MANIFEST",
    "ManifestError",
    "list_bundled_manifests",
    "load_bundled_manifest",
    "load_json",
    "load_manifest",
    "load_yaml",
    "manifest_to_yaml_string",
    "parse_manifest_data",
    "resolve_manifest",
]
