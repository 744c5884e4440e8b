"""Component manifests.

This module handles:
- Manifest schema validation (components, sources, patches, assets)
- Loading manifests from files and from the bundled set
- Dependency ordering and validation
"""

from stagebuild.components.io import (
    ManifestError,
    load_bundled_manifest,
    load_manifest,
    resolve_manifest,
)
from stagebuild.components.schema import (
    AssetSpec,
    ComponentSpec,
    ManifestSchema,
    PatchSpec,
    SourceSpec,
)

__all__ = [
    "AssetSpec",
    "ComponentSpec",
    "ManifestError",
    "ManifestSchema",
    "PatchSpec",
    "SourceSpec",
    "load_bundled_manifest",
    "load_manifest",
    "resolve_manifest",
]
