"""Component manifests shipped with stagebuild."""
