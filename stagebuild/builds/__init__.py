"""Build orchestration module.

This module handles:
- The immutable build context and completion state
- Text patches and build-strategy adapters
- Stage directories, prefix installation and packaging
- The orchestrator loop and build history records
"""

from stagebuild.builds.models import BuildRecord

__all__ = ["BuildRecord"]

# Submodules are imported directly (stagebuild.builds.service, etc.)
