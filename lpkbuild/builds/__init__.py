"""Build module.

This module handles:
- Manifest reading and cache key computation
- Template rendering
- Running the build command
- Artifact discovery, placement and hashing
"""

from lpkbuild.builds.cache_key import ArtifactKey
from lpkbuild.builds.runner import CommandResult, CommandRunner, SubprocessRunner

__all__ = ["ArtifactKey", "CommandResult", "CommandRunner", "SubprocessRunner"]

# Lazy imports for submodules to avoid circular imports
# Access via lpkbuild.builds.service, etc.
