"""Registry module.

This module handles:
- The HTTP client for the LPK registry
- Publish and reuse decisions for built artifacts
"""

from lpkbuild.registry.client import RegistryClient, RegistryUser

__all__ = ["RegistryClient", "RegistryUser"]
