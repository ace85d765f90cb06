"""Source resolution module.

Turns local directories and git repositories into working directories.
"""

from lpkbuild.sources.resolver import ResolvedSource, checkout_source, resolve_source

__all__ = ["ResolvedSource", "checkout_source", "resolve_source"]
