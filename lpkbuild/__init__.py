"""LPK Build - content-addressed build and publish pipeline for LPK packages.

This package resolves a source tree (local directory or git repository),
renders configuration templates, builds an LPK artifact with manifest-keyed
caching, and publishes it to a remote registry without redundant uploads.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
