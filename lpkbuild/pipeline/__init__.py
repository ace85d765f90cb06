"""Pipeline module.

This module handles:
- Pipeline spec schema and file loading
- Orchestration of resolve, render, build and publish
- Persisted resource state and the lifecycle adapters
"""

from lpkbuild.pipeline.schema import (
    BuildSchema,
    EnvSchema,
    GitSourceSchema,
    LocalSourceSchema,
    PipelineSpec,
    PublishSchema,
    SourceSchema,
)

__all__ = [
    "BuildSchema",
    "EnvSchema",
    "GitSourceSchema",
    "LocalSourceSchema",
    "PipelineSpec",
    "PublishSchema",
    "SourceSchema",
]

# Lazy imports for submodules to avoid circular imports
# Access via lpkbuild.pipeline.service, etc.
