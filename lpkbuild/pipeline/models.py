"""Pipeline state ORM models.

This module defines the BuildState model, the persisted record of the last
successful apply for a named pipeline resource. The prior upload carried
here is what makes publish reuse possible across runs.
"""

from datetime import datetime
from pathlib import Path

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from lpkbuild.db import Base
from lpkbuild.types import PipelineResult, PublishAction, UploadRecord


class BuildState(Base):
    """ORM model for a named pipeline resource.

    Attributes:
        id: Primary key.
        name: Unique resource name chosen by the caller.
        resource_id: Derived identity ``{app_id}-{version}-{sha256}``.
        spec_snapshot: JSON dump of the spec used for the last apply.
        artifact_path: Artifact location on disk.
        app_id: Application identifier.
        version: Reported version.
        sha256: Reported content hash.
        download_url: Registry download URL, if published.
        upload_id: Registry upload identifier, if published.
        publish_action: What the last publish step did.
        created_at: Timestamp of the first apply.
        updated_at: Timestamp of the latest apply.
    """

    __tablename__ = "build_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    resource_id: Mapped[str] = mapped_column(String(500), nullable=False)
    spec_snapshot: Mapped[dict[str, object] | None] = mapped_column(
        JSON, nullable=True
    )

    # Artifact facts
    artifact_path: Mapped[str] = mapped_column(Text, nullable=False)
    app_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    version: Mapped[str] = mapped_column(String(100), nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    # Registry facts
    download_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    upload_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    publish_action: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PublishAction.DISABLED.value
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        """Return string representation of BuildState."""
        return (
            f"<BuildState(id={self.id}, name='{self.name}', "
            f"resource_id='{self.resource_id}')>"
        )

    def to_upload_record(self) -> UploadRecord | None:
        """Return the stored upload, if this resource was published."""
        return self.to_result().upload_record()

    def apply_result(self, result: PipelineResult) -> None:
        """Copy a pipeline result onto this record."""
        self.resource_id = result.resource_id
        self.artifact_path = str(result.artifact_path)
        self.app_id = result.app_id
        self.version = result.version
        self.sha256 = result.sha256
        self.download_url = result.download_url
        self.upload_id = result.upload_id
        self.publish_action = result.publish_action.value

    def to_result(self) -> PipelineResult:
        """Rebuild the pipeline result this record was stored from."""
        return PipelineResult(
            artifact_path=Path(self.artifact_path),
            app_id=self.app_id,
            version=self.version,
            sha256=self.sha256,
            resource_id=self.resource_id,
            download_url=self.download_url,
            upload_id=self.upload_id,
            cache_hit=False,
            publish_action=PublishAction(self.publish_action),
        )

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "resource_id": self.resource_id,
            "artifact_path": self.artifact_path,
            "app_id": self.app_id,
            "version": self.version,
            "sha256": self.sha256,
            "download_url": self.download_url,
            "upload_id": self.upload_id,
            "publish_action": self.publish_action,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


__all__ = ["BuildState"]
