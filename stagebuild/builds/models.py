"""Build history ORM models.

This module defines the BuildRecord model. One row is written for every
component the orchestrator attempts; skipped components are not
recorded. History is informational only: completion markers decide
what gets rebuilt.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stagebuild.db import Base
from stagebuild.types import BuildStatus


class BuildRecord(Base):
    """ORM model for component build attempts.

    Attributes:
        id: Primary key.
        component: Component name.
        version: Component version.
        strategy: Build strategy used.
        status: Attempt status (running, succeeded, failed).
        started_at: When the attempt started.
        finished_at: When the attempt finished.
        log_path: Path to the component log.
        package_path: Path to the produced package, if any.
        error_type: Error code if the attempt failed.
        error_message: Error message if the attempt failed.
    """

    __tablename__ = "build_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    component: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    version: Mapped[str] = mapped_column(String(100), nullable=False)
    strategy: Mapped[str] = mapped_column(String(20), nullable=False)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BuildStatus.RUNNING.value, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Outputs
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    package_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Error tracking
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_build_records_component_status", "component", "status"),)

    def __repr__(self) -> str:
        """Return string representation of BuildRecord."""
        return (
            f"<BuildRecord(id={self.id}, component='{self.component}', "
            f"version='{self.version}', status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this attempt as running."""
        self.status = BuildStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self, package_path: str | None = None) -> None:
        """Mark this attempt as succeeded."""
        self.status = BuildStatus.SUCCEEDED.value
        self.finished_at = datetime.now()
        if package_path:
            self.package_path = package_path

    def mark_failed(
        self, error_type: str | None = None, message: str | None = None
    ) -> None:
        """Mark this attempt as failed.

        Args:
            error_type: Error code.
            message: Error message details.
        """
        self.status = BuildStatus.FAILED.value
        self.finished_at = datetime.now()
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message

    def to_dict(self) -> dict[str, object]:
        """Serialize for JSON output."""
        return {
            "id": self.id,
            "component": self.component,
            "version": self.version,
            "strategy": self.strategy,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "log_path": self.log_path,
            "package_path": self.package_path,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


__all__ = ["BuildRecord"]
