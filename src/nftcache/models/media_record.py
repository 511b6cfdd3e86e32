"""MediaRecord entity - cached media for one mint with lifecycle status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from nftcache.core.timezone import utcnow


class MediaStatus(str, Enum):
    """Media record lifecycle status."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid media record state transition."""

    pass


class MediaRecord(SQLModel, table=True):
    """MediaRecord tracks the resolution state of a mint's media.

    One row per mint. Status transitions are the only mutation path; the
    cache store owns persistence and keeps blobs consistent with `variants`.
    """

    __tablename__ = "media_records"  # type: ignore[assignment]

    mint: str = Field(primary_key=True, max_length=44)
    status: MediaStatus = Field(default=MediaStatus.PENDING, index=True)
    content_uri: Optional[str] = Field(default=None)
    image_uri: Optional[str] = Field(default=None)
    image_type: Optional[str] = Field(default=None, max_length=100)
    content_hash: Optional[str] = Field(default=None, max_length=64)
    variants: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    output_content_type: Optional[str] = Field(default=None, max_length=100)
    attempts: int = Field(default=0, ge=0)
    error: Optional[str] = Field(default=None, max_length=1000)
    last_attempt: Optional[datetime] = Field(default=None)
    last_success: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_variant(self, variant: str) -> bool:
        """True if the record is ready and claims a blob for `variant`."""
        return self.status == MediaStatus.READY and variant in (self.variants or [])

    def begin_attempt(self) -> None:
        """Transition pending/failed to pending and count a resolution attempt.

        Raises:
            InvalidStateTransition: If the record is ready (invalidate it first)
        """
        if self.status == MediaStatus.READY:
            raise InvalidStateTransition(
                "Cannot begin attempt from ready. Record must be invalidated first."
            )
        now = utcnow()
        self.status = MediaStatus.PENDING
        self.attempts += 1
        self.last_attempt = now
        self.updated_at = now

    def mark_ready(
        self,
        *,
        content_uri: str,
        image_uri: str,
        image_type: str,
        content_hash: str,
        variants: list[str],
        output_content_type: str,
    ) -> None:
        """Transition from pending to ready.

        Raises:
            InvalidStateTransition: If current status is not pending
            ValueError: If no variants were stored
        """
        if self.status != MediaStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark ready from {self.status.value}. Record must be in pending state."
            )
        if not variants:
            raise ValueError("variants is required")
        now = utcnow()
        self.content_uri = content_uri
        self.image_uri = image_uri
        self.image_type = image_type
        self.content_hash = content_hash
        self.variants = sorted(variants)
        self.output_content_type = output_content_type
        self.error = None
        self.status = MediaStatus.READY
        self.last_success = now
        self.updated_at = now

    def mark_failed(self, error: str, content_uri: Optional[str] = None) -> None:
        """Transition from pending to failed.

        Args:
            error: Error description (truncated to 1000 characters)
            content_uri: Content URI if metadata resolution got that far

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != MediaStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark failed from {self.status.value}. Record must be in pending state."
            )
        if content_uri:
            self.content_uri = content_uri
        self.error = error[:1000]
        self.variants = []
        self.status = MediaStatus.FAILED
        self.updated_at = utcnow()

    def reset(self) -> None:
        """Reset any state to pending, dropping the claimed variants."""
        self.status = MediaStatus.PENDING
        self.variants = []
        self.content_hash = None
        self.output_content_type = None
        self.error = None
        self.updated_at = utcnow()
