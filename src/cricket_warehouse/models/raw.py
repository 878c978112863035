"""ORM models for the raw layer.

The raw layer keeps every staged match document exactly as it arrived:
- ``meta``, ``info`` and ``innings`` stored as JSON (JSONB on PostgreSQL)
- Provenance columns for lineage and deduplication
- Append-only: rows are never updated or deleted
- Monotonic integer ``id`` used as the change-tracking position
"""

from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

# JSONB on PostgreSQL, plain JSON everywhere else
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class RawMatch(SQLModel, table=True):
    """One ingested match document.

    Stores the three top-level sections of a Cricsheet document:
    - meta: data version, revision, created date
    - info: teams, venue, toss, outcome, players, registry
    - innings: innings → overs → deliveries
    """

    __tablename__ = "raw_match"

    id: Optional[int] = Field(default=None, primary_key=True)

    meta: dict[str, Any] = Field(default_factory=dict, sa_type=JSONDocument)
    info: dict[str, Any] = Field(default_factory=dict, sa_type=JSONDocument)
    innings: list[Any] = Field(default_factory=list, sa_type=JSONDocument)

    # Provenance
    source_file: str = Field(sa_type=String(255), nullable=False, index=True)
    row_number: int = Field(sa_type=Integer, nullable=False, default=1)
    content_hash: str = Field(sa_type=String(64), nullable=False, index=True)
    ingested_at: datetime = Field(
        sa_type=DateTime(timezone=True), nullable=False, default_factory=utcnow
    )


class StagedFileLog(SQLModel, table=True):
    """Ingestion metadata for every staged file the ingestor has looked at.

    A (file_name, content_hash) pair is recorded once, whether it loaded or was
    rejected. The staging area compares file mtimes against ``file_modified_at``
    to decide which files are worth reading at all.
    """

    __tablename__ = "meta_staged_file"
    __table_args__ = (UniqueConstraint("file_name", "content_hash"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    file_name: str = Field(sa_type=String(255), nullable=False, index=True)
    content_hash: str = Field(sa_type=String(64), nullable=False, index=True)
    status: str = Field(sa_type=String(20), nullable=False)  # loaded | rejected | duplicate
    records_loaded: int = Field(sa_type=BigInteger, nullable=False, default=0)
    # mtime of the file when it was read, so unchanged files are never re-read
    file_modified_at: Optional[datetime] = Field(sa_type=DateTime(timezone=True), default=None)
    error: Optional[str] = Field(sa_type=Text, default=None)
    recorded_at: datetime = Field(
        sa_type=DateTime(timezone=True), nullable=False, default_factory=utcnow
    )
