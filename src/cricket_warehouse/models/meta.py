"""ORM models for pipeline bookkeeping.

- StreamOffset: per-consumer cursor used by the change tracker
- StageState: persisted scheduler state (activation flag, last status, errors)
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, String
from sqlmodel import Field, SQLModel

from cricket_warehouse.models.raw import utcnow


class StreamOffset(SQLModel, table=True):
    """Track the last consumed row id per (consumer, source table).

    Used to enable incremental processing:
    - Poll only rows appended since the cursor
    - Advance after the consumer's writes succeed
    - Supports full replay by deleting the offset
    """

    __tablename__ = "meta_stream_offset"

    consumer: str = Field(sa_type=String(100), primary_key=True, nullable=False)
    source_table: str = Field(sa_type=String(100), primary_key=True, nullable=False)
    last_id: int = Field(sa_type=BigInteger, nullable=False, default=0)
    updated_at: datetime = Field(
        sa_type=DateTime(timezone=True), nullable=False, default_factory=utcnow
    )


class StageState(SQLModel, table=True):
    """Scheduler state for one pipeline stage."""

    __tablename__ = "meta_stage_state"

    stage_name: str = Field(sa_type=String(100), primary_key=True, nullable=False)
    active: bool = Field(sa_type=Boolean, nullable=False, default=False)
    status: str = Field(sa_type=String(20), nullable=False, default="suspended")
    last_run_at: Optional[datetime] = Field(sa_type=DateTime(timezone=True), default=None)
    last_succeeded_at: Optional[datetime] = Field(
        sa_type=DateTime(timezone=True), default=None
    )
    errors: list[Any] = Field(default_factory=list, sa_type=JSON)
