"""Per-consumer change tracking over append-only tables.

Every tracked table has a monotonic integer ``id``. A consumer's cursor is the
highest id it has finished processing; ``poll`` returns everything after it.

Delivery is at-least-once: the cursor moves only when the consumer calls
``advance`` after its own writes, so a crash in between re-delivers the same rows.
Consumers therefore insert with natural-key dedup.
"""

import logging
from typing import Optional, TypeVar

from sqlalchemy import func
from sqlmodel import Session, SQLModel, select

from cricket_warehouse.models.meta import StreamOffset
from cricket_warehouse.models.raw import utcnow

logger = logging.getLogger(__name__)

TrackedModel = TypeVar("TrackedModel", bound=SQLModel)


class ChangeTracker:
    """Cursor-based insert tracking.

    Usage:
        >>> tracker = ChangeTracker()
        >>> rows = tracker.poll(session, "clean_match", RawMatch)
        >>> ...  # write derived rows
        >>> tracker.advance(session, "clean_match", RawMatch, rows[-1].id)
    """

    def __init__(self, batch_size: Optional[int] = None):
        """Initialize tracker.

        Args:
            batch_size: Max rows returned per poll (None = everything pending)
        """
        self.batch_size = batch_size

    def get_offset(self, session: Session, consumer: str, source: type[TrackedModel]) -> int:
        offset = session.get(StreamOffset, (consumer, source.__tablename__))
        return offset.last_id if offset else 0

    def poll(self, session: Session, consumer: str, source: type[TrackedModel]) -> list[TrackedModel]:
        """Rows appended to ``source`` since the consumer's cursor, in id order."""
        last_id = self.get_offset(session, consumer, source)
        statement = select(source).where(source.id > last_id).order_by(source.id)
        if self.batch_size:
            statement = statement.limit(self.batch_size)
        rows = list(session.exec(statement).all())

        logger.debug(
            f"{consumer}: {len(rows)} new row(s) in {source.__tablename__} after id {last_id}"
        )
        return rows

    def has_pending(self, session: Session, consumer: str, source: type[TrackedModel]) -> bool:
        last_id = self.get_offset(session, consumer, source)
        max_id = session.exec(select(func.max(source.id))).one()
        return max_id is not None and max_id > last_id

    def advance(
        self, session: Session, consumer: str, source: type[TrackedModel], last_id: int
    ) -> None:
        """Move the consumer's cursor forward to ``last_id`` (never backwards)."""
        key = (consumer, source.__tablename__)
        offset = session.get(StreamOffset, key)

        if offset is None:
            offset = StreamOffset(consumer=consumer, source_table=source.__tablename__, last_id=0)

        if last_id <= offset.last_id:
            return

        offset.last_id = last_id
        offset.updated_at = utcnow()
        session.add(offset)

    def reset(self, session: Session, consumer: str, source: type[TrackedModel]) -> None:
        """Forget the consumer's cursor so the next poll replays the whole table."""
        offset = session.get(StreamOffset, (consumer, source.__tablename__))
        if offset is not None:
            session.delete(offset)
            session.flush()
