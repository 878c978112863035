"""Base stage classes for the incremental transformation chain.

Every pipeline step (ingest, clean, dimension, fact) is a stage. A stage exposes a
guard (``has_new_data``) that the scheduler checks before running it, and a ``run``
that does all of its work inside the caller's session so the writes and the
change-tracker cursor commit together.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from itertools import takewhile
from typing import Any, ClassVar, Optional

from sqlmodel import Session, SQLModel

from cricket_warehouse.models.raw import utcnow
from cricket_warehouse.transform.change_tracker import ChangeTracker
from cricket_warehouse.transform.upsert import UpsertMetrics

logger = logging.getLogger(__name__)


def ready_prefix(rows: list[Any], is_ready: Callable[[Any], bool]) -> list[Any]:
    """Leading rows that pass ``is_ready``; the first row that fails ends the batch."""
    return list(takewhile(is_ready, rows))


@dataclass
class StageResult:
    """Outcome of one stage execution."""

    stage: str
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    rows_read: int = 0
    metrics: UpsertMetrics = field(default_factory=UpsertMetrics)
    errors: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    def finish(self) -> "StageResult":
        self.finished_at = utcnow()
        return self


class BaseStage(ABC):
    """Base class for all pipeline stages."""

    name: ClassVar[str]

    @abstractmethod
    def has_new_data(self, session: Session) -> bool:
        """Whether the upstream has produced anything this stage has not consumed."""

    @abstractmethod
    def run(self, session: Session) -> StageResult:
        """Consume new upstream data and write this stage's table(s)."""


class TrackedStage(BaseStage):
    """Stage that consumes an append-only table through the change tracker.

    Subclasses set ``source`` and implement ``process``. The cursor advances to
    ``consumed_through`` (the last polled id by default) after ``process`` returns,
    in the same session.

    ``ready`` trims a polled batch down to the rows whose upstream work is
    finished. Rows it holds back stay behind the cursor and are polled again on
    the next run.
    """

    source: ClassVar[type[SQLModel]]

    def __init__(self, tracker: Optional[ChangeTracker] = None):
        self.tracker = tracker or ChangeTracker()

    def has_new_data(self, session: Session) -> bool:
        return self.tracker.has_pending(session, self.name, self.source)

    def run(self, session: Session) -> StageResult:
        result = StageResult(stage=self.name)
        polled = self.tracker.poll(session, self.name, self.source)
        rows = self.ready(session, polled) if polled else []

        if not rows:
            if polled:
                logger.info(f"{self.name}: {len(polled)} new row(s) wait on upstream stages")
            result.skipped = True
            return result.finish()

        result.rows_read = len(rows)
        self.process(session, rows, result)
        session.flush()
        self.tracker.advance(session, self.name, self.source, self.consumed_through(session, rows))

        return result.finish()

    def ready(self, session: Session, rows: list[Any]) -> list[Any]:
        """Rows whose upstream inputs are complete (all of them by default)."""
        return rows

    def consumed_through(self, session: Session, rows: list[Any]) -> int:
        """Id the cursor moves to once ``rows`` are processed."""
        return rows[-1].id

    @abstractmethod
    def process(self, session: Session, rows: list[Any], result: StageResult) -> None:
        """Write derived rows for a batch of new source rows."""
