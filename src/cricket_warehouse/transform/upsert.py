"""Insert-if-absent logic keyed by natural keys.

Every write into the clean and consumption layers goes through here. The pattern:

    existing = {natural keys already in target}
    new      = {natural keys in source} - existing
    INSERT new rows only (never UPDATE)

This ensures:
- Idempotency: re-running the same source rows inserts nothing the second time
- At-least-once safety: re-delivered change-tracker rows are harmless
- Stable surrogate keys: ids come from a monotonic allocator, never from a rank
"""

import logging
from dataclasses import astuple, dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, SQLModel, select

logger = logging.getLogger(__name__)

NaturalKey = tuple[Any, ...]


@dataclass
class UpsertMetrics:
    """Row counts from one or more insert-if-absent passes.

    - total_source_rows: candidate rows offered
    - inserted_rows: rows written
    - skipped_rows: natural key already present, or repeated within the batch
    - error_rows: rejected (unresolved reference, bad shape)
    """

    total_source_rows: int = 0
    inserted_rows: int = 0
    skipped_rows: int = 0
    error_rows: int = 0

    def __add__(self, other: "UpsertMetrics") -> "UpsertMetrics":
        return UpsertMetrics(*(a + b for a, b in zip(astuple(self), astuple(other))))

    def __str__(self) -> str:
        return (
            f"{self.inserted_rows} inserted, {self.skipped_rows} skipped, "
            f"{self.error_rows} rejected of {self.total_source_rows}"
        )


class SurrogateKeyAllocator:
    """Append-only id allocator for one dimension.

    Continues from the highest id already stored, so ids assigned in earlier
    runs are never touched.
    """

    def __init__(self, session: Session, model: type[SQLModel], id_column: str):
        self.id_column = id_column
        current = session.exec(select(func.max(getattr(model, id_column)))).one()
        self._next = (current or 0) + 1

    def allocate(self) -> int:
        allocated = self._next
        self._next += 1
        return allocated


def natural_key_of(row: Dict[str, Any], natural_key: Sequence[str]) -> NaturalKey:
    return tuple(row[column] for column in natural_key)


def load_natural_keys(
    session: Session,
    model: type[SQLModel],
    natural_key: Sequence[str],
    where: Optional[Any] = None,
) -> set[NaturalKey]:
    """Load the natural keys already present in ``model``'s table.

    Args:
        session: SQLModel session
        model: Target table model
        natural_key: Column names forming the natural key
        where: Optional SQLAlchemy filter to narrow the scan

    Returns:
        Set of key tuples
    """
    columns = [getattr(model, column) for column in natural_key]
    statement = select(*columns)
    if where is not None:
        statement = statement.where(where)

    results = session.exec(statement).all()
    if len(columns) == 1:
        return {(value,) for value in results}
    return {tuple(row) for row in results}


def insert_missing(
    session: Session,
    model: type[SQLModel],
    candidates: Iterable[Dict[str, Any]],
    natural_key: Sequence[str],
    existing_keys: Optional[set[NaturalKey]] = None,
    allocator: Optional[SurrogateKeyAllocator] = None,
) -> UpsertMetrics:
    """Insert candidate rows whose natural key is not in the target yet.

    Args:
        session: SQLModel session (caller commits)
        model: Target table model
        candidates: Row dicts with the model's column names
        natural_key: Columns used for dedup
        existing_keys: Keys already present (loaded from the table if None)
        allocator: Assigns the surrogate id for each inserted row

    Returns:
        UpsertMetrics with operation statistics
    """
    if existing_keys is None:
        existing_keys = load_natural_keys(session, model, natural_key)
    else:
        existing_keys = set(existing_keys)

    metrics = UpsertMetrics()
    for row in candidates:
        metrics.total_source_rows += 1
        key = natural_key_of(row, natural_key)

        if key in existing_keys:
            metrics.skipped_rows += 1
            continue

        existing_keys.add(key)
        values = dict(row)
        if allocator is not None:
            values[allocator.id_column] = allocator.allocate()
        session.add(model(**values))
        metrics.inserted_rows += 1

    logger.debug(f"{model.__tablename__}: {metrics}")
    return metrics
