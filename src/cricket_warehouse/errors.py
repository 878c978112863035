"""Exception taxonomy for the warehouse pipeline.

Only ``ActivationOrderError``, ``UnknownStageError`` and ``ConfigurationError`` are
raised to callers. The record-level errors are collected on stage results and logged;
they describe what was skipped, not why a run aborted.
"""


class WarehouseError(Exception):
    """Base class for all pipeline errors."""


class RecordParseError(WarehouseError):
    """A staged document could not be parsed into a raw record."""

    def __init__(self, source_file: str, reason: str):
        self.source_file = source_file
        self.reason = reason
        super().__init__(f"{source_file}: {reason}")


class ShapeMismatchError(WarehouseError):
    """A raw document lacks an expected nested field (value propagated as null)."""

    def __init__(self, match_id: str, path: str, reason: str = "missing"):
        self.match_id = match_id
        self.path = path
        self.reason = reason
        super().__init__(f"match {match_id}: {path} {reason}")


class JoinMissError(WarehouseError):
    """A fact row referenced a dimension row that does not exist yet."""

    def __init__(self, match_id: str, dimension: str, key):
        self.match_id = match_id
        self.dimension = dimension
        self.key = key
        super().__init__(f"match {match_id}: no {dimension} row for {key!r}")


class DependencyNotReadyError(WarehouseError):
    """A stage was triggered but has nothing new to consume."""


class ActivationOrderError(WarehouseError):
    """A stage was activated before the stages that depend on it."""


class UnknownStageError(WarehouseError):
    """The scheduler has no stage with the requested name."""


class ConfigurationError(WarehouseError):
    """Pipeline configuration is missing or invalid."""
