"""Landing/staging adapter: list new files, read them, consult ingestion metadata."""

from cricket_warehouse.staging.local import LocalStagingArea, StagedFile

__all__ = ["LocalStagingArea", "StagedFile"]
