"""Stage registry: names, dependency edges and the default stage set.

Dependency graph (upstream → downstream):

    raw_ingest → clean_match → clean_player → clean_delivery
        → team_dim → player_dim
        → venue_dim
        → match_type_dim
        → date_dim
    {player_dim, venue_dim, match_type_dim, date_dim} → match_fact → delivery_fact
"""

import logging
from typing import Optional

from sqlmodel import Session

from cricket_warehouse.ingestion.config import PipelineConfig
from cricket_warehouse.ingestion.raw_storage import RawIngestor
from cricket_warehouse.staging.local import LocalStagingArea
from cricket_warehouse.transform.base import BaseStage, StageResult
from cricket_warehouse.transform.change_tracker import ChangeTracker
from cricket_warehouse.transform.clean import (
    CleanDeliveryStage,
    CleanMatchStage,
    CleanPlayerStage,
)
from cricket_warehouse.transform.dimensions import (
    DateDimensionStage,
    MatchTypeDimensionStage,
    PlayerDimensionStage,
    TeamDimensionStage,
    VenueDimensionStage,
)
from cricket_warehouse.transform.facts import DeliveryFactStage, MatchFactStage

logger = logging.getLogger(__name__)

# stage name → upstream stage names
STAGE_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    "raw_ingest": (),
    "clean_match": ("raw_ingest",),
    "clean_player": ("clean_match",),
    "clean_delivery": ("clean_player",),
    "team_dim": ("clean_delivery",),
    "player_dim": ("team_dim",),
    "venue_dim": ("clean_delivery",),
    "match_type_dim": ("clean_delivery",),
    "date_dim": ("clean_delivery",),
    "match_fact": ("player_dim", "venue_dim", "match_type_dim", "date_dim"),
    "delivery_fact": ("match_fact",),
}

STAGE_NAMES: tuple[str, ...] = tuple(STAGE_DEPENDENCIES)


class RawIngestStage(BaseStage):
    """Staging area → raw_match.

    Parse failures are record-level: they end up on ``StageResult.errors`` while
    the rest of the batch is committed.
    """

    name = "raw_ingest"

    def __init__(self, staging: LocalStagingArea, ingestor: Optional[RawIngestor] = None):
        self.staging = staging
        self.ingestor = ingestor or RawIngestor()

    def has_new_data(self, session: Session) -> bool:
        return self.staging.has_new_files(session)

    def run(self, session: Session) -> StageResult:
        result = StageResult(stage=self.name)
        staged_files = self.staging.list_new_files(session)

        if not staged_files:
            result.skipped = True
            return result.finish()

        ingestion = self.ingestor.ingest(session, staged_files)
        result.rows_read = ingestion.files_seen
        result.metrics.total_source_rows = ingestion.records_loaded + len(ingestion.errors)
        result.metrics.inserted_rows = ingestion.records_loaded
        result.metrics.error_rows = len(ingestion.errors)
        result.errors.extend(ingestion.error_messages)

        logger.info(
            f"{self.name}: {ingestion.files_loaded} loaded, "
            f"{ingestion.files_duplicate} duplicate, {ingestion.files_rejected} rejected "
            f"({ingestion.records_loaded} record(s))"
        )
        return result.finish()


def build_default_stages(config: PipelineConfig) -> list[BaseStage]:
    """Instantiate every stage with a shared change tracker."""
    tracker = ChangeTracker(batch_size=config.batch_size)
    return [
        RawIngestStage(LocalStagingArea(config.staging_dir)),
        CleanMatchStage(tracker),
        CleanPlayerStage(tracker),
        CleanDeliveryStage(tracker),
        TeamDimensionStage(tracker),
        PlayerDimensionStage(tracker),
        VenueDimensionStage(tracker),
        MatchTypeDimensionStage(tracker),
        DateDimensionStage(tracker),
        MatchFactStage(tracker),
        DeliveryFactStage(tracker),
    ]
