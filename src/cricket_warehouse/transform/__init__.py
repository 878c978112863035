"""Transformation layer: raw documents → clean tables → dimensions and facts.

Architecture:
    raw_match (JSON) → clean_match_detail / clean_player / clean_delivery
        → dim_team / dim_player / dim_venue / dim_match_type / dim_date
        → fact_match / fact_delivery

Every stage consumes its source through the change tracker and writes with
natural-key dedup, so re-running a stage over the same rows inserts nothing.
"""

from cricket_warehouse.transform.base import BaseStage, StageResult, TrackedStage
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
from cricket_warehouse.transform.upsert import UpsertMetrics

__all__ = [
    "BaseStage",
    "TrackedStage",
    "StageResult",
    "ChangeTracker",
    "UpsertMetrics",
    "CleanMatchStage",
    "CleanPlayerStage",
    "CleanDeliveryStage",
    "TeamDimensionStage",
    "PlayerDimensionStage",
    "VenueDimensionStage",
    "MatchTypeDimensionStage",
    "DateDimensionStage",
    "MatchFactStage",
    "DeliveryFactStage",
]
