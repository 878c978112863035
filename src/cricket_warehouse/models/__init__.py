"""ORM models for the cricket warehouse.

Layers:
1. Raw models (raw.py) - staged documents with provenance, append-only
2. Clean models (clean.py) - flattened match, player and delivery rows
3. Consumption models (consumption.py) - dimensions and facts
4. Meta models (meta.py) - change-tracking cursors and scheduler state

Usage:
    from cricket_warehouse.models import FactMatch
    from cricket_warehouse.database import get_session
    from sqlmodel import select

    with get_session() as session:
        fact = session.exec(select(FactMatch).where(FactMatch.match_id == "1384401")).first()
"""

from cricket_warehouse.models.clean import CleanDelivery, CleanMatchDetail, CleanPlayer
from cricket_warehouse.models.consumption import (
    DimDate,
    DimMatchType,
    DimPlayer,
    DimTeam,
    DimVenue,
    FactDelivery,
    FactMatch,
)
from cricket_warehouse.models.meta import StageState, StreamOffset
from cricket_warehouse.models.raw import RawMatch, StagedFileLog

__all__ = [
    # Raw
    "RawMatch",
    "StagedFileLog",
    # Clean
    "CleanMatchDetail",
    "CleanPlayer",
    "CleanDelivery",
    # Consumption
    "DimTeam",
    "DimPlayer",
    "DimVenue",
    "DimMatchType",
    "DimDate",
    "FactMatch",
    "FactDelivery",
    # Meta
    "StreamOffset",
    "StageState",
]
