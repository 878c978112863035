"""Dimension builder stages.

Each dimension is maintained by set difference on its natural key:

    new keys = distinct keys in the new clean rows - keys already in the dimension

and only the new keys are inserted, with surrogate ids continuing from the
current maximum. Existing rows are never updated and their ids never change.

Natural keys:
- Team: team name
- Player: (team id, player name), so Team must be built first
- Venue: (venue name, city), null city stored as ``NA``
- Match type: format string
- Date: calendar date

Team and Player read the rosters in clean_player, so they hold back any match
whose raw record clean_player has not flattened yet.
"""

import calendar
import logging
from collections.abc import Callable
from datetime import date
from typing import Any, Iterable, Optional

from sqlmodel import Session, select

from cricket_warehouse.errors import JoinMissError
from cricket_warehouse.models.clean import CleanMatchDetail, CleanPlayer
from cricket_warehouse.models.consumption import (
    DimDate,
    DimMatchType,
    DimPlayer,
    DimTeam,
    DimVenue,
)
from cricket_warehouse.models.raw import RawMatch
from cricket_warehouse.transform.base import StageResult, TrackedStage, ready_prefix
from cricket_warehouse.transform.clean import CleanPlayerStage
from cricket_warehouse.transform.flatten import NOT_AVAILABLE
from cricket_warehouse.transform.upsert import (
    SurrogateKeyAllocator,
    insert_missing,
    load_natural_keys,
)

logger = logging.getLogger(__name__)


def normalize_city(city: Any) -> str:
    return city if city else NOT_AVAILABLE


def date_attributes(value: date) -> dict[str, Any]:
    """Calendar attributes for one date (ISO weekday, Saturday/Sunday weekend)."""
    iso_weekday = value.isoweekday()
    return {
        "full_date": value,
        "day": value.day,
        "month": value.month,
        "year": value.year,
        "quarter": (value.month - 1) // 3 + 1,
        "day_of_week": iso_weekday,
        "day_of_month": value.day,
        "day_of_year": value.timetuple().tm_yday,
        "day_name": calendar.day_name[value.weekday()],
        "is_weekend": iso_weekday >= 6,
    }


def team_ids_by_name(session: Session, names: Iterable[Optional[str]]) -> dict[str, int]:
    """Lookup of team surrogate ids for the given names."""
    names = {n for n in names if n}
    if not names:
        return {}
    rows = session.exec(select(DimTeam).where(DimTeam.team_name.in_(sorted(names)))).all()
    return {row.team_name: row.team_id for row in rows}


def rosters_flattened(session: Session, stage: TrackedStage) -> Callable[[CleanMatchDetail], bool]:
    """Whether ``clean_player`` has already flattened a match's raw record."""
    through = stage.tracker.get_offset(session, CleanPlayerStage.name, RawMatch)
    return lambda match: match.raw_record_id <= through


class TeamDimensionStage(TrackedStage):
    """clean_match_detail (+ rosters of the new matches) → dim_team."""

    name = "team_dim"
    source = CleanMatchDetail

    def ready(self, session: Session, rows: list[CleanMatchDetail]) -> list[CleanMatchDetail]:
        return ready_prefix(rows, rosters_flattened(session, self))

    def process(self, session: Session, rows: list[CleanMatchDetail], result: StageResult) -> None:
        names = []
        for match in rows:
            names.extend([match.first_team, match.second_team, match.toss_winner])
            if match.winner != NOT_AVAILABLE:
                names.append(match.winner)

        match_ids = [match.match_id for match in rows]
        names.extend(
            session.exec(
                select(CleanPlayer.team_name).where(CleanPlayer.match_id.in_(match_ids))
            ).all()
        )

        candidates = [{"team_name": name} for name in names if name]
        result.metrics += insert_missing(
            session,
            DimTeam,
            candidates,
            ["team_name"],
            allocator=SurrogateKeyAllocator(session, DimTeam, "team_id"),
        )

        logger.info(f"{self.name}: {result.metrics}")


class PlayerDimensionStage(TrackedStage):
    """Rosters of the new clean matches → dim_player, keyed by (team id, player name).

    Follows clean_match_detail rather than clean_player so that it moves through
    the matches in step with the other dimensions and the match facts.
    """

    name = "player_dim"
    source = CleanMatchDetail

    def ready(self, session: Session, rows: list[CleanMatchDetail]) -> list[CleanMatchDetail]:
        flattened = rosters_flattened(session, self)
        teams_through = self.tracker.get_offset(session, TeamDimensionStage.name, CleanMatchDetail)
        return ready_prefix(rows, lambda match: flattened(match) and match.id <= teams_through)

    def process(self, session: Session, rows: list[CleanMatchDetail], result: StageResult) -> None:
        match_ids = [match.match_id for match in rows]
        players = session.exec(
            select(CleanPlayer)
            .where(CleanPlayer.match_id.in_(match_ids))
            .order_by(CleanPlayer.id)
        ).all()
        team_ids = team_ids_by_name(session, {row.team_name for row in players})

        candidates = []
        for row in players:
            team_id = team_ids.get(row.team_name)
            if team_id is None:
                logger.debug(f"{self.name}: {JoinMissError(row.match_id, 'team', row.team_name)}")
                result.metrics.error_rows += 1
                continue
            candidates.append({"team_id": team_id, "player_name": row.player_name})

        existing = load_natural_keys(
            session,
            DimPlayer,
            ["team_id", "player_name"],
            DimPlayer.team_id.in_(sorted(set(team_ids.values()))),
        )
        result.metrics += insert_missing(
            session,
            DimPlayer,
            candidates,
            ["team_id", "player_name"],
            existing_keys=existing,
            allocator=SurrogateKeyAllocator(session, DimPlayer, "player_id"),
        )

        logger.info(f"{self.name}: {result.metrics}")


class VenueDimensionStage(TrackedStage):
    """clean_match_detail → dim_venue, keyed by (venue, city)."""

    name = "venue_dim"
    source = CleanMatchDetail

    def process(self, session: Session, rows: list[CleanMatchDetail], result: StageResult) -> None:
        candidates = [
            {"venue_name": match.venue, "city": normalize_city(match.city)}
            for match in rows
            if match.venue
        ]
        result.metrics += insert_missing(
            session,
            DimVenue,
            candidates,
            ["venue_name", "city"],
            allocator=SurrogateKeyAllocator(session, DimVenue, "venue_id"),
        )

        logger.info(f"{self.name}: {result.metrics}")


class MatchTypeDimensionStage(TrackedStage):
    """clean_match_detail → dim_match_type."""

    name = "match_type_dim"
    source = CleanMatchDetail

    def process(self, session: Session, rows: list[CleanMatchDetail], result: StageResult) -> None:
        candidates = [{"match_type": match.match_type} for match in rows if match.match_type]
        result.metrics += insert_missing(
            session,
            DimMatchType,
            candidates,
            ["match_type"],
            allocator=SurrogateKeyAllocator(session, DimMatchType, "match_type_id"),
        )

        logger.info(f"{self.name}: {result.metrics}")


class DateDimensionStage(TrackedStage):
    """clean_match_detail → dim_date.

    New dates get ids in ascending date order, continuing from the current
    maximum id. Ids are never re-ranked over the full date set.
    """

    name = "date_dim"
    source = CleanMatchDetail

    def process(self, session: Session, rows: list[CleanMatchDetail], result: StageResult) -> None:
        new_dates = sorted({match.event_date for match in rows if match.event_date})
        candidates = [date_attributes(d) for d in new_dates]

        result.metrics += insert_missing(
            session,
            DimDate,
            candidates,
            ["full_date"],
            existing_keys=load_natural_keys(
                session, DimDate, ["full_date"], DimDate.full_date.in_(new_dates)
            ),
            allocator=SurrogateKeyAllocator(session, DimDate, "date_id"),
        )

        logger.info(f"{self.name}: {result.metrics}")
