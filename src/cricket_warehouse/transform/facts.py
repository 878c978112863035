"""Fact builder stages.

``match_fact`` aggregates the delivery events of each new match per side and
resolves every descriptive name to a dimension surrogate id. ``delivery_fact``
copies each delivery event with its team and players resolved.

Both are insert-if-absent by match id, so a fact is only built once every stage
it reads from has moved past the match: ``match_fact`` waits for clean_delivery
and the five dimension builders, ``delivery_fact`` waits for ``match_fact``.
A match whose dimension lookups still fail after that is left out of the fact
tables (logged, not raised).
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from cricket_warehouse.errors import JoinMissError
from cricket_warehouse.models.clean import CleanDelivery, CleanMatchDetail
from cricket_warehouse.models.consumption import (
    DimDate,
    DimMatchType,
    DimPlayer,
    DimVenue,
    FactDelivery,
    FactMatch,
)
from cricket_warehouse.models.raw import RawMatch
from cricket_warehouse.transform.base import StageResult, TrackedStage, ready_prefix
from cricket_warehouse.transform.clean import CleanDeliveryStage, CleanMatchStage
from cricket_warehouse.transform.dimensions import (
    DateDimensionStage,
    MatchTypeDimensionStage,
    PlayerDimensionStage,
    TeamDimensionStage,
    VenueDimensionStage,
    normalize_city,
    team_ids_by_name,
)
from cricket_warehouse.transform.flatten import NOT_AVAILABLE

logger = logging.getLogger(__name__)

NONE_SENTINEL = "None"

DIMENSION_STAGES = (
    TeamDimensionStage,
    PlayerDimensionStage,
    VenueDimensionStage,
    MatchTypeDimensionStage,
    DateDimensionStage,
)


@dataclass
class SideStats:
    """Aggregated innings statistics for one batting side."""

    overs_played: int = 0
    balls: int = 0
    extra_balls: int = 0
    extra_runs: int = 0
    total_runs: int = 0
    wickets: int = 0


def aggregate_side(deliveries: Iterable[CleanDelivery], team_name: Optional[str]) -> SideStats:
    """Aggregate the delivery rows batted by ``team_name``.

    Rows are fanned out by extras entries and fielders, so each measure is taken
    over its own distinct key: deliveries for balls and batter runs,
    (delivery, extra type) for extras, (delivery, player out) for wickets.
    """
    batter_runs: dict[tuple, int] = {}
    extras: dict[tuple, int] = {}
    dismissals: set[tuple] = set()
    overs = 0

    for row in deliveries:
        if row.team_name != team_name:
            continue

        key = (row.innings_number, row.over_number, row.ball_number)
        batter_runs.setdefault(key, row.runs or 0)
        overs = max(overs, row.over_number or 0)

        if row.extra_type is not None:
            extras.setdefault(key + (row.extra_type,), row.extra_runs or 0)
        if row.player_out is not None:
            dismissals.add(key + (row.player_out,))

    extra_runs = sum(extras.values())
    return SideStats(
        overs_played=overs,
        balls=len(batter_runs),
        extra_balls=len({key[:3] for key in extras}),
        extra_runs=extra_runs,
        total_runs=sum(batter_runs.values()) + extra_runs,
        wickets=len(dismissals),
    )


def _side_columns(prefix: str, stats: SideStats) -> dict[str, int]:
    return {
        f"{prefix}_overs_played": stats.overs_played,
        f"{prefix}_balls": stats.balls,
        f"{prefix}_extra_balls": stats.extra_balls,
        f"{prefix}_extra_runs": stats.extra_runs,
        f"{prefix}_total_runs": stats.total_runs,
        f"{prefix}_wickets": stats.wickets,
    }


def _deliveries_for(session: Session, match_id: str) -> list[CleanDelivery]:
    return list(
        session.exec(
            select(CleanDelivery)
            .where(CleanDelivery.match_id == match_id)
            .order_by(CleanDelivery.id)
        ).all()
    )


class MatchFactStage(TrackedStage):
    """clean_match_detail + clean_delivery + dimensions → fact_match."""

    name = "match_fact"
    source = CleanMatchDetail

    def ready(self, session: Session, rows: list[CleanMatchDetail]) -> list[CleanMatchDetail]:
        delivered = self.tracker.get_offset(session, CleanDeliveryStage.name, RawMatch)
        dimensions = min(
            self.tracker.get_offset(session, stage.name, CleanMatchDetail)
            for stage in DIMENSION_STAGES
        )
        return ready_prefix(
            rows, lambda match: match.raw_record_id <= delivered and match.id <= dimensions
        )

    def process(self, session: Session, rows: list[CleanMatchDetail], result: StageResult) -> None:
        existing = set(
            session.exec(
                select(FactMatch.match_id).where(
                    FactMatch.match_id.in_([match.match_id for match in rows])
                )
            ).all()
        )

        for match in rows:
            result.metrics.total_source_rows += 1

            if match.match_id in existing:
                result.metrics.skipped_rows += 1
                continue

            try:
                keys = self._resolve_keys(session, match)
            except JoinMissError as e:
                logger.info(f"{self.name}: excluding match: {e}")
                result.metrics.error_rows += 1
                continue

            deliveries = _deliveries_for(session, match.match_id)
            fact = FactMatch(
                match_id=match.match_id,
                event_name=match.event_name,
                event_stage=match.event_stage,
                overs_limit=match.overs,
                match_result=match.match_result,
                toss_decision=match.toss_decision,
                **keys,
                **_side_columns("team_a", aggregate_side(deliveries, match.first_team)),
                **_side_columns("team_b", aggregate_side(deliveries, match.second_team)),
            )
            session.add(fact)
            existing.add(match.match_id)
            result.metrics.inserted_rows += 1

        logger.info(f"{self.name}: {result.metrics}")

    def _resolve_keys(self, session: Session, match: CleanMatchDetail) -> dict[str, Any]:
        """Surrogate ids for every dimension the match references.

        Raises:
            JoinMissError: If a referenced dimension row does not exist
        """
        teams = team_ids_by_name(
            session, [match.first_team, match.second_team, match.toss_winner, match.winner]
        )

        def team(name: Optional[str], label: str, required: bool = True) -> Optional[int]:
            if name is None or name == NOT_AVAILABLE:
                if required:
                    raise JoinMissError(match.match_id, label, name)
                return None
            if name not in teams:
                raise JoinMissError(match.match_id, label, name)
            return teams[name]

        date_id = session.exec(
            select(DimDate.date_id).where(DimDate.full_date == match.event_date)
        ).first()
        if date_id is None:
            raise JoinMissError(match.match_id, "date", match.event_date)

        match_type_id = session.exec(
            select(DimMatchType.match_type_id).where(DimMatchType.match_type == match.match_type)
        ).first()
        if match_type_id is None:
            raise JoinMissError(match.match_id, "match type", match.match_type)

        city = normalize_city(match.city)
        venue_id = session.exec(
            select(DimVenue.venue_id).where(
                DimVenue.venue_name == match.venue, DimVenue.city == city
            )
        ).first()
        if venue_id is None:
            raise JoinMissError(match.match_id, "venue", (match.venue, city))

        return {
            "date_id": date_id,
            "match_type_id": match_type_id,
            "venue_id": venue_id,
            "team_a_id": team(match.first_team, "team"),
            "team_b_id": team(match.second_team, "team"),
            "toss_winner_team_id": team(match.toss_winner, "toss winner", required=False),
            "winner_team_id": team(match.winner, "winner", required=False),
        }


class DeliveryFactStage(TrackedStage):
    """clean_delivery + dimensions → fact_delivery.

    New clean rows only identify which matches to process; each match is then
    loaded whole so a batch boundary never splits it. A match that already has
    delivery facts, or has no match fact, is skipped.
    """

    name = "delivery_fact"
    source = CleanDelivery

    def ready(self, session: Session, rows: list[CleanDelivery]) -> list[CleanDelivery]:
        """Rows of matches that ``match_fact`` has already decided on.

        A match with no clean detail row waits while clean_match still has raw
        records to flatten, and is let through (and dropped) once it has none.
        """
        match_ids = sorted({row.match_id for row in rows})
        detail_ids = dict(
            session.exec(
                select(CleanMatchDetail.match_id, CleanMatchDetail.id).where(
                    CleanMatchDetail.match_id.in_(match_ids)
                )
            ).all()
        )
        facts_through = self.tracker.get_offset(session, MatchFactStage.name, CleanMatchDetail)
        details_pending = self.tracker.has_pending(session, CleanMatchStage.name, RawMatch)

        def decided(row: CleanDelivery) -> bool:
            detail_id = detail_ids.get(row.match_id)
            if detail_id is None:
                return not details_pending
            return detail_id <= facts_through

        return ready_prefix(rows, decided)

    def process(self, session: Session, rows: list[CleanDelivery], result: StageResult) -> None:
        match_ids = list(dict.fromkeys(row.match_id for row in rows))

        done = set(
            session.exec(
                select(FactDelivery.match_id).where(FactDelivery.match_id.in_(match_ids)).distinct()
            ).all()
        )
        facts = set(
            session.exec(select(FactMatch.match_id).where(FactMatch.match_id.in_(match_ids))).all()
        )

        for match_id in match_ids:
            if match_id in done:
                logger.debug(f"{self.name}: match {match_id} already loaded, skipping")
                continue
            if match_id not in facts:
                logger.info(f"{self.name}: {JoinMissError(match_id, 'match fact', match_id)}")
                continue

            self._load_match(session, match_id, result)

        logger.info(f"{self.name}: {result.metrics}")

    def consumed_through(self, session: Session, rows: list[CleanDelivery]) -> int:
        """Move past every row of the matches just loaded, not only the polled ones."""
        match_ids = {row.match_id for row in rows}
        last_id = session.exec(
            select(func.max(CleanDelivery.id)).where(CleanDelivery.match_id.in_(match_ids))
        ).one()
        return max(last_id or 0, rows[-1].id)

    def _load_match(self, session: Session, match_id: str, result: StageResult) -> None:
        match = session.exec(
            select(CleanMatchDetail).where(CleanMatchDetail.match_id == match_id)
        ).first()
        deliveries = _deliveries_for(session, match_id)
        result.metrics.total_source_rows += len(deliveries)

        sides = [match.first_team, match.second_team] if match else []
        teams = team_ids_by_name(session, sides)
        players = self._players_by_team(session, teams.values())

        def opponent(team_name: Optional[str]) -> Optional[str]:
            if team_name not in sides:
                return None
            return sides[1] if team_name == sides[0] else sides[0]

        dropped = 0
        for row in deliveries:
            batting_id = teams.get(row.team_name)
            fielding_id = teams.get(opponent(row.team_name))
            batter_id = players.get((batting_id, row.batter))
            non_striker_id = players.get((batting_id, row.non_striker))
            bowler_id = players.get((fielding_id, row.bowler))

            if None in (batting_id, batter_id, non_striker_id, bowler_id):
                dropped += 1
                continue

            session.add(
                FactDelivery(
                    match_id=match_id,
                    team_id=batting_id,
                    bowler_id=bowler_id,
                    batter_id=batter_id,
                    non_striker_id=non_striker_id,
                    innings_number=row.innings_number,
                    over_number=row.over_number,
                    ball_number=row.ball_number,
                    runs=row.runs or 0,
                    extra_runs=row.extra_runs or 0,
                    extra_type=row.extra_type or NONE_SENTINEL,
                    total=row.total or 0,
                    player_out=row.player_out or NONE_SENTINEL,
                    player_out_kind=row.player_out_kind or NONE_SENTINEL,
                    player_out_fielder=row.player_out_fielder or NONE_SENTINEL,
                )
            )
            result.metrics.inserted_rows += 1

        if dropped:
            logger.debug(f"{self.name}: match {match_id}: dropped {dropped} unresolved row(s)")
        result.metrics.error_rows += dropped

    @staticmethod
    def _players_by_team(session: Session, team_ids: Iterable[int]) -> dict[tuple[int, str], int]:
        team_ids = sorted(set(team_ids))
        if not team_ids:
            return {}
        players = session.exec(select(DimPlayer).where(DimPlayer.team_id.in_(team_ids))).all()
        return {(player.team_id, player.player_name): player.player_id for player in players}
