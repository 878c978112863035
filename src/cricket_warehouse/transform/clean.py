"""Clean-layer stages: raw documents into match, player and delivery rows.

Each stage consumes the raw stream with its own cursor, so the three run
independently and each can be replayed on its own.
"""

import logging
from typing import Iterable

from sqlmodel import Session, select

from cricket_warehouse.errors import ShapeMismatchError
from cricket_warehouse.models.clean import CleanDelivery, CleanMatchDetail, CleanPlayer
from cricket_warehouse.models.raw import RawMatch
from cricket_warehouse.transform.base import StageResult, TrackedStage
from cricket_warehouse.transform.flatten import (
    flatten_deliveries,
    flatten_match_detail,
    flatten_players,
    resolve_match_id,
)
from cricket_warehouse.transform.upsert import UpsertMetrics, insert_missing, load_natural_keys

logger = logging.getLogger(__name__)


def _log_issues(stage: str, issues: Iterable[ShapeMismatchError]) -> None:
    for issue in issues:
        logger.warning(f"{stage}: {issue}")


def _match_id(raw: RawMatch) -> str:
    return resolve_match_id(raw.source_file, raw.row_number)


class CleanMatchStage(TrackedStage):
    """raw_match → clean_match_detail (one row per match id)."""

    name = "clean_match"
    source = RawMatch

    def process(self, session: Session, rows: list[RawMatch], result: StageResult) -> None:
        candidates = []
        for raw in rows:
            issues: list[ShapeMismatchError] = []
            detail = flatten_match_detail(_match_id(raw), raw.info, issues)
            detail["raw_record_id"] = raw.id
            candidates.append(detail)
            _log_issues(self.name, issues)

        match_ids = [c["match_id"] for c in candidates]
        existing = load_natural_keys(
            session, CleanMatchDetail, ["match_id"], CleanMatchDetail.match_id.in_(match_ids)
        )
        result.metrics += insert_missing(
            session, CleanMatchDetail, candidates, ["match_id"], existing_keys=existing
        )

        logger.info(f"{self.name}: {result.metrics}")


class CleanPlayerStage(TrackedStage):
    """raw_match → clean_player (one row per match, team, player)."""

    name = "clean_player"
    source = RawMatch
    natural_key = ("match_id", "team_name", "player_name")

    def process(self, session: Session, rows: list[RawMatch], result: StageResult) -> None:
        candidates = []
        for raw in rows:
            issues: list[ShapeMismatchError] = []
            candidates.extend(flatten_players(_match_id(raw), raw.info, issues))
            _log_issues(self.name, issues)

        match_ids = {c["match_id"] for c in candidates}
        existing = load_natural_keys(
            session, CleanPlayer, self.natural_key, CleanPlayer.match_id.in_(sorted(match_ids))
        )
        result.metrics += insert_missing(
            session, CleanPlayer, candidates, self.natural_key, existing_keys=existing
        )

        logger.info(f"{self.name}: {result.metrics}")


class CleanDeliveryStage(TrackedStage):
    """raw_match → clean_delivery (outer-flattened delivery events).

    Deliveries have no natural key of their own once fanned out, so the guard is
    per match: a match that already has delivery rows is skipped entirely.
    """

    name = "clean_delivery"
    source = RawMatch

    def process(self, session: Session, rows: list[RawMatch], result: StageResult) -> None:
        match_ids = {_match_id(raw) for raw in rows}
        done = set(
            session.exec(
                select(CleanDelivery.match_id)
                .where(CleanDelivery.match_id.in_(sorted(match_ids)))
                .distinct()
            ).all()
        )

        metrics = UpsertMetrics()
        for raw in rows:
            match_id = _match_id(raw)
            issues: list[ShapeMismatchError] = []
            deliveries = flatten_deliveries(match_id, raw.innings, issues)
            _log_issues(self.name, issues)

            metrics.total_source_rows += len(deliveries)
            if match_id in done:
                logger.info(f"{self.name}: match {match_id} already flattened, skipping")
                metrics.skipped_rows += len(deliveries)
                continue

            session.add_all(CleanDelivery(**row) for row in deliveries)
            metrics.inserted_rows += len(deliveries)
            done.add(match_id)

        result.metrics += metrics
        logger.info(f"{self.name}: {result.metrics}")
