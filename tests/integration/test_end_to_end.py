"""End-to-end tests: staged files through every stage to the dashboard query.

Runs the real scheduler over an in-memory SQLite warehouse.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import func, select

from cricket_warehouse.ingestion.config import PipelineConfig
from cricket_warehouse.models import (
    CleanDelivery,
    CleanMatchDetail,
    DimPlayer,
    DimTeam,
    FactDelivery,
    FactMatch,
    RawMatch,
)
from cricket_warehouse.pipeline import PipelineScheduler, build_default_stages
from cricket_warehouse.query import team_match_report
from match_documents import build_match_document, write_match

pytestmark = pytest.mark.integration

T0 = datetime(2024, 6, 3, 12, 0, tzinfo=UTC)


def _count(session, model) -> int:
    return session.exec(select(func.count()).select_from(model)).one()


def _india_pakistan(date: str = "2024-06-09") -> dict:
    return build_match_document(
        info={
            "dates": [date],
            "teams": ["India", "Pakistan"],
            "players": {"India": ["RG Sharma", "V Kohli"], "Pakistan": ["Babar Azam", "Naseem Shah"]},
            "outcome": {"winner": "India", "by": {"runs": 6}},
            "toss": {"winner": "Pakistan", "decision": "field"},
            "event": {"name": "ICC Men's T20 World Cup", "match_number": 19},
        },
        innings=[],
    )


class TestEndToEnd:
    def test_single_match_scenario(self, scheduler, staged_match, session_factory):
        scheduler.activate_all()
        result = scheduler.tick(T0)

        assert result.failed == []
        with session_factory() as session:
            fact = session.exec(select(FactMatch)).one()
            assert fact.team_a_balls == 10
            assert fact.team_a_wickets == 2
            assert fact.team_a_extra_runs == 1
            assert fact.team_a_total_runs == 43
            assert _count(session, FactDelivery) == 16

            report = team_match_report(session, "South Africa")
            assert report.total_matches == 1
            assert report.matches_won == 1
            assert report.rows[0].opponent_team_name == "Canada"
            assert report.rows[0].winner_team_name == "South Africa"

            canada = team_match_report(session, "Canada")
            assert canada.total_matches == 1
            assert canada.matches_won == 0

    def test_incremental_run_does_not_reprocess(self, scheduler, staging_dir, staged_match, session_factory):
        scheduler.activate_all()
        scheduler.tick(T0)

        with session_factory() as session:
            team_ids = {t.team_name: t.team_id for t in session.exec(select(DimTeam)).all()}
            delivery_ids = [d.id for d in session.exec(select(CleanDelivery)).all()]

        write_match(staging_dir, "1415719.json", _india_pakistan())
        result = scheduler.tick(T0 + timedelta(minutes=5))

        assert result.failed == []
        assert result.runs["raw_ingest"].result.metrics.inserted_rows == 1
        with session_factory() as session:
            assert _count(session, RawMatch) == 2
            assert _count(session, CleanMatchDetail) == 2
            assert _count(session, FactMatch) == 2
            assert [d.id for d in session.exec(select(CleanDelivery)).all()] == delivery_ids
            assert _count(session, FactDelivery) == 16

            teams = {t.team_name: t.team_id for t in session.exec(select(DimTeam)).all()}
            assert {k: teams[k] for k in team_ids} == team_ids
            assert teams["India"] > max(team_ids.values())
            assert _count(session, DimPlayer) == 13

            assert team_match_report(session, "India").matches_won == 1

    def test_restaged_copy_changes_nothing(self, scheduler, staging_dir, staged_match, match_document, session_factory):
        scheduler.activate_all()
        scheduler.tick(T0)

        write_match(staging_dir, "copy-of-1415701.json", match_document)
        result = scheduler.tick(T0 + timedelta(minutes=5))

        assert result.runs["raw_ingest"].result.metrics.inserted_rows == 0
        assert result.ran == ["raw_ingest"]
        with session_factory() as session:
            assert _count(session, RawMatch) == 1
            assert _count(session, FactMatch) == 1

    def test_jsonl_file_with_several_matches(self, scheduler, staging_dir, session_factory):
        lines = [json.dumps(build_match_document()), json.dumps(_india_pakistan())]
        (staging_dir / "t20wc.jsonl").write_text("\n".join(lines))

        scheduler.activate_all()
        scheduler.tick(T0)

        with session_factory() as session:
            match_ids = sorted(session.exec(select(FactMatch.match_id)).all())
            assert match_ids == ["t20wc-1", "t20wc-2"]

    def test_small_batches_keep_stages_in_step(self, session_factory, staging_dir):
        for i, date in enumerate(["2024-06-01", "2024-06-02", "2024-06-03"]):
            write_match(staging_dir, f"{i}.json", build_match_document(info={"dates": [date]}))

        config = PipelineConfig(staging_dir=staging_dir, batch_size=1)
        scheduler = PipelineScheduler(session_factory, build_default_stages(config), config)
        scheduler.activate_all()

        counts = []
        for minute in (0, 2, 4, 6):
            result = scheduler.tick(T0 + timedelta(minutes=minute))
            assert result.failed == []
            if "delivery_fact" in result.ran:
                assert result.runs["delivery_fact"].result.metrics.error_rows == 0
            with session_factory() as session:
                counts.append((_count(session, CleanMatchDetail), _count(session, FactMatch)))

        assert counts == [(1, 1), (2, 2), (3, 3), (3, 3)]
        with session_factory() as session:
            assert _count(session, CleanDelivery) == 48
            assert _count(session, DimPlayer) == 9
            assert _count(session, FactDelivery) == 48
