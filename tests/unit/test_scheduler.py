"""Unit tests for the pipeline scheduler."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import select

from cricket_warehouse.errors import (
    ActivationOrderError,
    ConfigurationError,
    DependencyNotReadyError,
    UnknownStageError,
)
from cricket_warehouse.ingestion.config import PipelineConfig, StageConfig
from cricket_warehouse.models import FactDelivery, FactMatch
from cricket_warehouse.pipeline import PipelineScheduler, StageStatus, build_default_stages
from cricket_warehouse.pipeline.scheduler import topological_levels
from cricket_warehouse.pipeline.stages import STAGE_DEPENDENCIES, STAGE_NAMES
from cricket_warehouse.transform.base import BaseStage, StageResult
from match_documents import build_match_document, write_match

T0 = datetime(2024, 6, 3, 12, 0, tzinfo=UTC)


class FakeStage(BaseStage):
    """Stage with scripted behaviour for scheduler tests."""

    def __init__(self, name, pending=True, error=None, record_errors=()):
        self.name = name
        self.pending = pending
        self.error = error
        self.record_errors = list(record_errors)
        self.runs = 0

    def has_new_data(self, session):
        return self.pending

    def run(self, session):
        self.runs += 1
        if self.error:
            raise RuntimeError(self.error)
        result = StageResult(stage=self.name)
        result.errors.extend(self.record_errors)
        return result.finish()


def _fake_scheduler(session_factory, stages, dependencies, **config):
    return PipelineScheduler(session_factory, stages, PipelineConfig(**config), dependencies)


class TestTopologicalLevels:
    def test_default_graph(self):
        levels = topological_levels(STAGE_DEPENDENCIES)

        assert levels[0] == ["raw_ingest"]
        assert levels[-1] == ["delivery_fact"]
        assert {"venue_dim", "match_type_dim", "date_dim", "team_dim"} <= set(levels[4])
        assert "player_dim" in levels[5]

    def test_cycle_rejected(self):
        with pytest.raises(ConfigurationError):
            topological_levels({"a": ("b",), "b": ("a",)})

    def test_unknown_upstream_rejected(self):
        with pytest.raises(ConfigurationError):
            topological_levels({"a": ("ghost",)})


class TestActivation:
    """Test activation ordering and persisted state."""

    def test_root_before_children_is_rejected(self, scheduler):
        with pytest.raises(ActivationOrderError):
            scheduler.activate("raw_ingest")

        assert scheduler.status("raw_ingest") == StageStatus.SUSPENDED

    def test_leaf_first_is_allowed(self, scheduler):
        scheduler.activate("delivery_fact")
        scheduler.activate("match_fact")

        assert scheduler.is_active("delivery_fact")
        assert scheduler.status("match_fact") == StageStatus.SCHEDULED

    def test_activate_all_and_deactivate_all(self, scheduler):
        scheduler.activate_all()
        assert all(scheduler.is_active(name) for name in STAGE_NAMES)

        scheduler.deactivate_all()
        assert all(scheduler.status(name) == StageStatus.SUSPENDED for name in STAGE_NAMES)

    def test_unknown_stage(self, scheduler):
        with pytest.raises(UnknownStageError):
            scheduler.activate("nope")
        with pytest.raises(UnknownStageError):
            scheduler.status("nope")

    def test_state_survives_new_scheduler(self, session_factory, pipeline_config, scheduler):
        scheduler.activate_all()

        again = PipelineScheduler(session_factory, build_default_stages(pipeline_config), pipeline_config)

        assert again.is_active("raw_ingest")


class TestTick:
    """Test tick execution over the real stages."""

    def test_inactive_stages_do_not_run(self, scheduler, staged_match):
        result = scheduler.tick(T0)

        assert result.ran == []
        assert result.runs["raw_ingest"].skip_reason == "inactive"

    def test_one_tick_runs_the_whole_chain(self, scheduler, staged_match, session_factory):
        scheduler.activate_all()

        result = scheduler.tick(T0)

        assert result.ran == list(scheduler.order)
        assert result.failed == []
        assert all(scheduler.status(name) == StageStatus.SUCCEEDED for name in STAGE_NAMES)
        with session_factory() as session:
            assert len(session.exec(select(FactMatch)).all()) == 1
            assert len(session.exec(select(FactDelivery)).all()) == 16

    def test_no_new_data_skips_and_reschedules(self, scheduler, staged_match):
        scheduler.activate_all()
        scheduler.tick(T0)

        result = scheduler.tick(T0 + timedelta(minutes=5))

        assert result.ran == []
        assert result.runs["clean_match"].skip_reason == "no new data"
        assert scheduler.status("clean_match") == StageStatus.SCHEDULED

    def test_cadence_not_elapsed(self, session_factory, staging_dir, staged_match):
        config = PipelineConfig(staging_dir=staging_dir, stages={"raw_ingest": StageConfig(cadence_seconds=300)})
        scheduler = PipelineScheduler(session_factory, build_default_stages(config), config)
        scheduler.activate_all()
        scheduler.tick(T0)

        write_match(staging_dir, "1415702.json")
        result = scheduler.tick(T0 + timedelta(seconds=60))

        assert result.runs["raw_ingest"].skip_reason == "not due"
        assert "raw_ingest" in scheduler.tick(T0 + timedelta(seconds=301)).ran

    def test_slow_dimension_holds_back_match_fact(self, session_factory, staging_dir, staged_match):
        config = PipelineConfig(staging_dir=staging_dir, stages={"date_dim": StageConfig(cadence_seconds=300)})
        scheduler = PipelineScheduler(session_factory, build_default_stages(config), config)
        scheduler.activate_all()
        scheduler.tick(T0)

        write_match(staging_dir, "1415702.json", build_match_document(info={"dates": ["2024-06-05"]}))
        held = scheduler.tick(T0 + timedelta(seconds=60))

        assert held.runs["date_dim"].skip_reason == "not due"
        assert held.runs["match_fact"].skip_reason == "waiting on upstream date_dim"
        assert held.runs["delivery_fact"].skip_reason == "waiting on upstream match_fact"
        assert "venue_dim" in held.ran

        caught_up = scheduler.tick(T0 + timedelta(seconds=400))

        assert {"date_dim", "match_fact", "delivery_fact"} <= set(caught_up.ran)
        with session_factory() as session:
            assert sorted(session.exec(select(FactMatch.match_id)).all()) == ["1415701", "1415702"]
            assert len(session.exec(select(FactDelivery)).all()) == 32

    def test_slow_clean_delivery_does_not_freeze_empty_facts(self, session_factory, staging_dir, staged_match):
        config = PipelineConfig(staging_dir=staging_dir, stages={"clean_delivery": StageConfig(cadence_seconds=300)})
        scheduler = PipelineScheduler(session_factory, build_default_stages(config), config)
        scheduler.activate_all()
        scheduler.tick(T0)

        write_match(staging_dir, "1415702.json", build_match_document(info={"dates": ["2024-06-05"]}))
        held = scheduler.tick(T0 + timedelta(seconds=60))

        assert held.runs["team_dim"].skip_reason == "waiting on upstream clean_delivery"
        assert "match_fact" not in held.ran

        scheduler.tick(T0 + timedelta(seconds=400))

        with session_factory() as session:
            fact = session.exec(select(FactMatch).where(FactMatch.match_id == "1415702")).one()
            assert fact.team_a_balls == 10
            assert fact.team_a_total_runs == 43
            assert fact.team_b_total_runs == 9

    def test_record_errors_fail_stage_but_not_dependents(self, scheduler, staging_dir, staged_match):
        (staging_dir / "broken.json").write_text("{")
        scheduler.activate_all()

        result = scheduler.tick(T0)

        assert scheduler.status("raw_ingest") == StageStatus.FAILED
        assert scheduler.errors("raw_ingest")
        assert "broken.json#1" in scheduler.errors("raw_ingest")[0]
        assert "clean_match" in result.ran
        assert scheduler.status("delivery_fact") == StageStatus.SUCCEEDED

    def test_run_stage_without_data(self, scheduler):
        with pytest.raises(DependencyNotReadyError):
            scheduler.run_stage("raw_ingest")

    def test_run_stage_ignores_activation(self, scheduler, staged_match):
        run = scheduler.run_stage("raw_ingest")

        assert run.status == StageStatus.SUCCEEDED
        assert run.result.metrics.inserted_rows == 1


class TestFailureHandling:
    """Test abort propagation with scripted stages."""

    def test_abort_blocks_dependents(self, session_factory):
        a = FakeStage("a", error="boom")
        b = FakeStage("b")
        c = FakeStage("c")
        scheduler = _fake_scheduler(session_factory, [a, b, c], {"a": (), "b": ("a",), "c": ("b",)})
        scheduler.activate_all()

        result = scheduler.tick(T0)

        assert result.failed == ["a"]
        assert result.errors == {"a": ["boom"]}
        assert scheduler.errors("a") == ["boom"]
        assert result.runs["b"].skip_reason == "upstream a aborted"
        assert result.runs["c"].skip_reason == "upstream b aborted"
        assert b.runs == 0 and c.runs == 0

    def test_sibling_of_failed_stage_still_runs(self, session_factory):
        root = FakeStage("root")
        bad = FakeStage("bad", error="boom")
        good = FakeStage("good")
        scheduler = _fake_scheduler(
            session_factory, [root, bad, good], {"root": (), "bad": ("root",), "good": ("root",)}
        )
        scheduler.activate_all()

        scheduler.tick(T0)

        assert good.runs == 1
        assert scheduler.status("good") == StageStatus.SUCCEEDED
        assert scheduler.status("bad") == StageStatus.FAILED

    def test_failed_stage_retries_next_tick(self, session_factory):
        a = FakeStage("a", error="boom")
        scheduler = _fake_scheduler(session_factory, [a], {"a": ()})
        scheduler.activate_all()
        scheduler.tick(T0)

        a.error = None
        scheduler.tick(T0 + timedelta(minutes=2))

        assert scheduler.status("a") == StageStatus.SUCCEEDED
        assert scheduler.errors("a") == []

    def test_held_stage_blocks_dependents_only_with_pending_data(self, session_factory):
        a = FakeStage("a")
        b = FakeStage("b")
        c = FakeStage("c")
        scheduler = _fake_scheduler(session_factory, [a, b, c], {"a": (), "b": ("a",), "c": ("b",)})
        scheduler.nodes["a"].enabled = False
        scheduler.activate_all()

        result = scheduler.tick(T0)

        assert result.runs["b"].skip_reason == "waiting on upstream a"
        assert result.runs["c"].skip_reason == "waiting on upstream b"
        assert b.runs == 0 and c.runs == 0

        a.pending = False
        scheduler.tick(T0 + timedelta(minutes=2))

        assert b.runs == 1 and c.runs == 1

    def test_disabled_stage_is_skipped(self, session_factory):
        a = FakeStage("a")
        scheduler = _fake_scheduler(session_factory, [a], {"a": ()})
        scheduler.nodes["a"].enabled = False
        scheduler.activate_all()

        assert scheduler.tick(T0).runs["a"].skip_reason == "disabled"
        assert a.runs == 0

    def test_stage_missing_from_dependencies(self, session_factory):
        with pytest.raises(ConfigurationError):
            _fake_scheduler(session_factory, [FakeStage("x")], {"a": ()})


def test_run_forever_stops_after_max_ticks(session_factory):
    a = FakeStage("a")
    scheduler = _fake_scheduler(session_factory, [a], {"a": ()})
    scheduler.activate_all()

    assert scheduler.run_forever(interval=0, max_ticks=2) == 2
