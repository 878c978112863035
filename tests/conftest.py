"""Pytest configuration and fixtures for all tests."""

from functools import partial
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from cricket_warehouse.database import init_db, session_scope
from cricket_warehouse.ingestion.config import PipelineConfig
from cricket_warehouse.pipeline import PipelineScheduler, RawIngestStage, build_default_stages
from cricket_warehouse.staging import LocalStagingArea
from match_documents import build_match_document, write_match


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite warehouse with every table created."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine: Engine) -> Generator[Session, None, None]:
    """Committing session over the test warehouse."""
    with session_scope(engine) as session:
        yield session


@pytest.fixture
def session_factory(engine: Engine):
    """Zero-argument callable returning a committing session context manager."""
    return partial(session_scope, engine)


# ============================================================================
# Staging Fixtures
# ============================================================================


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "staging"
    directory.mkdir()
    return directory


@pytest.fixture
def match_document() -> dict:
    """South Africa vs Canada, see match_documents.py for the numbers."""
    return build_match_document()


@pytest.fixture
def staged_match(staging_dir: Path, match_document: dict) -> Path:
    return write_match(staging_dir, "1415701.json", match_document)


# ============================================================================
# Pipeline Fixtures
# ============================================================================


@pytest.fixture
def pipeline_config(staging_dir: Path) -> PipelineConfig:
    return PipelineConfig(staging_dir=staging_dir)


@pytest.fixture
def scheduler(session_factory, pipeline_config: PipelineConfig) -> PipelineScheduler:
    return PipelineScheduler(session_factory, build_default_stages(pipeline_config), pipeline_config)


@pytest.fixture
def run_stages(session: Session, staging_dir: Path):
    """Ingest the staging directory, then run the given stage classes in order.

    Returns the StageResult of every stage that ran, keyed by stage name.
    """

    def run(*stage_classes):
        results = {"raw_ingest": RawIngestStage(LocalStagingArea(staging_dir)).run(session)}
        for stage_class in stage_classes:
            stage = stage_class()
            results[stage.name] = stage.run(session)
        session.flush()
        return results

    return run
