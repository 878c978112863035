"""Behave hooks for the pipeline scenarios.

Every scenario gets its own in-memory SQLite warehouse and a temporary
staging directory, so scenarios never share state.

Usage:
    behave tests/bdd
    behave tests/bdd --tags=smoke
"""

import logging
import shutil
import sys
import tempfile
from functools import partial
from pathlib import Path

from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("bdd")

# Hooks load before step modules, so the path is set at import time
TESTS_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(TESTS_DIR.parent / "src"))
sys.path.insert(0, str(TESTS_DIR))

from cricket_warehouse.database import init_db, session_scope  # noqa: E402


def before_scenario(context, scenario):
    """Fresh warehouse and staging directory."""
    context.engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(context.engine)
    context.session_factory = partial(session_scope, context.engine)
    context.staging_dir = Path(tempfile.mkdtemp(prefix="cricket-staging-"))


def after_scenario(context, scenario):
    context.engine.dispose()
    shutil.rmtree(context.staging_dir, ignore_errors=True)

    log = logger.error if scenario.status == "failed" else logger.info
    log(f"{scenario.feature.name} / {scenario.name}: {scenario.status.name}")
