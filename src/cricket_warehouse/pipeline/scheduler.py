"""Cadence-driven scheduler for the stage DAG.

Each tick walks the stages in topological order, level by level. A stage runs when:

- it is active (activated through ``activate``/``activate_all``)
- its cadence has elapsed since it last ran
- none of its upstream stages aborted earlier in the same tick
- none of its upstream stages was held back (inactive, disabled or not due) while
  it still had unconsumed data
- its guard reports new upstream data

Stages in the same level have no dependency on each other and run on a thread
pool when ``max_workers > 1``. Activation state, last status and the last error
list persist in ``meta_stage_state`` so they survive restarts.

Usage:
    >>> from functools import partial
    >>> scheduler = PipelineScheduler(partial(session_scope, engine), stages)
    >>> scheduler.activate_all()
    >>> result = scheduler.tick()
    >>> scheduler.status("match_fact")
    <StageStatus.SUCCEEDED: 'succeeded'>
"""

import logging
import signal
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from sqlmodel import Session

from cricket_warehouse.errors import (
    ActivationOrderError,
    ConfigurationError,
    DependencyNotReadyError,
    UnknownStageError,
)
from cricket_warehouse.ingestion.config import PipelineConfig
from cricket_warehouse.models.meta import StageState
from cricket_warehouse.models.raw import utcnow
from cricket_warehouse.pipeline.stages import STAGE_DEPENDENCIES
from cricket_warehouse.transform.base import BaseStage, StageResult

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

# Skips that leave data behind for the stage's dependents to wait on
HOLDING_REASONS = ("inactive", "disabled", "not due")


class StageStatus(str, Enum):
    """Stage lifecycle status."""

    SUSPENDED = "suspended"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StageNode:
    """A stage plus its place in the DAG."""

    stage: BaseStage
    upstream: tuple[str, ...] = ()
    cadence_seconds: int = 0
    enabled: bool = True

    @property
    def name(self) -> str:
        return self.stage.name


@dataclass
class StageRun:
    """What happened to one stage during one tick."""

    name: str
    status: StageStatus
    result: Optional[StageResult] = None
    skip_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def ran(self) -> bool:
        return self.result is not None or self.error is not None

    @property
    def aborted(self) -> bool:
        return self.error is not None


@dataclass
class TickResult:
    """Results from one scheduler tick."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    runs: dict[str, StageRun] = field(default_factory=dict)

    @property
    def ran(self) -> list[str]:
        return [name for name, run in self.runs.items() if run.ran]

    @property
    def failed(self) -> list[str]:
        return [name for name, run in self.runs.items() if run.status == StageStatus.FAILED]

    @property
    def errors(self) -> dict[str, list[str]]:
        errors = {}
        for name, run in self.runs.items():
            messages = [run.error] if run.error else []
            if run.result is not None:
                messages.extend(run.result.errors)
            if messages:
                errors[name] = messages
        return errors

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def topological_levels(dependencies: dict[str, Iterable[str]]) -> list[list[str]]:
    """Group stage names into levels where every stage depends only on earlier levels.

    Raises:
        ConfigurationError: On an unknown upstream name or a cycle
    """
    upstream = {name: set(parents) for name, parents in dependencies.items()}
    for name, parents in upstream.items():
        missing = parents - set(upstream)
        if missing:
            raise ConfigurationError(f"stage {name} depends on unknown stage(s) {sorted(missing)}")

    levels = []
    placed: set[str] = set()
    while len(placed) < len(upstream):
        level = [
            name
            for name in upstream
            if name not in placed and upstream[name] <= placed
        ]
        if not level:
            raise ConfigurationError(
                f"dependency cycle among {sorted(set(upstream) - placed)}"
            )
        levels.append(level)
        placed.update(level)

    return levels


class PipelineScheduler:
    """Runs the stage DAG on a fixed cadence."""

    def __init__(
        self,
        session_factory: SessionFactory,
        stages: Iterable[BaseStage],
        config: Optional[PipelineConfig] = None,
        dependencies: Optional[dict[str, tuple[str, ...]]] = None,
    ):
        """Initialize the scheduler.

        Args:
            session_factory: Returns a context manager yielding a committing session,
                e.g. ``partial(session_scope, engine)``
            stages: Stage instances, one per name in ``dependencies``
            config: Pipeline configuration (cadences, worker count)
            dependencies: Stage name → upstream names (default: the warehouse DAG)
        """
        self.session_factory = session_factory
        self.config = config or PipelineConfig()
        dependencies = dependencies if dependencies is not None else STAGE_DEPENDENCIES

        self.nodes: dict[str, StageNode] = {}
        for stage in stages:
            if stage.name not in dependencies:
                raise ConfigurationError(f"stage {stage.name} has no dependency entry")
            stage_config = self.config.stage(stage.name)
            self.nodes[stage.name] = StageNode(
                stage=stage,
                upstream=tuple(dependencies[stage.name]),
                cadence_seconds=stage_config.cadence_seconds,
                enabled=stage_config.enabled,
            )

        self.levels = topological_levels({name: node.upstream for name, node in self.nodes.items()})
        self.order = [name for level in self.levels for name in level]
        self.downstream: dict[str, list[str]] = {name: [] for name in self.nodes}
        for name, node in self.nodes.items():
            for parent in node.upstream:
                self.downstream[parent].append(name)

        self._stop = threading.Event()

    # =========================================================================
    # STATE
    # =========================================================================

    def _node(self, name: str) -> StageNode:
        if name not in self.nodes:
            raise UnknownStageError(f"unknown stage: {name}")
        return self.nodes[name]

    @staticmethod
    def _state(session: Session, name: str) -> StageState:
        state = session.get(StageState, name)
        if state is None:
            state = StageState(stage_name=name)
            session.add(state)
        return state

    def _set_state(self, name: str, **values) -> None:
        with self.session_factory() as session:
            state = self._state(session, name)
            for key, value in values.items():
                setattr(state, key, value)
            session.add(state)

    def status(self, name: str) -> StageStatus:
        self._node(name)
        with self.session_factory() as session:
            state = session.get(StageState, name)
            return StageStatus(state.status) if state else StageStatus.SUSPENDED

    def errors(self, name: str) -> list[str]:
        """Errors recorded by the stage's most recent run."""
        self._node(name)
        with self.session_factory() as session:
            state = session.get(StageState, name)
            return list(state.errors or []) if state else []

    def is_active(self, name: str) -> bool:
        self._node(name)
        with self.session_factory() as session:
            state = session.get(StageState, name)
            return bool(state and state.active)

    def describe(self) -> list[StageState]:
        """Persisted state of every stage in run order (detached copies)."""
        with self.session_factory() as session:
            states = []
            for name in self.order:
                state = session.get(StageState, name)
                states.append(
                    StageState(**state.model_dump()) if state else StageState(stage_name=name)
                )
            return states

    # =========================================================================
    # ACTIVATION
    # =========================================================================

    def activate(self, name: str) -> None:
        """Activate one stage.

        Raises:
            UnknownStageError: If no stage has this name
            ActivationOrderError: If a stage depending on it is not active yet
        """
        self._node(name)
        with self.session_factory() as session:
            children = {child: session.get(StageState, child) for child in self.downstream[name]}
            inactive = [child for child, state in children.items() if not (state and state.active)]
            if inactive:
                raise ActivationOrderError(
                    f"cannot activate {name}: dependent stage(s) {', '.join(inactive)} "
                    f"must be activated first"
                )

            state = self._state(session, name)
            state.active = True
            state.status = StageStatus.SCHEDULED.value
            session.add(state)

        logger.info(f"Activated stage {name}")

    def deactivate(self, name: str) -> None:
        self._node(name)
        self._set_state(name, active=False, status=StageStatus.SUSPENDED.value)
        logger.info(f"Deactivated stage {name}")

    def activate_all(self) -> None:
        """Activate every stage, leaves first and the root last."""
        for name in reversed(self.order):
            if not self.is_active(name):
                self.activate(name)

    def deactivate_all(self) -> None:
        """Deactivate every stage, root first."""
        for name in self.order:
            self.deactivate(name)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _skip_reason(
        self, name: str, now: datetime, blocked: set[str], held: set[str]
    ) -> Optional[str]:
        """Why a stage should not run this tick (None when it should).

        ``blocked`` collects stages downstream of an abort. ``held`` collects stages
        that sat out this tick with data still pending, and their dependents.
        """
        node = self.nodes[name]

        with self.session_factory() as session:
            state = session.get(StageState, name)
            if state is None or not state.active:
                return "inactive"
            if not node.enabled:
                return "disabled"

            failed_upstream = [parent for parent in node.upstream if parent in blocked]
            if failed_upstream:
                blocked.add(name)
                return f"upstream {', '.join(failed_upstream)} aborted"

            waiting_on = [parent for parent in node.upstream if parent in held]
            if waiting_on:
                held.add(name)
                return f"waiting on upstream {', '.join(waiting_on)}"

            if state.last_run_at is not None and node.cadence_seconds:
                due_at = _as_utc(state.last_run_at) + timedelta(seconds=node.cadence_seconds)
                if now < due_at:
                    return "not due"

            if not node.stage.has_new_data(session):
                logger.debug(str(DependencyNotReadyError(f"{name}: no new upstream data")))
                state.status = StageStatus.SCHEDULED.value
                session.add(state)
                return "no new data"

        return None

    def _holds_data(self, name: str, held: set[str]) -> bool:
        """Whether a stage sitting out this tick leaves work its dependents rely on."""
        node = self.nodes[name]
        if any(parent in held for parent in node.upstream):
            return True
        with self.session_factory() as session:
            return node.stage.has_new_data(session)

    def _execute(self, name: str, now: datetime) -> StageRun:
        node = self.nodes[name]
        self._set_state(name, status=StageStatus.RUNNING.value, last_run_at=now)
        logger.info(f"Running stage {name}")

        try:
            with self.session_factory() as session:
                result = node.stage.run(session)
        except Exception as e:
            logger.exception(f"Stage {name} aborted: {e}")
            self._set_state(name, status=StageStatus.FAILED.value, errors=[str(e)])
            return StageRun(name=name, status=StageStatus.FAILED, error=str(e))

        if result.skipped:
            status = StageStatus.SCHEDULED
        elif result.has_errors:
            status = StageStatus.FAILED
            logger.warning(f"Stage {name} finished with {len(result.errors)} record error(s)")
        else:
            status = StageStatus.SUCCEEDED

        values = {"status": status.value, "errors": list(result.errors)}
        if status == StageStatus.SUCCEEDED:
            values["last_succeeded_at"] = now
        self._set_state(name, **values)

        logger.info(f"Stage {name} {status.value} in {result.duration_seconds:.2f}s: {result.metrics}")
        return StageRun(name=name, status=status, result=result)

    def run_stage(self, name: str, now: Optional[datetime] = None) -> StageRun:
        """Run one stage immediately, ignoring activation and cadence.

        Raises:
            UnknownStageError: If no stage has this name
            DependencyNotReadyError: If the stage has nothing new to consume
        """
        node = self._node(name)
        with self.session_factory() as session:
            if not node.stage.has_new_data(session):
                raise DependencyNotReadyError(f"{name}: no new upstream data")
        return self._execute(name, _as_utc(now) if now else utcnow())

    def tick(self, now: Optional[datetime] = None) -> TickResult:
        """Run every due stage once, in dependency order."""
        now = _as_utc(now) if now else utcnow()
        result = TickResult()
        blocked: set[str] = set()
        held: set[str] = set()

        for level in self.levels:
            runnable = []
            for name in level:
                reason = self._skip_reason(name, now, blocked, held)
                if reason is None:
                    runnable.append(name)
                else:
                    if reason in HOLDING_REASONS and self._holds_data(name, held):
                        held.add(name)
                    result.runs[name] = StageRun(
                        name=name, status=self.status(name), skip_reason=reason
                    )

            if self.config.max_workers > 1 and len(runnable) > 1:
                with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                    runs = list(pool.map(lambda n: self._execute(n, now), runnable))
            else:
                runs = [self._execute(name, now) for name in runnable]

            for run in runs:
                result.runs[run.name] = run
                if run.aborted:
                    blocked.add(run.name)

        result.finished_at = utcnow()
        logger.info(
            f"Tick finished in {result.duration_seconds:.2f}s: "
            f"{len(result.ran)} ran, {len(result.failed)} failed"
        )
        return result

    # =========================================================================
    # DAEMON
    # =========================================================================

    def _setup_signal_handlers(self) -> dict:
        """Setup signal handlers for graceful shutdown, returning the previous ones."""

        def shutdown_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            self.stop()

        return {
            signum: signal.signal(signum, shutdown_handler)
            for signum in (signal.SIGTERM, signal.SIGINT)
        }

    def stop(self) -> None:
        self._stop.set()

    def run_forever(self, interval: Optional[int] = None, max_ticks: Optional[int] = None) -> int:
        """Tick every ``interval`` seconds until stopped.

        Args:
            interval: Seconds between ticks (default from config)
            max_ticks: Stop after this many ticks (None = until signalled)

        Returns:
            Number of ticks run
        """
        interval = interval if interval is not None else self.config.tick_interval_seconds
        previous_handlers = {}
        if threading.current_thread() is threading.main_thread():
            previous_handlers = self._setup_signal_handlers()

        self._stop.clear()
        logger.info(f"Scheduler started, ticking every {interval}s")

        ticks = 0
        try:
            while not self._stop.is_set():
                self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self._stop.wait(interval)
        finally:
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)

        logger.info(f"Scheduler stopped after {ticks} tick(s)")
        return ticks
