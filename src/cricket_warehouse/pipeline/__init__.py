"""Pipeline scheduling for the cricket warehouse.

Stages form a DAG (see ``stages.STAGE_DEPENDENCIES``). The scheduler ticks on a
fixed interval and runs each active, due stage whose guard reports new data.
Activation goes leaves first; a stage cannot start consuming until everything
downstream of it is ready to consume its output.
"""

from cricket_warehouse.pipeline.scheduler import (
    PipelineScheduler,
    StageNode,
    StageRun,
    StageStatus,
    TickResult,
)
from cricket_warehouse.pipeline.stages import (
    STAGE_DEPENDENCIES,
    STAGE_NAMES,
    RawIngestStage,
    build_default_stages,
)

__all__ = [
    "PipelineScheduler",
    "StageNode",
    "StageRun",
    "StageStatus",
    "TickResult",
    "STAGE_DEPENDENCIES",
    "STAGE_NAMES",
    "RawIngestStage",
    "build_default_stages",
]
