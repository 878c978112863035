"""Pipeline configuration models using Pydantic."""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from cricket_warehouse.errors import ConfigurationError


class StageConfig(BaseModel):
    """Per-stage scheduling overrides."""

    cadence_seconds: int = Field(default=60, ge=0, description="Minimum seconds between runs")
    enabled: bool = True


class PipelineConfig(BaseModel):
    """Complete pipeline configuration."""

    staging_dir: Path = Field(default=Path("data/staging"), description="Directory of landed JSON files")
    database_url: Optional[str] = Field(
        default=None, description="SQLAlchemy URL (falls back to environment)"
    )
    tick_interval_seconds: int = Field(default=60, ge=1, description="Seconds between scheduler ticks")
    max_workers: int = Field(default=1, ge=1, le=16, description="Parallel stages per depth level")
    batch_size: Optional[int] = Field(
        default=None, ge=1, description="Max rows polled per stage per tick (None = all)"
    )
    stages: dict[str, StageConfig] = Field(default_factory=dict)

    @field_validator("stages")
    @classmethod
    def validate_stage_names(cls, v: dict[str, StageConfig]) -> dict[str, StageConfig]:
        """Reject overrides for stages the pipeline does not define."""
        from cricket_warehouse.pipeline.stages import STAGE_NAMES

        unknown = sorted(set(v) - set(STAGE_NAMES))
        if unknown:
            raise ValueError(f"unknown stage(s): {', '.join(unknown)}")
        return v

    def stage(self, name: str) -> StageConfig:
        """Settings for one stage (defaults when not overridden)."""
        return self.stages.get(name, StageConfig())


def load_pipeline_config(path: str | Path) -> PipelineConfig:
    """Load pipeline configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated PipelineConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If config is invalid
    """
    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"{config_path}: expected a mapping at the top level")

    try:
        return PipelineConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"{config_path}: {e}") from e
