"""Ingestion layer: staged files into the raw layer, plus pipeline configuration."""

from cricket_warehouse.ingestion.config import PipelineConfig, StageConfig, load_pipeline_config
from cricket_warehouse.ingestion.raw_storage import IngestionResult, RawIngestor

__all__ = [
    "IngestionResult",
    "PipelineConfig",
    "RawIngestor",
    "StageConfig",
    "load_pipeline_config",
]
