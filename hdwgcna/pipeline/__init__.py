"""Pipeline orchestration module.

Provides stage execution with dependency resolution, run logging and the
end-to-end ``run_pipeline`` entry point.

Example Usage
-------------
>>> from hdwgcna.config import HdWGCNAConfig
>>> from hdwgcna.pipeline import PipelineLogger, run_pipeline
>>> # Setup logging
>>> logger = PipelineLogger("out/logs")
>>> logger.setup()
>>> # Run all stages
>>> config = HdWGCNAConfig.from_yaml("hdwgcna.yaml")
>>> store, summary = run_pipeline(adata, config, output_dir="out/", logger=logger)
"""

# Logging
from .logger import (
    ColoredFormatter,
    PipelineLogger,
)

# Execution
from .executor import StageExecutor
from .runner import run_pipeline

__all__ = [
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "StageExecutor",
    "run_pipeline",
]
