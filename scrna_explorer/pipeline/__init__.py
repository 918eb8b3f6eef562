"""Pipeline orchestration for scRNA-Explorer.

Example Usage
-------------
>>> from scrna_explorer.pipeline import build_default_pipeline, PipelineLogger
>>> logger = PipelineLogger("output/logs")
>>> logger.setup()
>>> pipeline = build_default_pipeline(config, cell_types, logger=logger)
>>> session = pipeline.run(source="data/filtered_feature_bc_matrix")
>>> pipeline.failures
"""

from .builder import build_default_pipeline
from .executor import SessionPipeline
from .logger import ColoredFormatter, PipelineLogger
from .stage import Stage

__all__ = [
    "build_default_pipeline",
    "SessionPipeline",
    "ColoredFormatter",
    "PipelineLogger",
    "Stage",
]
