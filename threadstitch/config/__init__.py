from .config_loader import (
    dump_parameters,
    load_parameters,
    load_thread_catalog,
    load_thread_catalogs,
    parameters_from_dict,
)
from .pipeline_config import PipelineConfig

__all__ = [
    "PipelineConfig",
    "dump_parameters",
    "load_parameters",
    "load_thread_catalog",
    "load_thread_catalogs",
    "parameters_from_dict",
]
