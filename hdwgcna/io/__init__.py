"""I/O utilities for hdwgcna.

Provides logging, artifact persistence and CSV output.
"""

from .logging import get_logger, get_timestamped_log_path, log_json, log_yaml, to_builtin
from .storage import (
    ensure_output_dir,
    load_metacells,
    load_tom,
    save_experiment_tables,
    save_metacells,
    save_tom,
    tom_path,
    write_dataframe,
)

__all__ = [
    # Logging
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    "to_builtin",
    # Storage
    "ensure_output_dir",
    "load_metacells",
    "load_tom",
    "save_experiment_tables",
    "save_metacells",
    "save_tom",
    "tom_path",
    "write_dataframe",
]
