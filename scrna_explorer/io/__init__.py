"""I/O utilities for scRNA-Explorer.

Provides logging helpers, the run manifest, and CSV table exports.
"""

from .logging import get_timestamped_log_path, log_json, write_run_manifest
from .tables import (
    ensure_output_dir,
    export_session_tables,
    read_gene_list,
    write_dataframe,
)

__all__ = [
    # Logging
    "get_timestamped_log_path",
    "log_json",
    "write_run_manifest",
    # Tables
    "ensure_output_dir",
    "export_session_tables",
    "read_gene_list",
    "write_dataframe",
]
