"""Command-line interface for scRNA-Explorer.

Example Usage
-------------
    # From command line:
    scrna-explorer --help
    scrna-explorer qc --input filtered_feature_bc_matrix/ --out qc/
    scrna-explorer cluster --input filtered_feature_bc_matrix/ --out clustered/
    scrna-explorer run --input filtered_feature_bc_matrix/ --cell-types cell_types.yaml
    scrna-explorer enrich --genes genes.txt --out enrich/
"""

__version__ = "1.0.0"

from .main import cli, main

__all__ = [
    "__version__",
    "cli",
    "main",
]
