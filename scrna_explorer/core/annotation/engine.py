"""Manual cell-type annotation.

Applies an analyst-supplied cluster -> cell-type table to the clustered
cells. The table must cover every observed cluster; partial tables are
rejected rather than silently labelling cells "Unknown".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd

from ...config.cell_types import CellTypeMap
from ...errors import AnnotationError
from ..clustering.de import cluster_sort_key
from ..session import AnalysisSession


@dataclass
class AnnotationResult:
    """Result from manual annotation.

    Attributes:
        mapping: Cluster id -> cell type actually applied
        label_col: Column in adata.obs holding the labels
        cell_type_counts: Cells per cell type
        unused_keys: Table entries for clusters that were not observed
        table_name: Name of the cell-type table used
    """

    mapping: Dict[str, str] = field(default_factory=dict)
    label_col: str = "cell_type"
    cell_type_counts: Dict[str, int] = field(default_factory=dict)
    unused_keys: List[str] = field(default_factory=list)
    table_name: str = ""

    def clusters_for(self, cell_type: str) -> List[str]:
        """Cluster ids annotated as ``cell_type``."""
        return [c for c, t in self.mapping.items() if t == cell_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "label_col": self.label_col,
            "mapping": dict(self.mapping),
            "cell_type_counts": dict(self.cell_type_counts),
            "unused_keys": list(self.unused_keys),
        }


class AnnotationEngine:
    """Applies a cluster -> cell-type table to clustered cells.

    Example:
        >>> from scrna_explorer.config import CellTypeMap
        >>> engine = AnnotationEngine()
        >>> table = CellTypeMap({"0": "Cardiomyocytes", "1": "Fibroblasts"})
        >>> session = engine.run(session, table)
        >>> session.adata.obs["cell_type"].value_counts()
    """

    def __init__(
        self,
        label_col: str = "cell_type",
        logger: Optional[logging.Logger] = None,
    ):
        self.label_col = label_col
        self.logger = logger or logging.getLogger(__name__)

    def annotate(
        self,
        adata: Any,
        cell_types: Union[CellTypeMap, Mapping[Any, str]],
        cluster_key: str,
    ) -> AnnotationResult:
        """Write cell-type labels to ``adata.obs[label_col]``.

        Args:
            adata: Clustered AnnData, modified in place
            cell_types: CellTypeMap or plain {cluster: cell_type} mapping
            cluster_key: Column in adata.obs with cluster assignments

        Returns:
            AnnotationResult with the applied mapping and counts

        Raises:
            AnnotationError: If any observed cluster has no entry in the table
        """
        if not isinstance(cell_types, CellTypeMap):
            cell_types = CellTypeMap(mapping=dict(cell_types))

        if cluster_key not in adata.obs:
            raise AnnotationError(
                f"Cluster column '{cluster_key}' not found in adata.obs",
                found=list(adata.obs.columns),
                suggestion="Run the cluster stage first",
            )

        clusters = sorted(adata.obs[cluster_key].astype(str).unique(), key=cluster_sort_key)
        missing, unused = cell_types.coverage(clusters)
        if missing:
            raise AnnotationError(
                f"Cell-type table does not cover {len(missing)} cluster(s)",
                expected=clusters,
                found=sorted(cell_types.mapping, key=cluster_sort_key),
                suggestion=(
                    f"Add entries for clusters {', '.join(missing)}; cluster ids change "
                    "whenever clustering parameters change"
                ),
                context={"missing": missing},
            )
        if unused:
            self.logger.warning(
                "Ignoring cell-type entries for unobserved clusters: %s", ", ".join(unused)
            )

        mapping = {c: cell_types.mapping[c] for c in clusters}
        labels = adata.obs[cluster_key].astype(str).map(mapping)
        adata.obs[self.label_col] = pd.Categorical(
            labels, categories=list(dict.fromkeys(mapping.values()))
        )

        counts = adata.obs[self.label_col].value_counts()
        result = AnnotationResult(
            mapping=mapping,
            label_col=self.label_col,
            cell_type_counts={str(k): int(v) for k, v in counts.items()},
            unused_keys=unused,
            table_name=cell_types.name,
        )
        self.logger.info(
            "Annotated %d clusters into %d cell types", len(mapping), len(counts)
        )
        return result

    def run(
        self,
        session: AnalysisSession,
        cell_types: Union[CellTypeMap, Mapping[Any, str]],
    ) -> AnalysisSession:
        """Annotate a clustered snapshot and return the next snapshot."""
        session.require("cluster", for_stage="annotate")
        adata = session.working_copy()
        result = self.annotate(adata, cell_types, session.clustering.cluster_key)
        keys = [("obs", self.label_col), ("uns", f"{self.label_col}_colors")]
        return session.advance("annotate", adata, result, keys=keys)

    @staticmethod
    def cluster_summary(session: AnalysisSession, n_top: int = 5) -> pd.DataFrame:
        """Per-cluster table of size, cell type and top markers.

        Args:
            session: Snapshot with clustering (annotation and markers optional)
            n_top: Number of top significant markers to list

        Returns:
            DataFrame with columns cluster, cell_type, n_cells, top_markers
        """
        session.require("cluster", for_stage="cluster_summary")
        sizes = session.clustering.cluster_sizes
        mapping = session.annotation.mapping if session.annotation is not None else {}
        top = session.markers.top_markers(n_top) if session.markers is not None else {}

        rows = []
        for cluster in sorted(sizes, key=cluster_sort_key):
            rows.append({
                "cluster": cluster,
                "cell_type": mapping.get(cluster, ""),
                "n_cells": sizes[cluster],
                "top_markers": ", ".join(top.get(cluster, [])),
            })
        return pd.DataFrame(rows, columns=["cluster", "cell_type", "n_cells", "top_markers"])
