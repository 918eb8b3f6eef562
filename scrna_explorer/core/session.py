"""Immutable analysis snapshots.

Every stage reads an ``AnalysisSession`` and returns a new one. Stage
engines work on ``session.working_copy()`` so the AnnData held by an earlier
snapshot is never modified. Re-running a stage drops the results of every
stage downstream of it, along with the AnnData entries those stages wrote
(cluster labels, embeddings, neighbor graphs, marker tests, cell-type
labels), which keeps stale results from leaking into a rerun.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from ..errors import StageOrderError


# Canonical stage order; also the order of the result fields below
STAGE_ORDER: Tuple[str, ...] = (
    "ingest",
    "qc",
    "normalize",
    "reduce",
    "cluster",
    "markers",
    "annotate",
    "enrich",
    "report",
)

# Session field written by each stage
STAGE_FIELDS: Dict[str, str] = {
    "ingest": "load",
    "qc": "qc",
    "normalize": "normalization",
    "reduce": "reduction",
    "cluster": "clustering",
    "markers": "markers",
    "annotate": "annotation",
    "enrich": "enrichment",
    "report": "report_path",
}

# One AnnData entry, e.g. ("obs", "leiden") or ("obsp", "connectivities")
AdataKey = Tuple[str, str]


def drop_adata_keys(adata: Any, keys: Iterable[AdataKey]) -> None:
    """Remove ``(attribute, key)`` entries from ``adata`` in place, if present."""
    for attr, key in keys:
        container = getattr(adata, attr)
        if key in container:
            del container[key]


@dataclass(frozen=True)
class AnalysisSession:
    """One immutable snapshot of the analysis.

    Attributes
    ----------
    adata : AnnData
        Cells x genes expression data with all metadata added so far
    load : LoadResult, optional
        Ingestion summary
    qc : QCResult, optional
        QC filtering summary
    normalization : NormalizationResult, optional
        Normalization and HVG summary
    reduction : ReductionResult, optional
        PCA summary
    clustering : ClusteringResult, optional
        Neighbor graph, Leiden and UMAP summary
    markers : MarkerResult, optional
        Filtered marker tables
    annotation : AnnotationResult, optional
        Cluster -> cell-type assignment
    enrichment : EnrichmentResult, optional
        Enrichr results for the queried gene list
    report_path : Path, optional
        Rendered report document
    completed_stages : Tuple[str, ...]
        Stage ids that contributed to this snapshot, in run order
    adata_keys : Dict[str, Tuple[AdataKey, ...]]
        AnnData entries written by each completed stage
    """

    adata: Any  # AnnData
    load: Any = None
    qc: Any = None
    normalization: Any = None
    reduction: Any = None
    clustering: Any = None
    markers: Any = None
    annotation: Any = None
    enrichment: Any = None
    report_path: Optional[Path] = None
    completed_stages: Tuple[str, ...] = field(default_factory=tuple)
    adata_keys: Dict[str, Tuple[AdataKey, ...]] = field(default_factory=dict)

    @property
    def n_cells(self) -> int:
        return int(self.adata.n_obs)

    @property
    def n_genes(self) -> int:
        return int(self.adata.n_vars)

    def has(self, stage_id: str) -> bool:
        """Whether ``stage_id`` has contributed to this snapshot."""
        return stage_id in self.completed_stages

    def require(self, *stage_ids: str, for_stage: str = "") -> None:
        """Raise ``StageOrderError`` unless every stage in ``stage_ids`` ran.

        Parameters
        ----------
        *stage_ids : str
            Prerequisite stage ids
        for_stage : str
            Name of the stage doing the check, for the error message
        """
        missing = [s for s in stage_ids if s not in self.completed_stages]
        if missing:
            raise StageOrderError(
                f"Stage '{for_stage or '?'}' requires stages that have not run",
                expected=list(stage_ids),
                found=list(self.completed_stages),
                suggestion=f"Run {', '.join(missing)} first",
            )

    def working_copy(self) -> Any:
        """Return a deep copy of the AnnData for a stage to modify."""
        return self.adata.copy()

    def advance(
        self,
        stage_id: str,
        adata: Any = None,
        result: Any = None,
        keys: Iterable[AdataKey] = (),
    ) -> "AnalysisSession":
        """Return the snapshot that follows this one after ``stage_id``.

        Results of stages that come after ``stage_id`` in ``STAGE_ORDER`` are
        cleared, since they were derived from data this stage replaced. The
        AnnData entries those stages wrote are removed from ``adata`` too, as
        are entries from an earlier run of ``stage_id`` it no longer writes.

        Parameters
        ----------
        stage_id : str
            Stage that produced ``adata`` and ``result``
        adata : AnnData, optional
            New AnnData. Keeps the current one if None.
        result : Any, optional
            Stage result stored in the stage's session field
        keys : iterable of (str, str)
            AnnData entries this stage wrote, as ``(attribute, key)`` pairs

        Returns
        -------
        AnalysisSession
            New snapshot; ``self`` is untouched
        """
        if stage_id not in STAGE_FIELDS:
            raise ValueError(f"Unknown stage id: {stage_id}")

        position = STAGE_ORDER.index(stage_id)
        downstream = STAGE_ORDER[position + 1:]
        changes: Dict[str, Any] = {STAGE_FIELDS[s]: None for s in downstream}
        changes[STAGE_FIELDS[stage_id]] = result

        keys = tuple(keys)
        stale = [k for s in downstream for k in self.adata_keys.get(s, ())]
        stale += [k for k in self.adata_keys.get(stage_id, ()) if k not in keys]

        # Report and enrichment do not touch the AnnData
        if adata is None:
            adata = self.adata.copy() if stale else self.adata
        drop_adata_keys(adata, stale)

        owned = {s: k for s, k in self.adata_keys.items() if s not in downstream}
        owned[stage_id] = keys

        kept = tuple(s for s in self.completed_stages if s not in downstream and s != stage_id)
        return replace(
            self,
            adata=adata,
            completed_stages=kept + (stage_id,),
            adata_keys=owned,
            **changes,
        )

    def summary(self) -> Dict[str, Any]:
        """Summarize the snapshot for logging and the run manifest."""
        data: Dict[str, Any] = {
            "n_cells": self.n_cells,
            "n_genes": self.n_genes,
            "completed_stages": list(self.completed_stages),
        }
        for stage_id in self.completed_stages:
            value = getattr(self, STAGE_FIELDS[stage_id])
            if hasattr(value, "to_dict"):
                data[stage_id] = value.to_dict()
            elif value is not None:
                data[stage_id] = str(value)
        return data
