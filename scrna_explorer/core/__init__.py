"""Core computational modules for scRNA-Explorer.

This package contains the analysis stages:
- session: Immutable analysis snapshots
- preprocessing: 10x loading, cell QC, normalization and HVG selection
- clustering: PCA, Leiden clustering, UMAP and marker discovery
- annotation: Manual cluster -> cell-type labelling
- enrichment: Enrichr gene-set lookups
- report: Figures and the static HTML report
"""
