"""
exploration.py — Whole-dataset normalisation and exploratory analysis.

The model is fitted ONCE over all samples with the global design.  Two
outputs are kept:

* the per-gene dispersion/mean diagnostics, for sanity-checking the fit;
* the variance-stabilised matrix, for PCA, clustering and heatmaps.

The stabilised matrix is for description only — it is never used for
hypothesis testing (that happens per subset in
:mod:`seqflow.differential`, on raw counts).

Functions
---------
explore(counts_df, metadata_df, design, fitter)
    → ExplorationResult(dispersions, stabilized).

compute_pca(stabilized, metadata_df, covariates, n_top)
    → PC1/PC2 coordinates per sample, covariates attached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from seqflow.config import DESEQ2_DEFAULTS, MEMORY_CONFIG
from seqflow.deseq_runner import fit_deseq_model
from seqflow.protocols import ModelFitter

logger = logging.getLogger(__name__)


@dataclass
class ExplorationResult:
    """Outputs of the whole-dataset fit."""

    dispersions: pd.DataFrame
    stabilized: pd.DataFrame


def explore(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    design: str = DESEQ2_DEFAULTS["global_design"],
    fitter: ModelFitter = fit_deseq_model,
) -> ExplorationResult:
    """
    Fit the dispersion/mean model across all samples.

    Parameters
    ----------
    counts_df : pd.DataFrame
        Raw counts (genes x samples), columns aligned with the metadata.
    metadata_df : pd.DataFrame
        Validated sample metadata.
    design : str
        Formula over the covariates, e.g. ``"~ timepoint + treatment"``.
    fitter : ModelFitter
        Model fitting capability (pydeseq2 by default).

    Returns
    -------
    ExplorationResult
        Dispersion diagnostics and the stabilised matrix (same shape as
        *counts_df*).
    """
    model = fitter(counts_df, metadata_df, design)
    dispersions = model.dispersion_table()
    stabilized = model.stabilized_counts()
    stabilized = stabilized.loc[counts_df.index, counts_df.columns]
    logger.info(
        "Exploratory fit done: %d genes, VST matrix %s",
        len(dispersions), stabilized.shape,
    )
    return ExplorationResult(dispersions=dispersions, stabilized=stabilized)


def compute_pca(
    stabilized: pd.DataFrame,
    metadata_df: pd.DataFrame,
    covariates: list[str] | tuple[str, ...] = (
        DESEQ2_DEFAULTS["condition_col"],
        DESEQ2_DEFAULTS["group_col"],
    ),
    n_top: int | None = None,
) -> pd.DataFrame:
    """
    Project samples onto the first two principal components.

    Like DESeq2's ``plotPCA``, only the ``n_top`` most variable genes
    are used.

    Returns
    -------
    pd.DataFrame
        Columns: PC1, PC2 and one column per covariate.  Index = samples.
        attrs["var_explained"] = explained variance ratios.
    """
    from sklearn.decomposition import PCA

    if n_top is None:
        n_top = MEMORY_CONFIG.get("pca_top_var_genes", 500)

    transformed = stabilized
    if n_top > 0 and transformed.shape[0] > n_top:
        gene_var = transformed.var(axis=1)
        top_genes = gene_var.nlargest(n_top).index
        transformed = transformed.loc[top_genes]

    X = transformed.T.values
    sample_names = transformed.columns.tolist()

    pca = PCA(n_components=2)
    coords = pca.fit_transform(X)

    pca_df = pd.DataFrame(
        {"PC1": coords[:, 0], "PC2": coords[:, 1]},
        index=pd.Index(sample_names, name="sample"),
    )
    for col in covariates:
        pca_df[col] = metadata_df.loc[pca_df.index, col].values

    pca_df.attrs["var_explained"] = pca.explained_variance_ratio_
    pca_df.attrs["n_genes"] = transformed.shape[0]
    return pca_df
