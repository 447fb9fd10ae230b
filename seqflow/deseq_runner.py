"""
deseq_runner.py — The pydeseq2-backed model fitter.

Only this module imports pydeseq2.  The rest of seqflow reaches the
model through the :class:`~seqflow.protocols.ModelFitter` and
:class:`~seqflow.protocols.FittedModel` protocols, which
:func:`fit_deseq_model` and :class:`DeseqModel` implement.

Fit sequence
------------
size factors (median-of-ratios, or ``poscounts`` when every gene has a
zero) → gene-wise dispersions → dispersion trend and prior → MAP
dispersions → log fold changes → Cook's distances, outlier refit.

Testing a contrast runs the Wald test and Benjamini-Hochberg adjustment
(``DeseqStats.summary``), optionally followed by apeGLM shrinkage of
the fold changes.

Functions
---------
build_deseq_dataset(counts_df, metadata_df, design)
    -> DeseqDataSet from a genes x samples matrix.

run_deseq2(dds, progress_callback)
    -> Fit step by step, timing and reporting each step.

compute_contrast(dds, contrast, alpha, shrink_lfc)
    -> Per-gene results table for one contrast.

fit_deseq_model(counts_df, metadata_df, design)
    -> The default ModelFitter.

Usage example
--------------
    from seqflow.deseq_runner import fit_deseq_model
    from seqflow.protocols import Contrast

    model = fit_deseq_model(counts_df, metadata_df, "~ treatment")
    results_df = model.results(Contrast("treatment", "RML", "Mock"), 0.05)
"""

from __future__ import annotations

import gc
import logging
import time
from typing import Callable

import numpy as np
import pandas as pd

from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

from seqflow.config import DESEQ2_DEFAULTS, MEMORY_CONFIG
from seqflow.protocols import Contrast

logger = logging.getLogger(__name__)

# Progress steps reported by run_deseq2 (plus a final "done" call).
N_DESEQ2_STEPS = 6

# Persisted results columns, in order.
RESULT_COLUMNS = ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]


def build_deseq_dataset(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    design: str = DESEQ2_DEFAULTS["subset_design"],
) -> DeseqDataSet:
    """
    Wrap a count matrix and its metadata in a ``DeseqDataSet``.

    Parameters
    ----------
    counts_df : pd.DataFrame
        Raw counts, genes x samples.  pydeseq2 wants samples x genes,
        so the matrix is transposed here.
    metadata_df : pd.DataFrame
        One row per sample; rows are taken in ``counts_df.columns`` order.
    design : str
        Formula over metadata columns, e.g. ``"~ timepoint + treatment"``.
    """
    samples_by_genes = pd.DataFrame(
        counts_df.to_numpy().T,
        index=counts_df.columns,
        columns=counts_df.index,
    )
    # Covariates as strings so formulaic treats every one as categorical.
    covariates = metadata_df.loc[samples_by_genes.index].astype(str)

    n_cpus = MEMORY_CONFIG.get("deseq2_n_cpus", 4)
    if samples_by_genes.size * 8 > 300_000_000:
        n_cpus = min(n_cpus, 2)

    dds = DeseqDataSet(
        counts=samples_by_genes,
        metadata=covariates,
        design=design,
        n_cpus=n_cpus,
        quiet=True,
    )
    del samples_by_genes
    gc.collect()
    return dds


def run_deseq2(
    dds: DeseqDataSet,
    progress_callback: Callable[[int, int, str], None] | None = None,
) -> tuple[DeseqDataSet, dict[str, float]]:
    """
    Fit *dds* in place, one pydeseq2 step at a time.

    Same sequence as ``dds.deseq2()``, split so that each step can be
    reported through *progress_callback* ``(step, N_DESEQ2_STEPS, name)``
    and timed.

    Returns
    -------
    (dds, step_timings)
        The fitted dataset and ``{step name: seconds}``.
    """
    timings: dict[str, float] = {}

    def step(index: int, name: str, *fits: Callable[[], object]) -> None:
        if progress_callback:
            progress_callback(index, N_DESEQ2_STEPS, name)
        start = time.monotonic()
        for fit in fits:
            fit()
        timings[name] = time.monotonic() - start

    # The ratio estimator needs at least one gene without zeros.
    size_factor_type = dds.size_factors_fit_type
    if (dds.X == 0).any(axis=0).all():
        size_factor_type = "poscounts"

    def cooks():
        dds.calculate_cooks()
        if dds.refit_cooks:
            dds.refit()
        dds.cooks_outlier()

    step(0, "size factors", lambda: dds.fit_size_factors(
        fit_type=size_factor_type, control_genes=dds.control_genes,
    ))
    step(1, "gene-wise dispersions", dds.fit_genewise_dispersions)
    step(2, "dispersion trend", dds.fit_dispersion_trend, dds.fit_dispersion_prior)
    step(3, "MAP dispersions", dds.fit_MAP_dispersions)
    step(4, "log fold changes", dds.fit_LFC)
    step(5, "Cook's distances", cooks)

    if progress_callback:
        progress_callback(N_DESEQ2_STEPS, N_DESEQ2_STEPS, "DESeq2 fit done")
    gc.collect()
    return dds, timings


def compute_contrast(
    dds: DeseqDataSet,
    contrast: Contrast,
    alpha: float = DESEQ2_DEFAULTS["alpha"],
    shrink_lfc: bool = DESEQ2_DEFAULTS["shrink_lfc"],
) -> pd.DataFrame:
    """
    Wald test of *contrast* on a fitted dataset.

    Returns
    -------
    pd.DataFrame
        ``RESULT_COLUMNS`` indexed by ``gene_id``.  Untestable genes keep
        ``padj = NaN``.  ``attrs["shrinkage_applied"]`` tells whether the
        fold changes are apeGLM estimates.
    """
    stats = DeseqStats(
        dds,
        contrast=[contrast.column, contrast.test_level, contrast.reference_level],
        alpha=alpha,
        quiet=True,
    )
    stats.summary()
    results_df = stats.results_df.copy()

    shrunk = False
    if shrink_lfc:
        coeff = f"{contrast.column}[T.{contrast.test_level}]"
        try:
            stats.lfc_shrink(coeff=coeff)
        except Exception as e:
            # pydeseq2 raises plain ValueErrors/KeyErrors here (unknown
            # coefficient, singular fit); the MLE estimates stay valid.
            logger.warning("apeGLM shrinkage of %s failed, keeping MLE fold changes: %s",
                           coeff, e)
        else:
            results_df[["log2FoldChange", "lfcSE"]] = stats.results_df[["log2FoldChange", "lfcSE"]]
            shrunk = True
            logger.info("Fold changes shrunk with apeGLM (%s)", coeff)

    results_df = results_df[[c for c in RESULT_COLUMNS if c in results_df.columns]]
    results_df.index.name = "gene_id"
    results_df.attrs["shrinkage_applied"] = shrunk
    results_df.attrs["contrast"] = contrast.label()
    return results_df


class DeseqModel:
    """:class:`~seqflow.protocols.FittedModel` over one fitted ``DeseqDataSet``.

    The VST matrix is computed on first request and cached.  *shrink_lfc*
    is the default for every contrast extracted from this model.
    """

    def __init__(
        self,
        dds: DeseqDataSet,
        step_timings: dict[str, float] | None = None,
        shrink_lfc: bool = DESEQ2_DEFAULTS["shrink_lfc"],
    ):
        self._dds = dds
        self.shrink_lfc = shrink_lfc
        self._vst: pd.DataFrame | None = None
        self.step_timings: dict[str, float] = dict(step_timings or {})

    @property
    def dds(self) -> DeseqDataSet:
        return self._dds

    def dispersion_table(self) -> pd.DataFrame:
        var = self._dds.var
        return pd.DataFrame(
            {
                "baseMean": np.asarray(self._dds.layers["normed_counts"]).mean(axis=0),
                "genewise_dispersion": np.asarray(var["genewise_dispersions"]),
                "fitted_dispersion": np.asarray(var["fitted_dispersions"]),
                "MAP_dispersion": np.asarray(var["MAP_dispersions"]),
                "dispersion": np.asarray(var["dispersions"]),
            },
            index=pd.Index(self._dds.var_names, name="gene_id"),
        )

    def stabilized_counts(self) -> pd.DataFrame:
        if self._vst is None:
            start = time.monotonic()
            self._dds.vst(use_design=False)
            vst = pd.DataFrame(
                self._dds.layers["vst_counts"],
                index=self._dds.obs_names,
                columns=pd.Index(self._dds.var_names, name="gene_id"),
            )
            self._vst = vst.T
            self.step_timings["vst"] = time.monotonic() - start
        return self._vst

    def results(
        self,
        contrast: Contrast,
        alpha: float = DESEQ2_DEFAULTS["alpha"],
        shrink_lfc: bool | None = None,
    ) -> pd.DataFrame:
        if shrink_lfc is None:
            shrink_lfc = self.shrink_lfc
        start = time.monotonic()
        results_df = compute_contrast(self._dds, contrast, alpha, shrink_lfc)
        self.step_timings[f"wald_test {contrast.label()}"] = time.monotonic() - start
        return results_df


def fit_deseq_model(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    design: str = DESEQ2_DEFAULTS["subset_design"],
    progress_callback: Callable[[int, int, str], None] | None = None,
    shrink_lfc: bool = DESEQ2_DEFAULTS["shrink_lfc"],
) -> DeseqModel:
    """Default :class:`~seqflow.protocols.ModelFitter`: build, fit, wrap."""
    logger.info(
        "Fitting DESeq2 %r on %d genes x %d samples",
        design, counts_df.shape[0], counts_df.shape[1],
    )
    dds = build_deseq_dataset(counts_df, metadata_df, design)
    dds, step_timings = run_deseq2(dds, progress_callback=progress_callback)
    return DeseqModel(dds, step_timings, shrink_lfc=shrink_lfc)
