"""
differential.py — Per-subset differential expression testing.

Each subset (all samples sharing one value of the grouping covariate,
e.g. one timepoint) is re-normalised and re-fitted on its own, so that
variance from other subsets never leaks into a subset's dispersion
estimates.  :func:`analyze_subset` is a pure function of its inputs and
:func:`analyze_subsets` simply maps it over the subsets.

Functions
---------
select_subset(counts_df, metadata_df, group_col, value)
    → Counts/metadata restricted to one subset.

clean_results(results_df)
    → Drop undefined padj, sort ascending by padj.

analyze_subset(...)
    → Fit on one subset, extract the contrast, clean.

analyze_subsets(...)
    → {subset: cleaned results} for every subset.

safe_label(value) / results_filename(subset)
    → File-name-safe label; deterministic per-subset file name.
"""

from __future__ import annotations

import logging
import re

import pandas as pd

from seqflow.config import DESEQ2_DEFAULTS, OUTPUT_FILES
from seqflow.deseq_runner import fit_deseq_model
from seqflow.protocols import Contrast, ModelFitter
from seqflow.validation import get_levels, validate_contrast_levels

logger = logging.getLogger(__name__)


def select_subset(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    group_col: str,
    value: str,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Restrict counts and metadata to samples with ``group_col == value``.

    Sample order is preserved.

    Raises
    ------
    ValueError
        If no sample carries *value*.
    """
    mask = metadata_df[group_col].astype(str) == str(value)
    if not mask.any():
        raise ValueError(
            f"No samples with {group_col} = '{value}'. "
            f"Available values: {get_levels(metadata_df, group_col)}."
        )
    meta_subset = metadata_df.loc[mask].copy()
    counts_subset = counts_df[meta_subset.index]
    return counts_subset, meta_subset


def clean_results(results_df: pd.DataFrame) -> pd.DataFrame:
    """
    Drop genes without an adjusted p-value and sort by it, ascending.

    Undefined ``padj`` means the model could not test the gene (all
    zero within the subset, an extreme outlier, or independent
    filtering).  The sort is stable.
    """
    cleaned = results_df.dropna(subset=["padj"])
    return cleaned.sort_values("padj", ascending=True, kind="mergesort")


def analyze_subset(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    group_col: str,
    value: str,
    contrast: Contrast,
    design: str = DESEQ2_DEFAULTS["subset_design"],
    fitter: ModelFitter = fit_deseq_model,
    alpha: float = DESEQ2_DEFAULTS["alpha"],
) -> pd.DataFrame:
    """
    Test one subset for differential expression.

    The model is fitted on exactly the subset's samples, then the
    results for *contrast* are extracted and cleaned.

    Returns
    -------
    pd.DataFrame
        Results indexed by gene, no NaN ``padj``, sorted by ``padj``.
    """
    counts_subset, meta_subset = select_subset(counts_df, metadata_df, group_col, value)
    validate_contrast_levels(
        meta_subset, contrast.column, contrast.reference_level, contrast.test_level,
    )
    logger.info(
        "Testing subset %s=%s (%d samples): %s",
        group_col, value, meta_subset.shape[0], contrast.label(),
    )

    model = fitter(counts_subset, meta_subset, design)
    results_df = clean_results(model.results(contrast, alpha))
    results_df.attrs["subset"] = str(value)
    logger.info("Subset %s: %d genes with a defined padj", value, len(results_df))
    return results_df


def subset_order(
    metadata_df: pd.DataFrame,
    group_col: str,
    group_order: list[str] | None = None,
) -> list[str]:
    """
    Subsets to test, in display order.

    Values listed in *group_order* come first, in that order; any other
    values follow in first-appearance order.  Listed values absent from
    the metadata are ignored.
    """
    present = get_levels(metadata_df, group_col)
    if not group_order:
        return present
    ordered = [str(v) for v in group_order if str(v) in present]
    return ordered + [v for v in present if v not in ordered]


def analyze_subsets(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    group_col: str,
    contrast: Contrast,
    design: str = DESEQ2_DEFAULTS["subset_design"],
    fitter: ModelFitter = fit_deseq_model,
    alpha: float = DESEQ2_DEFAULTS["alpha"],
    group_order: list[str] | None = None,
) -> dict[str, pd.DataFrame]:
    """
    Run :func:`analyze_subset` independently for every subset.

    Returns
    -------
    dict[str, pd.DataFrame]
        ``{subset value: cleaned results}`` in :func:`subset_order`.
    """
    return {
        value: analyze_subset(
            counts_df, metadata_df, group_col, value, contrast,
            design=design, fitter=fitter, alpha=alpha,
        )
        for value in subset_order(metadata_df, group_col, group_order)
    }


def safe_label(value: str) -> str:
    """*value* with runs of characters other than letters, digits, ``.``,
    ``-`` and ``_`` replaced by a single ``_``; usable in file names."""
    return re.sub(r"[^A-Za-z0-9._-]+", "_", str(value)).strip("_") or "subset"


def results_filename(subset: str) -> str:
    """
    File name of a subset's results table.

    Example
    -------
        >>> results_filename("8 wpi")
        'deseq2_results_8_wpi.csv'
    """
    return OUTPUT_FILES["results_template"].format(subset=safe_label(subset))
