"""
validation.py — Consistency checks run before any model is fitted.

The merged count matrix and the sample sheet must describe the same
samples in the same order.  Ingestion puts the columns in sample-sheet
order when both sides hold the same samples; any other mismatch is
reported with enough detail to fix the inputs by hand.

Functions
---------
validate_counts_df(counts_df)
    → Count matrix is non-empty, numeric, non-negative, unique genes.

validate_metadata_df(metadata_df, required_cols, sample_col)
    → Lowercased headers, sample index, complete covariates.

check_sample_overlap(counts_df, metadata_df)
    → Which samples are shared and which appear on one side only.

check_sample_order(counts_df, metadata_df)
    → Count columns must equal the metadata index, position by position.

align_to_metadata(counts_df, metadata_df)
    → Count columns permuted into the sample sheet's order.

validate_contrast_levels(metadata_df, column, reference_level, test_level)
    → Both contrast levels occur in the covariate.

check_counts_are_raw(counts_df)
    → Flags matrices that look normalised or log-transformed.

Usage example
--------------
    from seqflow.validation import validate_metadata_df, check_sample_order

    metadata_df = validate_metadata_df(raw_meta, ["treatment", "timepoint"])
    check_sample_order(counts_df, metadata_df)
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from seqflow.config import DESEQ2_DEFAULTS

logger = logging.getLogger(__name__)

# Cells inspected by check_counts_are_raw on large matrices.
RAW_CHECK_MAX_CELLS = 100_000


def validate_counts_df(counts_df: pd.DataFrame) -> None:
    """
    Reject count matrices DESeq2 cannot use.

    Raises
    ------
    ValueError
        On an empty matrix, non-numeric columns, negative entries or a
        gene identifier listed twice.
    """
    if counts_df.empty:
        raise ValueError(
            "No genes left in the count matrix (it is empty); check the "
            "count files given to the ingestion stage."
        )

    text_cols = counts_df.select_dtypes(exclude=["number"]).columns
    if len(text_cols):
        raise ValueError(
            f"Count columns {list(text_cols[:5])} are non-numeric; gene "
            f"identifiers belong in the index, not in a column."
        )

    if (counts_df.to_numpy() < 0).any():
        raise ValueError(
            "Found negative entries in the count matrix; only raw read "
            "counts can be modelled."
        )

    dup_mask = counts_df.index.duplicated()
    if dup_mask.any():
        dups = counts_df.index[dup_mask].unique().tolist()
        raise ValueError(
            f"{len(dups)} gene identifier(s) appear more than once in the "
            f"count matrix: {dups[:10]}."
        )


def check_counts_are_raw(counts_df: pd.DataFrame) -> dict:
    """
    Guess whether *counts_df* holds transformed values instead of reads.

    Fractional non-zero entries are the tell.  A mostly fractional matrix
    with a small maximum is reported as log-normalised.  Large matrices
    are judged on a fixed random sample of cells.

    Returns
    -------
    dict
        ``is_suspect`` (bool), ``reason`` (str or None) and
        ``pct_decimal``, the percentage of fractional non-zero values.
    """
    values = counts_df.to_numpy()
    if values.size > RAW_CHECK_MAX_CELLS:
        rng = np.random.default_rng(42)
        rows = rng.integers(0, values.shape[0], size=RAW_CHECK_MAX_CELLS)
        cols = rng.integers(0, values.shape[1], size=RAW_CHECK_MAX_CELLS)
        values = values[rows, cols]
    else:
        values = values.ravel()

    report = {"is_suspect": False, "reason": None, "pct_decimal": 0.0}
    nonzero = values[values != 0]
    if nonzero.size == 0:
        return report

    pct = float(np.mean(nonzero % 1 != 0) * 100)
    peak = float(nonzero.max())
    report["pct_decimal"] = pct

    if pct > 50 and peak < 25:
        report["reason"] = (
            f"values look log-normalized: {pct:.0f}% fractional, "
            f"largest value {peak:.1f}"
        )
    elif pct > 10:
        report["reason"] = f"{pct:.0f}% of non-zero values are fractional"
    report["is_suspect"] = report["reason"] is not None
    return report


def _normalize_columns(metadata_df: pd.DataFrame) -> pd.DataFrame:
    """Strip and lowercase metadata column names."""
    metadata_df = metadata_df.copy()
    metadata_df.columns = metadata_df.columns.str.strip().str.lower()
    return metadata_df


def validate_metadata_df(
    metadata_df: pd.DataFrame,
    required_cols: list[str] | tuple[str, ...] = (
        DESEQ2_DEFAULTS["condition_col"],
        DESEQ2_DEFAULTS["group_col"],
    ),
    sample_col: str = DESEQ2_DEFAULTS["sample_col"],
) -> pd.DataFrame:
    """
    Normalise a sample sheet and index it by sample identifier.

    Headers are stripped and lowercased, so *required_cols* and
    *sample_col* match case-insensitively.  When *sample_col* is absent
    the existing index is used.  Covariate values come back as stripped
    strings.  The input frame is left untouched.

    Raises
    ------
    ValueError
        For an empty sheet, a repeated sample, a missing covariate column
        or a covariate with blank cells.
    """
    if metadata_df.empty:
        raise ValueError("The sample sheet is empty: no sample rows to read.")

    metadata_df = _normalize_columns(metadata_df)
    sample_col = sample_col.strip().lower()
    required_cols = [c.strip().lower() for c in required_cols]

    if sample_col in metadata_df.columns:
        metadata_df = metadata_df.set_index(sample_col)
    metadata_df.index = metadata_df.index.astype(str).str.strip()
    metadata_df.index.name = sample_col

    repeated = metadata_df.index[metadata_df.index.duplicated()].unique().tolist()
    if repeated:
        raise ValueError(
            f"Sample(s) {repeated[:10]} appear more than once in the sample sheet."
        )

    for col in required_cols:
        values = _column(metadata_df, col)
        blanks = values.index[values.isna()].tolist()
        if blanks:
            raise ValueError(
                f"Samples {blanks[:10]} have missing values in column '{col}'."
            )
        metadata_df[col] = values.astype(str).str.strip()

    logger.debug(
        "Sample sheet: %d samples, covariates %s", len(metadata_df), required_cols,
    )
    return metadata_df


def _column(metadata_df: pd.DataFrame, column: str) -> pd.Series:
    if column not in metadata_df.columns:
        raise ValueError(
            f"Covariate '{column}' does not exist in the sample sheet "
            f"(columns: {list(metadata_df.columns)})."
        )
    return metadata_df[column]


def check_sample_overlap(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
) -> dict:
    """
    Compare the sample sets of the count matrix and the sample sheet.
    Never raises.

    Returns
    -------
    dict with keys "match", "common", "only_in_counts",
    "only_in_metadata", "n_common", "n_counts", "n_metadata".
    """
    counts_samples = set(counts_df.columns)
    metadata_samples = set(metadata_df.index)

    common = counts_samples & metadata_samples
    return {
        "match": counts_samples == metadata_samples,
        "common": common,
        "only_in_counts": counts_samples - metadata_samples,
        "only_in_metadata": metadata_samples - counts_samples,
        "n_common": len(common),
        "n_counts": len(counts_samples),
        "n_metadata": len(metadata_samples),
    }


def check_sample_order(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
) -> None:
    """
    Require the count columns to equal the metadata sample index,
    element by element and in the same order.

    Raises
    ------
    ValueError
        If the identifiers do not align positionally.  The message
        explains whether samples are missing or merely out of order.
    """
    counts_ids = [str(c) for c in counts_df.columns]
    meta_ids = [str(s) for s in metadata_df.index]
    if counts_ids == meta_ids:
        return

    overlap = check_sample_overlap(counts_df, metadata_df)
    msg_parts = ["Count matrix columns do not match the metadata samples."]
    if overlap["only_in_counts"]:
        msg_parts.append(
            f"Only in counts: {sorted(overlap['only_in_counts'])[:10]}."
        )
    if overlap["only_in_metadata"]:
        msg_parts.append(
            f"Only in metadata: {sorted(overlap['only_in_metadata'])[:10]}."
        )
    if overlap["match"]:
        first_bad = next(
            i for i, (c, m) in enumerate(zip(counts_ids, meta_ids)) if c != m
        )
        msg_parts.append(
            f"Same samples but different order (first mismatch at position "
            f"{first_bad}: counts '{counts_ids[first_bad]}' vs metadata "
            f"'{meta_ids[first_bad]}'). Reorder the metadata to match."
        )
    raise ValueError(" ".join(msg_parts))


def align_to_metadata(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
) -> pd.DataFrame:
    """
    Arrange the count columns in the sample sheet's order.

    Only a permutation is applied; samples present on one side only
    raise the ``ValueError`` of :func:`check_sample_order`.
    """
    if not check_sample_overlap(counts_df, metadata_df)["match"]:
        check_sample_order(counts_df, metadata_df)
    return counts_df.loc[:, list(metadata_df.index)]


def get_levels(metadata_df: pd.DataFrame, column: str) -> list[str]:
    """Distinct values of *column* in first-appearance order."""
    return list(dict.fromkeys(_column(metadata_df, column).astype(str)))


def validate_contrast_levels(
    metadata_df: pd.DataFrame,
    column: str,
    reference_level: str,
    test_level: str,
) -> None:
    """Both levels of the contrast must occur in *column* and differ."""
    if reference_level == test_level:
        raise ValueError(
            f"'{reference_level}' was given as both the test and the "
            f"reference level."
        )
    levels = get_levels(metadata_df, column)
    for level in (reference_level, test_level):
        if level not in levels:
            raise ValueError(
                f"Level '{level}' was not found in '{column}' "
                f"(levels present: {levels})."
            )
