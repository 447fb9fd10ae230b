"""
data_io.py — Reading and writing data files.

This module centralizes ALL of the workflow's file I/O: discovering and
merging the per-sample count files produced by the read counter, and
reading/writing the comma-delimited tables persisted between stages.

The separator is detected from the file extension, so the same readers
work for ``.csv`` tables and tab-delimited ``.tsv``/``.tabular`` files.

Functions
---------
detect_separator(filename)
    → Detects the correct separator based on the file extension.

derive_sample_id(path, prefix, extension)
    → Strips the fixed prefix and extension from a count file name.

discover_count_files(directory, prefix, extension)
    → Maps sample identifiers to count files; rejects ambiguous names.

read_sample_counts(path)
    → Reads one header-less ``gene<TAB>count`` file as a Series.

merge_count_files(files)
    → Column-wise merge into a genes x samples matrix.

drop_zero_rows(counts_df) / sort_by_mean(counts_df)
    → Post-processing of the merged matrix.

build_count_matrix(directory, prefix, extension)
    → The complete ingestion stage.

read_counts_file(path) / read_metadata_file(path)
read_results_table(path) / read_enrichment_table(path)
    → Reload persisted tables.

write_table(df, path)
    → Persist a table with its row labels as the first column.

Usage example
--------------
    from seqflow.data_io import build_count_matrix, write_table

    counts_df = build_count_matrix("counts/", extension=".tabular")
    write_table(counts_df, "out/raw_counts.csv")
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from seqflow.config import FILE_CONFIG, INGEST_CONFIG

logger = logging.getLogger(__name__)


def detect_separator(filename: str | Path) -> str:
    """
    Detects the column separator based on the file extension.

    Logic:
    - .tsv / .tabular / .txt → tab ("\\t")
    - .csv → comma (",")
    - Other extension → raises ValueError

    Example
    -------
        >>> detect_separator("S01.tabular")
        '\\t'
        >>> detect_separator("metadata.csv")
        ','
    """
    extension = str(filename).rsplit(".", maxsplit=1)[-1].lower()
    separators = FILE_CONFIG["separators"]

    if extension in separators:
        return separators[extension]

    raise ValueError(
        f"Extension '.{extension}' not recognized. "
        f"Supported extensions: {list(separators.keys())}."
    )


# ──────────────────────────────────────────────────────────────────────
# Ingestion of per-sample count files
# ──────────────────────────────────────────────────────────────────────

def derive_sample_id(
    path: str | Path,
    prefix: str = INGEST_CONFIG["prefix"],
    extension: str = INGEST_CONFIG["extension"],
) -> str:
    """
    Derive the sample identifier from a count file path.

    The file's base name has the fixed *prefix* removed from its start
    and the *extension* removed from its end; the remainder is the
    sample identifier.

    Example
    -------
        >>> derive_sample_id("counts/htseq_S01.tabular", prefix="htseq_")
        'S01'
    """
    name = Path(path).name
    if prefix and name.startswith(prefix):
        name = name[len(prefix):]
    if extension and name.endswith(extension):
        name = name[: -len(extension)]
    return name.strip()


def discover_count_files(
    directory: str | Path,
    prefix: str = INGEST_CONFIG["prefix"],
    extension: str = INGEST_CONFIG["extension"],
) -> dict[str, Path]:
    """
    Scan *directory* for per-sample count files.

    Parameters
    ----------
    directory : str or Path
        Directory holding one count file per sample.
    prefix : str
        Fixed file-name prefix stripped from every sample identifier.
    extension : str
        Extension of the count files (e.g. ``".tabular"``).

    Returns
    -------
    dict[str, Path]
        ``{sample_id: path}`` in file-name order.

    Raises
    ------
    FileNotFoundError
        If the directory does not exist or holds no matching files.
    ValueError
        If two files resolve to the same sample identifier.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Counts directory '{directory}' does not exist.")

    paths = sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.name.endswith(extension) and p.name.startswith(prefix)
    )
    if not paths:
        raise FileNotFoundError(
            f"No files matching '{prefix}*{extension}' found in '{directory}'."
        )

    files: dict[str, Path] = {}
    for path in paths:
        sample_id = derive_sample_id(path, prefix, extension)
        if not sample_id:
            raise ValueError(
                f"File '{path.name}' yields an empty sample identifier "
                f"after stripping prefix '{prefix}' and extension '{extension}'."
            )
        if sample_id in files:
            raise ValueError(
                f"Ambiguous sample naming: '{files[sample_id].name}' and "
                f"'{path.name}' both resolve to sample '{sample_id}'."
            )
        files[sample_id] = path

    logger.info("Found %d count files in %s", len(files), directory)
    return files


def read_sample_counts(
    path: str | Path,
    sep: str = INGEST_CONFIG["sep"],
) -> pd.Series:
    """
    Read one per-sample count file.

    Expected format (no header):
        geneX<TAB>10
        geneY<TAB>0

    Returns
    -------
    pd.Series
        Integer counts indexed by gene identifier.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file is malformed or lists a gene twice.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Count file '{path}' does not exist.")

    try:
        df = pd.read_csv(
            path,
            sep=sep,
            header=None,
            names=["gene_id", "count"],
            usecols=[0, 1],
            dtype={"gene_id": str},
            comment="#",
        )
    except Exception as e:
        raise ValueError(
            f"Error reading count file '{path.name}': {e}. "
            "Expected two tab-separated columns: gene identifier, count."
        ) from e

    if df["gene_id"].duplicated().any():
        dups = df.loc[df["gene_id"].duplicated(), "gene_id"].unique().tolist()
        raise ValueError(
            f"Count file '{path.name}' lists {len(dups)} gene(s) more than "
            f"once: {dups[:10]}."
        )

    counts = pd.to_numeric(df["count"], errors="coerce")
    if counts.isna().any():
        raise ValueError(f"Count file '{path.name}' contains non-numeric counts.")
    fractional = df.loc[(counts % 1 != 0).to_numpy(), "gene_id"].tolist()
    if fractional:
        raise ValueError(
            f"Count file '{path.name}' has non-integer counts for "
            f"{len(fractional)} gene(s): {fractional[:10]}. Raw read counts "
            f"are whole numbers."
        )

    series = pd.Series(
        counts.to_numpy(dtype=np.int64),
        index=df["gene_id"].str.strip(),
        name=path.name,
    )
    series.index.name = INGEST_CONFIG["gene_id_label"]
    return series


def merge_count_files(files: dict[str, Path]) -> pd.DataFrame:
    """
    Merge per-sample count files column-wise into one matrix.

    Genes missing from a file are counted as 0 in that sample.  Row
    order follows first appearance across files; column order follows
    *files*.
    """
    columns = {}
    for sample_id, path in files.items():
        series = read_sample_counts(path)
        series.name = sample_id
        columns[sample_id] = series

    counts_df = pd.concat(columns, axis=1, join="outer", sort=False)
    counts_df = counts_df.fillna(0).astype(np.int64)
    counts_df.index.name = INGEST_CONFIG["gene_id_label"]
    return counts_df


def drop_zero_rows(counts_df: pd.DataFrame) -> pd.DataFrame:
    """Remove genes whose mean count across all samples is exactly zero."""
    keep = counts_df.mean(axis=1) != 0
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info("Dropped %d all-zero genes", n_dropped)
    return counts_df.loc[keep]


def sort_by_mean(counts_df: pd.DataFrame) -> pd.DataFrame:
    """
    Sort genes by descending mean count.

    The sort is stable: genes with equal means keep their original
    relative order.
    """
    order = counts_df.mean(axis=1).sort_values(ascending=False, kind="mergesort")
    return counts_df.loc[order.index]


def build_count_matrix(
    directory: str | Path,
    prefix: str = INGEST_CONFIG["prefix"],
    extension: str = INGEST_CONFIG["extension"],
) -> pd.DataFrame:
    """
    Run the ingestion stage: discover, merge, drop all-zero genes, sort.

    Returns
    -------
    pd.DataFrame
        Raw counts (genes x samples), no all-zero rows, rows sorted by
        non-increasing mean.
    """
    files = discover_count_files(directory, prefix, extension)
    counts_df = merge_count_files(files)
    n_raw = counts_df.shape[0]
    counts_df = sort_by_mean(drop_zero_rows(counts_df))
    logger.info(
        "Merged count matrix: %d genes (of %d) x %d samples",
        counts_df.shape[0], n_raw, counts_df.shape[1],
    )
    return counts_df


# ──────────────────────────────────────────────────────────────────────
# Persisted tables
# ──────────────────────────────────────────────────────────────────────

def write_table(df: pd.DataFrame, path: str | Path, index: bool = True) -> Path:
    """
    Persist *df* as a delimited table (separator from the extension).

    Row labels are written as the first column unless ``index=False``.
    Parent directories are created as needed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep=detect_separator(path), index=index)
    logger.debug("Wrote %s (%d rows)", path, len(df))
    return path


def read_counts_file(path: str | Path) -> pd.DataFrame:
    """
    Reload a persisted count matrix (genes x samples).

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file cannot be parsed.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Count matrix '{path}' does not exist.")
    try:
        df = pd.read_csv(path, sep=detect_separator(path), index_col=0, comment="#")
    except Exception as e:
        raise ValueError(
            f"Error reading the count matrix '{path.name}': {e}. "
            "Verify the file format."
        ) from e
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    return df


def read_metadata_file(path: str | Path) -> pd.DataFrame:
    """
    Read the sample metadata table (one row per sample).

    The raw frame is returned; :func:`seqflow.validation.validate_metadata_df`
    normalises the columns and sets the sample index.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Metadata file '{path}' does not exist.")
    try:
        df = pd.read_csv(path, sep=detect_separator(path), dtype=str)
    except Exception as e:
        raise ValueError(
            f"Error reading the metadata '{path.name}': {e}. "
            "Verify the file format."
        ) from e
    return df


def read_results_table(path: str | Path) -> pd.DataFrame:
    """Reload a persisted table whose first column holds the row labels."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Table '{path}' does not exist.")
    df = pd.read_csv(path, sep=detect_separator(path), index_col=0)
    df.index = df.index.astype(str)
    return df


def read_enrichment_table(path: str | Path) -> pd.DataFrame:
    """Reload the combined enrichment table (integer row numbers)."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Enrichment table '{path}' does not exist.")
    return pd.read_csv(path, sep=detect_separator(path), index_col=0)
