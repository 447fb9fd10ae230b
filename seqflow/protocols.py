"""
seqflow/protocols.py -- Capability protocols and shared types.

The workflow never talks to pydeseq2 or Enrichr directly; it talks to
these protocols.  The real implementations live in
:mod:`seqflow.deseq_runner` and :mod:`seqflow.enrichment`, and tests
substitute lightweight fakes.

Types
-----
ProgressCallback
    Protocol — ``(current, total, message) -> None``.

Contrast
    NamedTuple — ``(column, test_level, reference_level)``.

FittedModel
    Protocol — dispersion diagnostics, stabilised counts, contrast results.

ModelFitter
    Protocol — ``(counts_df, metadata_df, design) -> FittedModel``.

EnrichmentClient
    Protocol — ``query(genes, databases) -> {database: DataFrame}``.
"""

from __future__ import annotations

from typing import NamedTuple, Protocol, runtime_checkable

import pandas as pd


@runtime_checkable
class ProgressCallback(Protocol):
    """Progress reporting callback.

    Parameters
    ----------
    current : int
        Current step index (0-based).
    total : int
        Total number of steps.
    message : str
        Short description of the current step.
    """

    def __call__(self, current: int, total: int, message: str) -> None: ...


class Contrast(NamedTuple):
    """A pairwise comparison between two levels of one covariate.

    ``Contrast("treatment", "RML", "Mock")`` yields log2 fold-changes of
    RML relative to Mock.
    """

    column: str
    test_level: str
    reference_level: str

    def label(self) -> str:
        return f"{self.column}: {self.test_level} vs {self.reference_level}"


@runtime_checkable
class FittedModel(Protocol):
    """Result of fitting the dispersion/mean model to one (sub)matrix.

    One instance per fitting call; never shared between subsets.
    """

    def dispersion_table(self) -> pd.DataFrame:
        """Per-gene ``baseMean`` and dispersion estimates."""
        ...

    def stabilized_counts(self) -> pd.DataFrame:
        """Variance-stabilised matrix (genes x samples), for display only."""
        ...

    def results(self, contrast: Contrast, alpha: float) -> pd.DataFrame:
        """Per-gene test results for *contrast*, indexed by gene."""
        ...


@runtime_checkable
class ModelFitter(Protocol):
    """Fits a :class:`FittedModel` to counts (genes x samples) + design."""

    def __call__(
        self,
        counts_df: pd.DataFrame,
        metadata_df: pd.DataFrame,
        design: str,
    ) -> FittedModel: ...


@runtime_checkable
class EnrichmentClient(Protocol):
    """Gene-set enrichment service.

    ``query`` receives a non-empty gene list and the database names and
    returns one raw term table per database that produced results.
    """

    def query(
        self, genes: list[str], databases: list[str],
    ) -> dict[str, pd.DataFrame]: ...
