"""
significance.py — The fixed "differentially expressed" predicate.

Wherever the workflow needs "the significant genes" (enrichment input,
gene-count plot, heatmap, volcano colouring) it goes through
:class:`SignificanceFilter`, so every stage agrees on one definition:

    padj < 0.05  AND  baseMean > 15  AND  log2FC > 0.85   → "increased"
    padj < 0.05  AND  baseMean > 15  AND  log2FC < -0.85  → "decreased"

All comparisons are strict.  The filter never mutates its input.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from seqflow.config import DIRECTIONS, SIGNIFICANCE_DEFAULTS


@dataclass(frozen=True)
class SignificanceFilter:
    """Thresholds of the significance predicate."""

    padj: float = SIGNIFICANCE_DEFAULTS["padj"]
    log2fc: float = SIGNIFICANCE_DEFAULTS["log2fc"]
    base_mean: float = SIGNIFICANCE_DEFAULTS["base_mean"]

    def classify(self, results_df: pd.DataFrame) -> pd.Series:
        """
        Label each gene ``"increased"``, ``"decreased"`` or NaN.

        NaN statistics never pass (comparisons with NaN are False).
        """
        passes = (
            (results_df["padj"] < self.padj)
            & (results_df["baseMean"] > self.base_mean)
        )
        lfc = results_df["log2FoldChange"]
        labels = pd.Series(np.nan, index=results_df.index, name="direction", dtype=object)
        labels[passes & (lfc > self.log2fc)] = "increased"
        labels[passes & (lfc < -self.log2fc)] = "decreased"
        return labels

    def select(
        self,
        results_df: pd.DataFrame,
        direction: str | None = None,
    ) -> pd.DataFrame:
        """
        Rows passing the filter, with an added ``direction`` column.

        Parameters
        ----------
        results_df : pd.DataFrame
            DE results with ``padj``, ``baseMean``, ``log2FoldChange``.
        direction : {"increased", "decreased"} or None
            Restrict to one direction; None keeps both.
        """
        if direction is not None and direction not in DIRECTIONS:
            raise ValueError(
                f"Unknown direction '{direction}'. Expected one of {DIRECTIONS}."
            )
        labels = self.classify(results_df)
        mask = labels.notna()
        if direction is not None:
            mask &= labels == direction
        selected = results_df.loc[mask].copy()
        selected["direction"] = labels[mask]
        return selected

    def gene_list(self, results_df: pd.DataFrame, direction: str) -> list[str]:
        """Gene identifiers passing the filter in one direction."""
        return [str(g) for g in self.select(results_df, direction).index]

    def count_by_direction(
        self,
        tables: dict[str, pd.DataFrame],
    ) -> pd.DataFrame:
        """
        Number of passing genes per (subset, direction).

        Returns
        -------
        pd.DataFrame
            Columns ``subset``, ``direction``, ``n_genes``; one row per
            pair, in the order of *tables* then ``DIRECTIONS``.
        """
        rows = []
        for subset, results_df in tables.items():
            labels = self.classify(results_df)
            for direction in DIRECTIONS:
                rows.append({
                    "subset": subset,
                    "direction": direction,
                    "n_genes": int((labels == direction).sum()),
                })
        return pd.DataFrame(rows, columns=["subset", "direction", "n_genes"])
