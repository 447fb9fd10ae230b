"""
Unit tests for seqflow.significance — the differential-expression predicate.
"""

import numpy as np
import pandas as pd
import pytest

from seqflow.significance import SignificanceFilter


@pytest.fixture
def results_df():
    """Four genes around the default thresholds."""
    return pd.DataFrame(
        {
            "baseMean": [100.0, 100.0, 10.0, 100.0],
            "log2FoldChange": [1.0, -2.0, 3.0, 0.5],
            "padj": [0.01, 0.001, 0.001, 0.001],
        },
        index=pd.Index(["G1", "G2", "G3", "G4"], name="gene_id"),
    )


class TestClassify:
    """Direction labels from the default thresholds."""

    def test_four_gene_scenario(self, results_df):
        labels = SignificanceFilter().classify(results_df)
        assert labels["G1"] == "increased"
        assert labels["G2"] == "decreased"
        # baseMean below 15
        assert pd.isna(labels["G3"])
        # |log2FC| below 0.85
        assert pd.isna(labels["G4"])

    def test_thresholds_are_strict(self):
        df = pd.DataFrame({
            "baseMean": [15.0, 100.0, 100.0],
            "log2FoldChange": [2.0, 0.85, 2.0],
            "padj": [0.001, 0.001, 0.05],
        })
        assert SignificanceFilter().classify(df).isna().all()

    def test_nan_statistics_never_pass(self):
        df = pd.DataFrame({
            "baseMean": [100.0, np.nan],
            "log2FoldChange": [np.nan, 2.0],
            "padj": [0.001, 0.001],
        })
        assert SignificanceFilter().classify(df).isna().all()

    def test_custom_thresholds(self, results_df):
        labels = SignificanceFilter(padj=0.05, log2fc=0.25, base_mean=5).classify(results_df)
        assert labels.tolist() == ["increased", "decreased", "increased", "increased"]


class TestSelect:
    """Row selection with an added direction column."""

    def test_both_directions(self, results_df):
        selected = SignificanceFilter().select(results_df)
        assert selected.index.tolist() == ["G1", "G2"]
        assert selected["direction"].tolist() == ["increased", "decreased"]

    def test_one_direction(self, results_df):
        selected = SignificanceFilter().select(results_df, "decreased")
        assert selected.index.tolist() == ["G2"]

    def test_gene_list(self, results_df):
        assert SignificanceFilter().gene_list(results_df, "increased") == ["G1"]

    def test_unknown_direction(self, results_df):
        with pytest.raises(ValueError, match="Unknown direction"):
            SignificanceFilter().select(results_df, "up")

    def test_input_not_mutated(self, results_df):
        before = results_df.copy()
        SignificanceFilter().select(results_df)
        pd.testing.assert_frame_equal(results_df, before)

    def test_deterministic(self, results_df):
        sig = SignificanceFilter()
        pd.testing.assert_frame_equal(sig.select(results_df), sig.select(results_df))


class TestCountByDirection:
    """Per-subset counts of passing genes."""

    def test_counts(self, results_df):
        tables = {"4 wpi": results_df, "8 wpi": results_df.iloc[[1]]}
        counts = SignificanceFilter().count_by_direction(tables)
        assert list(counts.columns) == ["subset", "direction", "n_genes"]
        assert counts.values.tolist() == [
            ["4 wpi", "increased", 1],
            ["4 wpi", "decreased", 1],
            ["8 wpi", "increased", 0],
            ["8 wpi", "decreased", 1],
        ]
