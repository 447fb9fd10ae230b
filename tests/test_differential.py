"""
Unit tests for seqflow.differential — per-subset testing with a fake fitter.
"""

from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest

from seqflow.differential import (
    analyze_subset,
    analyze_subsets,
    clean_results,
    results_filename,
    safe_label,
    select_subset,
    subset_order,
)


class TestCleanResults:
    """Undefined padj removed, ascending padj order."""

    def test_three_gene_scenario(self):
        df = pd.DataFrame(
            {"padj": [0.2, np.nan, 0.01], "log2FoldChange": [0.1, 2.0, -1.5]},
            index=["G1", "G2", "G3"],
        )
        cleaned = clean_results(df)
        assert cleaned.index.tolist() == ["G3", "G1"]
        assert cleaned["padj"].notna().all()

    def test_ties_keep_input_order(self):
        df = pd.DataFrame({"padj": [0.05, 0.01, 0.05]}, index=["a", "b", "c"])
        assert clean_results(df).index.tolist() == ["b", "a", "c"]


class TestSelectSubset:
    """Restricting counts and metadata to one grouping value."""

    def test_subset_samples(self, counts_df, metadata_df):
        counts_sub, meta_sub = select_subset(counts_df, metadata_df, "timepoint", "8 wpi")
        assert list(counts_sub.columns) == ["S5", "S6", "S7", "S8"]
        assert list(meta_sub.index) == ["S5", "S6", "S7", "S8"]

    def test_unknown_value(self, counts_df, metadata_df):
        with pytest.raises(ValueError, match="No samples with timepoint = '12 wpi'"):
            select_subset(counts_df, metadata_df, "timepoint", "12 wpi")


class TestAnalyzeSubset:
    """One subset fitted on exactly its own samples."""

    def test_fit_uses_only_subset_samples(self, counts_df, metadata_df, contrast, fake_fitter):
        analyze_subset(
            counts_df, metadata_df, "timepoint", "4 wpi", contrast,
            design="~ treatment", fitter=fake_fitter,
        )
        assert len(fake_fitter.calls) == 1
        call = fake_fitter.calls[0]
        assert call["samples"] == ["S1", "S2", "S3", "S4"]
        assert call["metadata_samples"] == ["S1", "S2", "S3", "S4"]
        assert call["design"] == "~ treatment"

    def test_results_cleaned_and_tagged(self, counts_df, metadata_df, contrast, fake_fitter):
        results = analyze_subset(
            counts_df, metadata_df, "timepoint", "4 wpi", contrast, fitter=fake_fitter,
        )
        # geneLate is all zero at 4 wpi and cannot be tested
        assert "geneLate" not in results.index
        assert results["padj"].notna().all()
        assert results["padj"].is_monotonic_increasing
        assert results.attrs["subset"] == "4 wpi"

    def test_missing_level_in_subset(self, counts_df, metadata_df, contrast, fake_fitter):
        meta = metadata_df.copy()
        meta.loc[["S2", "S4"], "treatment"] = "Mock"
        with pytest.raises(ValueError, match="'RML' was not found"):
            analyze_subset(
                counts_df, meta, "timepoint", "4 wpi", contrast, fitter=fake_fitter,
            )
        assert fake_fitter.calls == []

    def test_contrast_and_alpha_forwarded(self, counts_df, metadata_df, contrast):
        model = MagicMock()
        model.results.return_value = pd.DataFrame(
            {"padj": [0.5, 0.01]}, index=["a", "b"],
        )
        fitter = MagicMock(return_value=model)
        results = analyze_subset(
            counts_df, metadata_df, "timepoint", "8 wpi", contrast,
            fitter=fitter, alpha=0.1,
        )
        model.results.assert_called_once_with(contrast, 0.1)
        assert results.index.tolist() == ["b", "a"]


class TestAnalyzeSubsets:
    """Every subset fitted independently, in display order."""

    def test_one_fit_per_subset(self, counts_df, metadata_df, contrast, fake_fitter):
        tables = analyze_subsets(
            counts_df, metadata_df, "timepoint", contrast, fitter=fake_fitter,
        )
        assert list(tables) == ["4 wpi", "8 wpi"]
        assert [c["samples"] for c in fake_fitter.calls] == [
            ["S1", "S2", "S3", "S4"], ["S5", "S6", "S7", "S8"],
        ]
        assert "geneLate" in tables["8 wpi"].index

    def test_group_order_respected(self, counts_df, metadata_df, contrast, fake_fitter):
        tables = analyze_subsets(
            counts_df, metadata_df, "timepoint", contrast,
            fitter=fake_fitter, group_order=["8 wpi", "4 wpi"],
        )
        assert list(tables) == ["8 wpi", "4 wpi"]
        assert fake_fitter.calls[0]["samples"] == ["S5", "S6", "S7", "S8"]

    def test_subset_failure_propagates(self, counts_df, metadata_df, contrast):
        fitter = MagicMock(side_effect=RuntimeError("model did not converge"))
        with pytest.raises(RuntimeError, match="did not converge"):
            analyze_subsets(counts_df, metadata_df, "timepoint", contrast, fitter=fitter)


class TestSubsetOrder:
    """Listed values first, remaining values by first appearance."""

    def test_default_first_appearance(self, metadata_df):
        assert subset_order(metadata_df, "timepoint") == ["4 wpi", "8 wpi"]

    def test_partial_order(self):
        meta = pd.DataFrame({"timepoint": ["2 wpi", "8 wpi", "4 wpi", "12 wpi"]})
        order = subset_order(meta, "timepoint", ["4 wpi", "20 wpi", "2 wpi"])
        assert order == ["4 wpi", "2 wpi", "8 wpi", "12 wpi"]


class TestFileNames:
    """File-name-safe subset labels."""

    def test_results_filename(self):
        assert results_filename("8 wpi") == "deseq2_results_8_wpi.csv"

    def test_safe_label(self):
        assert safe_label("day 3/late") == "day_3_late"
        assert safe_label("T-1.5") == "T-1.5"
        assert safe_label("///") == "subset"
