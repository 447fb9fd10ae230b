"""
Tests for seqflow.visualization and seqflow.exploration.

Figure functions are smoke-tested (they return a Figure); the data
preparation helpers are checked numerically.
"""

import matplotlib.figure
import numpy as np
import pandas as pd
import pytest

from seqflow.enrichment import enrich_all
from seqflow.exploration import compute_pca, explore
from seqflow.significance import SignificanceFilter
from seqflow.visualization import (
    create_dispersion_plot,
    create_enrichment_plot,
    create_gene_count_plot,
    create_heatmap,
    create_pca_plot,
    create_volcano_plot,
    prepare_enrichment_plot_data,
    prepare_heatmap_data,
    prepare_volcano_data,
    save_figure,
)
from seqflow.differential import analyze_subsets


@pytest.fixture
def exploration(counts_df, metadata_df, fake_fitter):
    return explore(counts_df, metadata_df, "~ timepoint + treatment", fake_fitter)


@pytest.fixture
def tables(counts_df, metadata_df, contrast, fake_fitter):
    return analyze_subsets(counts_df, metadata_df, "timepoint", contrast, fitter=fake_fitter)


class TestExploration:
    """All-sample fit and PCA projection."""

    def test_stabilized_matches_counts_shape(self, exploration, counts_df, fake_fitter):
        assert exploration.stabilized.shape == counts_df.shape
        assert list(exploration.stabilized.index) == list(counts_df.index)
        assert fake_fitter.calls[0]["design"] == "~ timepoint + treatment"
        assert len(fake_fitter.calls[0]["samples"]) == 8

    def test_dispersion_columns(self, exploration):
        assert {"baseMean", "genewise_dispersion", "fitted_dispersion",
                "dispersion"} <= set(exploration.dispersions.columns)

    def test_pca(self, exploration, metadata_df):
        pca_df = compute_pca(exploration.stabilized, metadata_df,
                             ["treatment", "timepoint"], n_top=3)
        assert list(pca_df.columns) == ["PC1", "PC2", "treatment", "timepoint"]
        assert list(pca_df.index) == list(metadata_df.index)
        assert pca_df.attrs["n_genes"] == 3
        assert len(pca_df.attrs["var_explained"]) == 2
        assert pca_df.loc["S2", "treatment"] == "RML"


class TestVolcano:
    def test_prepare(self):
        results = pd.DataFrame({
            "baseMean": [100.0, 100.0, 100.0, 100.0],
            "log2FoldChange": [2.0, -3.0, 0.1, 1.0],
            "padj": [0.0, 1e-10, 0.5, np.nan],
        }, index=["a", "b", "c", "d"])
        volcano_df = prepare_volcano_data(results)
        assert list(volcano_df.index) == ["a", "b", "c"]
        assert volcano_df["category"].tolist() == ["increased", "decreased", "NS"]
        # padj 0 floored to the smallest positive padj
        assert volcano_df.loc["a", "neg_log10_padj"] == pytest.approx(10.0)
        assert np.isfinite(volcano_df["neg_log10_padj"]).all()

    def test_plot(self, tables, contrast):
        volcano_df = prepare_volcano_data(tables["8 wpi"])
        fig = create_volcano_plot(volcano_df, subset="8 wpi", contrast=contrast)
        assert isinstance(fig, matplotlib.figure.Figure)


class TestHeatmap:
    def test_zscores(self, exploration, tables):
        zscores = prepare_heatmap_data(exploration.stabilized, tables["8 wpi"])
        expected = SignificanceFilter().select(tables["8 wpi"]).index.tolist()
        assert zscores.index.tolist() == expected
        assert zscores.shape[1] == 8
        np.testing.assert_allclose(zscores.mean(axis=1), 0.0, atol=1e-12)
        np.testing.assert_allclose(zscores.std(axis=1, ddof=1), 1.0)

    def test_constant_row_is_zero(self):
        stabilized = pd.DataFrame(
            {"A": [5.0, 1.0], "B": [5.0, 3.0]}, index=["flat", "up"],
        )
        results = pd.DataFrame(
            {"baseMean": [100.0, 100.0], "log2FoldChange": [2.0, 2.0],
             "padj": [0.001, 0.001]},
            index=["flat", "up"],
        )
        zscores = prepare_heatmap_data(stabilized, results)
        assert zscores.loc["flat"].tolist() == [0.0, 0.0]

    def test_no_significant_genes(self, exploration, metadata_df):
        results = pd.DataFrame(
            {"baseMean": [100.0], "log2FoldChange": [0.1], "padj": [0.5]},
            index=["geneFlat"],
        )
        zscores = prepare_heatmap_data(exploration.stabilized, results)
        assert zscores.empty
        with pytest.raises(ValueError):
            create_heatmap(zscores, metadata_df)

    def test_plot(self, exploration, tables, metadata_df):
        zscores = prepare_heatmap_data(exploration.stabilized, tables["8 wpi"])
        fig = create_heatmap(zscores, metadata_df, subset="8 wpi")
        assert isinstance(fig, matplotlib.figure.Figure)


class TestGeneCounts:
    def test_plot_follows_group_order(self):
        counts = pd.DataFrame({
            "subset": ["8 wpi", "8 wpi", "4 wpi", "4 wpi"],
            "direction": ["increased", "decreased"] * 2,
            "n_genes": [30, 12, 5, 2],
        })
        fig = create_gene_count_plot(counts, group_order=["4 wpi", "8 wpi"])
        labels = [t.get_text() for t in fig.axes[0].get_xticklabels()]
        assert labels == ["4 wpi", "8 wpi"]

    def test_plot_appearance_order(self):
        counts = pd.DataFrame({
            "subset": ["8 wpi", "8 wpi", "12 wpi", "12 wpi"],
            "direction": ["increased", "decreased"] * 2,
            "n_genes": [30, 12, 5, 2],
        })
        fig = create_gene_count_plot(counts)
        labels = [t.get_text() for t in fig.axes[0].get_xticklabels()]
        assert labels == ["8 wpi", "12 wpi"]


class TestEnrichmentPlot:
    def test_prepare_and_plot(self, tables, fake_client):
        table = enrich_all(tables, ["KEGG_2019_Mouse"], fake_client).table
        plot_df = prepare_enrichment_plot_data(
            table, "8 wpi", "increased", "KEGG_2019_Mouse",
        )
        assert plot_df["rank"].tolist() == [1, 2]
        assert plot_df["padj"].is_monotonic_increasing
        assert "8 wpi" in plot_df.attrs["title"]
        fig = create_enrichment_plot(plot_df)
        assert isinstance(fig, matplotlib.figure.Figure)

    def test_empty_selection(self, tables, fake_client):
        table = enrich_all(tables, ["KEGG_2019_Mouse"], fake_client).table
        plot_df = prepare_enrichment_plot_data(table, "4 wpi", "increased", "other_db")
        with pytest.raises(ValueError, match="No enrichment terms"):
            create_enrichment_plot(plot_df)


class TestOtherFigures:
    def test_dispersion_and_pca(self, exploration, metadata_df):
        assert isinstance(create_dispersion_plot(exploration.dispersions),
                          matplotlib.figure.Figure)
        pca_df = compute_pca(exploration.stabilized, metadata_df)
        assert isinstance(create_pca_plot(pca_df), matplotlib.figure.Figure)

    def test_save_figure(self, tmp_path, exploration):
        fig = create_dispersion_plot(exploration.dispersions)
        path = save_figure(fig, tmp_path / "figs" / "dispersion.png")
        assert path.is_file()
        assert path.stat().st_size > 0
