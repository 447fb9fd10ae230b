"""
Shared fixtures for the seqflow test suite.

The heavy collaborators (pydeseq2 and the Enrichr web service) are
replaced by deterministic fakes that honour the same protocols, so the
workflow logic is exercised without fitting models or touching the
network.
"""

import matplotlib

matplotlib.use("Agg")

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import matplotlib.pyplot as plt

from seqflow.enrichment import EnrichmentServiceError
from seqflow.protocols import Contrast

logging.getLogger("matplotlib").setLevel(logging.ERROR)


# ==============================================================================
# Fakes for the capability protocols
# ==============================================================================

class FakeModel:
    """Deterministic stand-in for a fitted DESeq2 model.

    log2FC is computed from group means; genes with a large effect get
    a small padj, genes that are all-zero in the fitted samples get NaN.
    """

    def __init__(self, counts_df, metadata_df, design):
        self.counts_df = counts_df
        self.metadata_df = metadata_df
        self.design = design
        self.n_vst_calls = 0
        self._vst = None

    def dispersion_table(self):
        mean = self.counts_df.mean(axis=1).astype(float)
        genewise = 0.05 + 1.0 / (mean + 1.0)
        return pd.DataFrame(
            {
                "baseMean": mean,
                "genewise_dispersion": genewise,
                "fitted_dispersion": 0.9 * genewise,
                "MAP_dispersion": 0.95 * genewise,
                "dispersion": 0.95 * genewise,
            },
            index=pd.Index(self.counts_df.index, name="gene_id"),
        )

    def stabilized_counts(self):
        if self._vst is None:
            self.n_vst_calls += 1
            self._vst = np.log2(self.counts_df.astype(float) + 1.0)
        return self._vst

    def results(self, contrast, alpha=0.05):
        col = self.metadata_df[contrast.column]
        test = self.counts_df.loc[:, (col == contrast.test_level).to_numpy()]
        ref = self.counts_df.loc[:, (col == contrast.reference_level).to_numpy()]
        lfc = np.log2((test.mean(axis=1) + 0.5) / (ref.mean(axis=1) + 0.5))
        padj = pd.Series(np.where(lfc.abs() > 1, 0.001, 0.6), index=lfc.index)
        padj[self.counts_df.sum(axis=1) == 0] = np.nan
        return pd.DataFrame(
            {
                "baseMean": self.counts_df.mean(axis=1).astype(float),
                "log2FoldChange": lfc,
                "lfcSE": 0.3,
                "stat": lfc / 0.3,
                "pvalue": padj / 2,
                "padj": padj,
            },
            index=pd.Index(self.counts_df.index, name="gene_id"),
        )


class FakeFitter:
    """ModelFitter that records every call."""

    def __init__(self):
        self.calls = []

    def __call__(self, counts_df, metadata_df, design):
        self.calls.append({
            "samples": list(counts_df.columns),
            "metadata_samples": list(metadata_df.index),
            "design": design,
        })
        return FakeModel(counts_df, metadata_df, design)


class FakeEnrichmentClient:
    """EnrichmentClient returning one Enrichr-shaped table per database.

    Gene lists containing any gene in *fail_on* raise
    ``EnrichmentServiceError`` instead.
    """

    def __init__(self, fail_on=()):
        self.calls = []
        self.fail_on = set(fail_on)

    def query(self, genes, databases):
        self.calls.append((list(genes), list(databases)))
        if self.fail_on & set(genes):
            raise EnrichmentServiceError("service unavailable")
        out = {}
        for i, db in enumerate(databases):
            out[db] = pd.DataFrame({
                "Gene_set": db,
                "Term": [f"{db} term B", f"{db} term A"],
                "Overlap": [f"{len(genes)}/50", "1/20"],
                "P-value": [0.0005, 0.004],
                "Adjusted P-value": [0.001 * (i + 1), 0.01 * (i + 1)],
                "Old P-value": [0, 0],
                "Old Adjusted P-value": [0, 0],
                "Odds Ratio": [12.5, 3.1],
                "Combined Score": [80.0, 15.0],
                "Genes": [";".join(genes), genes[0]],
            }).drop(columns="Gene_set")
        return out


@pytest.fixture
def fake_fitter():
    return FakeFitter()


@pytest.fixture
def fake_client():
    return FakeEnrichmentClient()


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


# ==============================================================================
# Data fixtures
# ==============================================================================

SAMPLES = ["S1", "S2", "S3", "S4", "S5", "S6", "S7", "S8"]
TREATMENTS = ["Mock", "RML"] * 4
TIMEPOINTS = ["4 wpi"] * 4 + ["8 wpi"] * 4

# Per-sample counts, samples in SAMPLES order.
GENE_COUNTS = {
    "geneUp":      [100, 400, 110, 420, 90, 380, 105, 410],
    "geneDown":    [400, 100, 390, 95, 410, 120, 400, 105],
    "geneFlat":    [200, 210, 190, 205, 195, 200, 210, 190],
    "geneLow":     [2, 8, 1, 9, 2, 7, 3, 8],
    "geneLate":    [0, 0, 0, 0, 50, 300, 60, 310],
    "geneAllZero": [0, 0, 0, 0, 0, 0, 0, 0],
}


@pytest.fixture
def metadata_df():
    return pd.DataFrame(
        {"treatment": TREATMENTS, "timepoint": TIMEPOINTS},
        index=pd.Index(SAMPLES, name="sample"),
    )


@pytest.fixture
def counts_df():
    df = pd.DataFrame(GENE_COUNTS, index=SAMPLES).T
    df.index.name = "gene_id"
    return df.loc[df.sum(axis=1) > 0]


def write_count_files(directory: Path, gene_counts=GENE_COUNTS, samples=SAMPLES,
                      prefix="", extension=".tabular"):
    directory.mkdir(parents=True, exist_ok=True)
    for j, sample in enumerate(samples):
        lines = [f"{gene}\t{values[j]}" for gene, values in gene_counts.items()]
        (directory / f"{prefix}{sample}{extension}").write_text("\n".join(lines) + "\n")
    return directory


@pytest.fixture
def workflow_inputs(tmp_path):
    """Counts directory, metadata CSV and output directory on disk."""
    counts_dir = write_count_files(tmp_path / "counts")
    metadata_path = tmp_path / "metadata.csv"
    pd.DataFrame({
        "Sample": SAMPLES,
        "Treatment": TREATMENTS,
        "Timepoint": TIMEPOINTS,
    }).to_csv(metadata_path, index=False)
    return counts_dir, metadata_path, tmp_path / "out"


@pytest.fixture
def contrast():
    return Contrast("treatment", "RML", "Mock")
