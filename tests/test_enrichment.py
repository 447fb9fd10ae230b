"""
Unit tests for seqflow.enrichment — per-subset Enrichr queries and the
combined term table.
"""

from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
import requests

from seqflow.config import ENRICHMENT_CONFIG
from seqflow.enrichment import (
    EnrichmentServiceError,
    EnrichrClient,
    enrich_all,
    enrich_subset,
    standardize_terms,
    top_terms,
)

from conftest import FakeEnrichmentClient

DATABASES = ["GO_Biological_Process_2023", "KEGG_2019_Mouse"]
LEADING = ENRICHMENT_CONFIG["leading_columns"]


def _results(rows):
    """DE results from (gene, baseMean, log2FoldChange, padj) tuples."""
    df = pd.DataFrame(rows, columns=["gene_id", "baseMean", "log2FoldChange", "padj"])
    return df.set_index("gene_id")


@pytest.fixture
def tables():
    return {
        "4 wpi": _results([
            ("geneUp", 200.0, 2.0, 0.001),
            ("geneDown", 150.0, -1.5, 0.01),
            ("geneFlat", 300.0, 0.1, 0.8),
        ]),
        "8 wpi": _results([
            ("geneUp", 220.0, 2.2, 0.001),
            ("geneLate", 180.0, 2.5, 0.002),
            ("geneFlat", 310.0, 0.05, 0.9),
        ]),
    }


class TestEnrichSubset:
    """Queries for the two directions of one subset."""

    def test_one_query_per_direction_with_genes(self, tables, fake_client):
        frames = enrich_subset(tables["4 wpi"], "4 wpi", DATABASES, fake_client)
        assert fake_client.calls == [
            (["geneUp"], DATABASES),
            (["geneDown"], DATABASES),
        ]
        # one table per (direction, database)
        assert len(frames) == 4
        assert {(f["direction"].iloc[0], f["database"].iloc[0]) for f in frames} == {
            (d, db) for d in ("increased", "decreased") for db in DATABASES
        }

    def test_empty_direction_is_skipped(self, tables, fake_client):
        frames = enrich_subset(tables["8 wpi"], "8 wpi", DATABASES, fake_client)
        assert fake_client.calls == [(["geneUp", "geneLate"], DATABASES)]
        assert all((f["direction"] == "increased").all() for f in frames)

    def test_no_significant_gene_no_query(self, fake_client):
        flat = _results([("geneFlat", 300.0, 0.1, 0.8)])
        assert enrich_subset(flat, "4 wpi", DATABASES, fake_client) == []
        assert fake_client.calls == []

    def test_client_error_propagates(self, tables):
        client = FakeEnrichmentClient(fail_on={"geneUp"})
        with pytest.raises(EnrichmentServiceError):
            enrich_subset(tables["4 wpi"], "4 wpi", DATABASES, client)


class TestEnrichAll:
    """The combined enrichment table."""

    def test_combined_table(self, tables, fake_client):
        run = enrich_all(tables, DATABASES, fake_client)
        table = run.table

        assert run.failures == []
        assert list(table.columns[: len(LEADING)]) == LEADING
        assert table.index.tolist() == list(range(len(table)))
        # 3 queries x 2 databases x 2 terms
        assert len(table) == 12
        assert set(table["subset"]) == {"4 wpi", "8 wpi"}
        assert set(table["direction"]) == {"increased", "decreased"}
        assert set(table["database"]) == set(DATABASES)

    def test_rows_tagged_with_origin(self, tables, fake_client):
        table = enrich_all(tables, DATABASES, fake_client).table
        late = table.loc[(table["subset"] == "8 wpi") & (table["direction"] == "increased")]
        assert late["genes"].iloc[0] == "geneUp;geneLate"
        assert (table.loc[table["subset"] == "8 wpi", "direction"] == "increased").all()

    def test_failure_recorded_and_others_continue(self, tables):
        client = FakeEnrichmentClient(fail_on={"geneDown"})
        run = enrich_all(tables, DATABASES, client)

        assert len(client.calls) == 3
        assert len(run.failures) == 1
        failure = run.failures[0]
        assert failure["subset"] == "4 wpi"
        assert failure["direction"] == "decreased"
        assert "service unavailable" in failure["error"]
        assert not ((run.table["subset"] == "4 wpi")
                    & (run.table["direction"] == "decreased")).any()
        assert len(run.table) == 8

    def test_failure_is_logged(self, tables, caplog):
        client = FakeEnrichmentClient(fail_on={"geneDown"})
        with caplog.at_level("WARNING", logger="seqflow.enrichment"):
            enrich_all(tables, DATABASES, client)
        assert "Enrichment failed for subset 4 wpi, decreased" in caplog.text

    def test_no_terms_gives_empty_table(self, fake_client):
        flat = {"4 wpi": _results([("geneFlat", 300.0, 0.1, 0.8)])}
        run = enrich_all(flat, DATABASES, fake_client)
        assert run.table.empty
        assert list(run.table.columns) == LEADING
        assert fake_client.calls == []

    def test_every_query_failing(self, tables):
        client = FakeEnrichmentClient(fail_on={"geneUp", "geneDown"})
        run = enrich_all(tables, DATABASES, client)
        assert run.table.empty
        assert len(run.failures) == 3

    def test_default_databases_when_none(self, tables, fake_client):
        enrich_all(tables, None, fake_client)
        assert all(dbs == ENRICHMENT_CONFIG["databases"] for _, dbs in fake_client.calls)

    def test_empty_database_list_rejected(self, tables, fake_client):
        with pytest.raises(ValueError, match="No enrichment databases"):
            enrich_all(tables, [], fake_client)
        with pytest.raises(ValueError, match="No enrichment databases"):
            enrich_subset(tables["4 wpi"], "4 wpi", [], fake_client)
        assert fake_client.calls == []


class TestTopTerms:
    """Best terms of one (subset, direction, database)."""

    def test_sorted_by_padj_and_truncated(self, tables, fake_client):
        table = enrich_all(tables, DATABASES, fake_client).table
        top = top_terms(table, "4 wpi", "increased", "KEGG_2019_Mouse", n=1)
        assert len(top) == 1
        assert top["term"].iloc[0] == "KEGG_2019_Mouse term B"

        both = top_terms(table, "4 wpi", "increased", "KEGG_2019_Mouse")
        assert both["padj"].is_monotonic_increasing

    def test_no_match(self, tables, fake_client):
        table = enrich_all(tables, DATABASES, fake_client).table
        assert top_terms(table, "8 wpi", "decreased", "KEGG_2019_Mouse").empty


class TestStandardizeTerms:
    def test_columns_renamed(self):
        raw = pd.DataFrame({"Term": ["t"], "Adjusted P-value": [0.01], "Extra": [1]})
        assert list(standardize_terms(raw).columns) == ["term", "padj", "Extra"]


class TestEnrichrClient:
    """gseapy-backed client; the network is never touched."""

    def test_answer_split_by_database(self):
        answer = MagicMock()
        answer.results = pd.DataFrame({
            "Gene_set": ["DB1", "DB2", "DB1"],
            "Term": ["a", "b", "c"],
            "Adjusted P-value": [0.01, 0.02, 0.03],
        })
        with patch("gseapy.enrichr", return_value=answer) as enrichr:
            by_db = EnrichrClient(organism="mouse").query(["g1", "g2"], ["DB1", "DB2"])

        kwargs = enrichr.call_args.kwargs
        assert kwargs["gene_list"] == ["g1", "g2"]
        assert kwargs["gene_sets"] == ["DB1", "DB2"]
        assert kwargs["organism"] == "mouse"
        assert kwargs["outdir"] is None
        assert by_db["DB1"]["Term"].tolist() == ["a", "c"]
        assert "Gene_set" not in by_db["DB2"].columns

    def test_connection_error_wrapped(self):
        with patch("gseapy.enrichr", side_effect=requests.exceptions.ConnectionError("down")):
            with pytest.raises(EnrichmentServiceError, match="unreachable"):
                EnrichrClient().query(["g1"], ["DB1"])

    def test_rejected_query_wrapped(self):
        with patch("gseapy.enrichr", side_effect=Exception("Error sending gene list")):
            with pytest.raises(EnrichmentServiceError, match="query failed"):
                EnrichrClient().query(["g1"], ["DB1"])

    def test_empty_answer(self):
        answer = MagicMock()
        answer.results = pd.DataFrame()
        with patch("gseapy.enrichr", return_value=answer):
            assert EnrichrClient().query(["g1"], ["DB1"]) == {}
