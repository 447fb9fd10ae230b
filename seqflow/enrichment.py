"""
enrichment.py — Gene-set over-representation of the significant genes.

For every subset and every direction, the genes passing the
significance filter are submitted to Enrichr (through gseapy) against a
fixed list of databases.  The per-call tables are tagged with their
origin and concatenated into ONE table.

A failure of the remote service affects only the call that hit it: it is
logged, recorded in :attr:`EnrichmentRun.failures`, and the remaining
calls proceed.  An empty gene list is not a failure; the call is simply
skipped.

Functions
---------
EnrichrClient(organism)
    → :class:`~seqflow.protocols.EnrichmentClient` backed by gseapy.

standardize_terms(df)
    → Enrichr columns renamed to the workflow's vocabulary.

enrich_subset(results_df, subset, databases, client, sig_filter)
    → Tagged term tables for both directions of one subset.

enrich_all(tables, databases, client, sig_filter)
    → EnrichmentRun(table, failures) over every subset.

top_terms(enrichment, subset, direction, database, n)
    → The n best terms of one (subset, direction, database).

Usage example
-------------
    from seqflow.enrichment import EnrichrClient, enrich_all

    run = enrich_all(tables, client=EnrichrClient(organism="mouse"))
    run.table.to_csv("enrichment_results.csv")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import pandas as pd
import requests

from seqflow.config import DIRECTIONS, ENRICHMENT_CONFIG
from seqflow.protocols import EnrichmentClient
from seqflow.significance import SignificanceFilter

logger = logging.getLogger(__name__)


class EnrichmentServiceError(RuntimeError):
    """The enrichment service could not answer one query."""


class EnrichrClient:
    """Enrichr queries through ``gseapy.enrichr``.

    One HTTP round-trip per gene list; all databases are requested at
    once and the answer is split on gseapy's ``Gene_set`` column.
    """

    def __init__(self, organism: str = ENRICHMENT_CONFIG["organism"]):
        self.organism = organism

    def query(self, genes: list[str], databases: list[str]) -> dict[str, pd.DataFrame]:
        import gseapy as gp

        try:
            enr = gp.enrichr(
                gene_list=list(genes),
                gene_sets=list(databases),
                organism=self.organism,
                outdir=None,
                no_plot=True,
            )
        except requests.exceptions.RequestException as e:
            raise EnrichmentServiceError(f"Enrichr is unreachable: {e}") from e
        except Exception as e:
            # gseapy reports rejected gene lists and bad responses as bare Exceptions
            raise EnrichmentServiceError(f"Enrichr query failed: {e}") from e

        results = enr.results
        if results is None or len(results) == 0:
            return {}
        if "Gene_set" not in results.columns:
            if len(databases) != 1:
                raise EnrichmentServiceError(
                    "Enrichr answer lacks the 'Gene_set' column; cannot "
                    f"attribute terms to databases {list(databases)}."
                )
            results = results.assign(Gene_set=databases[0])

        return {
            str(db): group.drop(columns="Gene_set").reset_index(drop=True)
            for db, group in results.groupby("Gene_set", sort=False)
        }


@dataclass
class EnrichmentRun:
    """Combined enrichment table plus the queries that failed."""

    table: pd.DataFrame
    failures: list[dict] = field(default_factory=list)


def _empty_table() -> pd.DataFrame:
    return pd.DataFrame(columns=ENRICHMENT_CONFIG["leading_columns"])


def standardize_terms(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename Enrichr's columns (``"Adjusted P-value"`` → ``padj`` …).

    Columns not in ``ENRICHMENT_CONFIG["column_map"]`` are kept as-is.
    """
    return df.rename(columns=ENRICHMENT_CONFIG["column_map"])


def _order_columns(df: pd.DataFrame) -> pd.DataFrame:
    leading = [c for c in ENRICHMENT_CONFIG["leading_columns"] if c in df.columns]
    rest = [c for c in df.columns if c not in leading]
    return df[leading + rest]


def _resolve_databases(databases: list[str] | None) -> list[str]:
    if databases is None:
        return list(ENRICHMENT_CONFIG["databases"])
    databases = list(databases)
    if not databases:
        raise ValueError("No enrichment databases selected.")
    return databases


def enrich_subset(
    results_df: pd.DataFrame,
    subset: str,
    databases: list[str] | None = None,
    client: EnrichmentClient | None = None,
    sig_filter: SignificanceFilter | None = None,
) -> list[pd.DataFrame]:
    """
    Enrich the increased and the decreased genes of one subset.

    Parameters
    ----------
    results_df : pd.DataFrame
        Cleaned DE results of the subset.
    subset : str
        Subset label written in the ``subset`` column.
    databases : list[str], optional
        ``None`` means ``ENRICHMENT_CONFIG["databases"]``; an empty list
        raises ``ValueError``.
    client : EnrichmentClient, optional
        Defaults to :class:`EnrichrClient`.
    sig_filter : SignificanceFilter, optional
        Defaults to the standard thresholds.

    Returns
    -------
    list[pd.DataFrame]
        One standardised, tagged table per (direction, database) with
        results.  Empty when no gene passes.

    Raises
    ------
    EnrichmentServiceError
        Propagated from the client; :func:`enrich_all` records it.
    """
    databases = _resolve_databases(databases)
    client = client or EnrichrClient()
    sig_filter = sig_filter or SignificanceFilter()

    tables = []
    for direction in DIRECTIONS:
        tables.extend(_enrich_direction(
            results_df, subset, direction, databases, client, sig_filter,
        ))
    return tables


def _enrich_direction(
    results_df: pd.DataFrame,
    subset: str,
    direction: str,
    databases: list[str],
    client: EnrichmentClient,
    sig_filter: SignificanceFilter,
) -> list[pd.DataFrame]:
    genes = sig_filter.gene_list(results_df, direction)
    if not genes:
        logger.info("Subset %s, %s: no significant genes, enrichment skipped",
                    subset, direction)
        return []

    logger.info("Subset %s, %s: querying %d genes against %d databases",
                subset, direction, len(genes), len(databases))
    by_db = client.query(genes, databases)

    tables = []
    for database in databases:
        terms = by_db.get(database)
        if terms is None or terms.empty:
            continue
        tables.append(standardize_terms(terms).assign(
            subset=str(subset), direction=direction, database=database,
        ))
    return tables


def enrich_all(
    tables: dict[str, pd.DataFrame],
    databases: list[str] | None = None,
    client: EnrichmentClient | None = None,
    sig_filter: SignificanceFilter | None = None,
) -> EnrichmentRun:
    """
    Enrich every subset and combine the results into one table.

    Each direction of each subset is queried separately, so a service
    error is caught per (subset, direction) and the remaining queries
    still run.

    Returns
    -------
    EnrichmentRun
        ``table`` indexed 0..n-1 with ``ENRICHMENT_CONFIG["leading_columns"]``
        first; ``failures`` lists ``{"subset", "direction", "error"}``.
    """
    databases = _resolve_databases(databases)
    client = client or EnrichrClient()
    sig_filter = sig_filter or SignificanceFilter()

    collected: list[pd.DataFrame] = []
    failures: list[dict] = []
    for subset, results_df in tables.items():
        for direction in DIRECTIONS:
            try:
                collected.extend(_enrich_direction(
                    results_df, subset, direction, databases, client, sig_filter,
                ))
            except EnrichmentServiceError as e:
                logger.warning("Enrichment failed for subset %s, %s: %s",
                               subset, direction, e)
                failures.append({
                    "subset": str(subset),
                    "direction": direction,
                    "error": str(e),
                })

    if not collected:
        logger.info("Enrichment returned no terms")
        return EnrichmentRun(table=_empty_table(), failures=failures)

    combined = pd.concat(collected, ignore_index=True)
    combined = _order_columns(combined)
    logger.info("Enrichment: %d terms over %d tables, %d failed queries",
                len(combined), len(collected), len(failures))
    return EnrichmentRun(table=combined, failures=failures)


def top_terms(
    enrichment: pd.DataFrame,
    subset: str,
    direction: str,
    database: str,
    n: int = ENRICHMENT_CONFIG["top_terms"],
) -> pd.DataFrame:
    """The *n* terms with the smallest ``padj`` for one query/database."""
    mask = (
        (enrichment["subset"].astype(str) == str(subset))
        & (enrichment["direction"] == direction)
        & (enrichment["database"] == database)
    )
    selected = enrichment.loc[mask]
    return selected.sort_values("padj", kind="mergesort").head(n)
