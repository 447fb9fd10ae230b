"""
analysis.py — One-call entry point for the complete workflow.

A FACADE over :class:`seqflow.pipeline.DifferentialExpressionWorkflow`
for scripts and notebooks that just want every artifact written:

    analysis.py (facade)
        └── pipeline.py (DifferentialExpressionWorkflow)
              ├── data_io.py       → merge count files
              ├── exploration.py   → global fit, VST, PCA
              ├── differential.py  → per-subset fits
              ├── enrichment.py    → Enrichr queries
              └── visualization.py → figures

Functions
---------
run_workflow(counts_dir, metadata_path, output_dir, **params)
    → Runs all five stages and returns the finished workflow.

Usage example
-------------
    from seqflow.analysis import run_workflow

    workflow = run_workflow(
        "galaxy_counts/", "metadata.csv", "results/",
        reference_level="Mock", test_level="RML",
        group_order=["4 wpi", "8 wpi", "12 wpi", "16 wpi"],
    )
    print(workflow.results_tables["8 wpi"].head())
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from seqflow.protocols import EnrichmentClient, ModelFitter


def run_workflow(
    counts_dir: str | Path,
    metadata_path: str | Path,
    output_dir: str | Path,
    fitter: ModelFitter | None = None,
    client: EnrichmentClient | None = None,
    progress_callback: Callable[[int, int, str], None] | None = None,
    **params,
):
    """
    Run ingestion, exploration, differential testing, enrichment and
    plotting, writing every artifact plus ``audit.json`` to *output_dir*.

    Parameters
    ----------
    counts_dir : str or Path
        Directory of per-sample count files.
    metadata_path : str or Path
        Sample metadata table; its sample order must match the merged
        count columns.
    output_dir : str or Path
        Destination of all persisted tables and figures.
    fitter, client : optional
        Replacements for the pydeseq2 fitter and the Enrichr client.
    progress_callback : callable, optional
        ``(current, total, message)``.
    **params
        Any :class:`~seqflow.pipeline.WorkflowParams` field
        (``reference_level``, ``group_order``, ``log2fc``, ...).

    Returns
    -------
    DifferentialExpressionWorkflow
        The completed workflow, with tables and figures in memory.

    Raises
    ------
    ValueError
        On invalid inputs or an unknown parameter name.
    FileNotFoundError
        If the counts directory or metadata file is missing.
    """
    from seqflow.pipeline import DifferentialExpressionWorkflow

    workflow = DifferentialExpressionWorkflow(
        counts_dir, metadata_path, output_dir,
        fitter=fitter, client=client, progress_callback=progress_callback,
    )
    workflow.configure(**params)
    return workflow.run()
