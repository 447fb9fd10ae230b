"""
seqflow/pipeline.py — Class-based orchestrator for the time-course workflow.

Five stages, each persisting its outputs and each reloading its inputs
from disk, so any stage can be re-run on its own:

1. ``ingest()``       — merge per-sample count files → raw_counts.csv
2. ``explore()``      — whole-dataset fit → dispersions.csv, vst_counts.csv
3. ``differential()`` — per-subset fit → deseq2_results_<subset>.csv
4. ``enrich()``       — Enrichr on the significant genes → enrichment_results.csv
5. ``plot()``         — read-and-render every figure

Usage
-----
Fluent chaining (full workflow)::

    workflow = (
        DifferentialExpressionWorkflow("counts/", "metadata.csv", "out/")
        .configure(reference_level="Mock", test_level="RML",
                   group_order=["4 wpi", "8 wpi", "12 wpi"])
        .run()
    )
    workflow.results_tables["8 wpi"]
    workflow.figures["volcano"]["8 wpi"]

One stage at a time (e.g. after editing thresholds)::

    workflow = DifferentialExpressionWorkflow("counts/", "metadata.csv", "out/")
    workflow.configure(log2fc=1.0).enrich().plot()

Stubbing the heavy collaborators::

    workflow = DifferentialExpressionWorkflow(
        "counts/", "metadata.csv", "out/",
        fitter=my_fake_fitter, client=my_fake_client,
    )
"""

from __future__ import annotations

import functools
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable

import pandas as pd

from seqflow.config import (
    DESEQ2_DEFAULTS,
    DIRECTIONS,
    ENRICHMENT_CONFIG,
    INGEST_CONFIG,
    MEMORY_CONFIG,
    OUTPUT_FILES,
    SIGNIFICANCE_DEFAULTS,
)
from seqflow.data_io import (
    build_count_matrix,
    read_counts_file,
    read_enrichment_table,
    read_metadata_file,
    read_results_table,
    write_table,
)
from seqflow.deseq_runner import N_DESEQ2_STEPS, fit_deseq_model
from seqflow.differential import analyze_subsets, results_filename, safe_label, subset_order
from seqflow.enrichment import EnrichrClient, enrich_all
from seqflow.exploration import compute_pca, explore
from seqflow.protocols import Contrast, EnrichmentClient, ModelFitter
from seqflow.significance import SignificanceFilter
from seqflow.validation import (
    align_to_metadata,
    check_counts_are_raw,
    check_sample_order,
    validate_contrast_levels,
    validate_counts_df,
    validate_metadata_df,
)
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

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# Parameter snapshot
# ─────────────────────────────────────────────────────────────────────

@dataclass
class WorkflowParams:
    """Every tuneable knob of the workflow, in one serialisable snapshot."""

    # Ingestion
    prefix: str = INGEST_CONFIG["prefix"]
    extension: str = INGEST_CONFIG["extension"]

    # Covariates and contrast
    sample_col: str = DESEQ2_DEFAULTS["sample_col"]
    condition_col: str = DESEQ2_DEFAULTS["condition_col"]
    group_col: str = DESEQ2_DEFAULTS["group_col"]
    reference_level: str = DESEQ2_DEFAULTS["reference_level"]
    test_level: str = DESEQ2_DEFAULTS["test_level"]
    group_order: list[str] | None = None

    # Model
    # None: built from group_col and condition_col
    global_design: str | None = None
    subset_design: str | None = None
    alpha: float = DESEQ2_DEFAULTS["alpha"]
    shrink_lfc: bool = DESEQ2_DEFAULTS["shrink_lfc"]
    pca_top_genes: int = MEMORY_CONFIG["pca_top_var_genes"]

    # Significance filter
    padj: float = SIGNIFICANCE_DEFAULTS["padj"]
    log2fc: float = SIGNIFICANCE_DEFAULTS["log2fc"]
    base_mean: float = SIGNIFICANCE_DEFAULTS["base_mean"]

    # Enrichment
    databases: list[str] = field(
        default_factory=lambda: list(ENRICHMENT_CONFIG["databases"])
    )
    organism: str = ENRICHMENT_CONFIG["organism"]

    # Plot stage
    save_figures: bool = True
    figure_format: str = "png"

    def global_formula(self) -> str:
        return self.global_design or f"~ {self.group_col} + {self.condition_col}"

    def subset_formula(self) -> str:
        return self.subset_design or f"~ {self.condition_col}"

    def contrast(self) -> Contrast:
        return Contrast(self.condition_col, self.test_level, self.reference_level)

    def sig_filter(self) -> SignificanceFilter:
        return SignificanceFilter(padj=self.padj, log2fc=self.log2fc, base_mean=self.base_mean)


@dataclass
class WorkflowPaths:
    """Locations of every persisted artifact under one output directory."""

    output_dir: Path

    def __post_init__(self):
        self.output_dir = Path(self.output_dir)

    @property
    def raw_counts(self) -> Path:
        return self.output_dir / OUTPUT_FILES["raw_counts"]

    @property
    def vst_counts(self) -> Path:
        return self.output_dir / OUTPUT_FILES["vst_counts"]

    @property
    def dispersions(self) -> Path:
        return self.output_dir / OUTPUT_FILES["dispersions"]

    @property
    def enrichment(self) -> Path:
        return self.output_dir / OUTPUT_FILES["enrichment"]

    @property
    def audit(self) -> Path:
        return self.output_dir / OUTPUT_FILES["audit"]

    @property
    def figures_dir(self) -> Path:
        return self.output_dir / "figures"

    def results(self, subset: str) -> Path:
        return self.output_dir / results_filename(subset)


def _require(path: Path, stage: str) -> Path:
    if not path.exists():
        raise FileNotFoundError(
            f"{path.name} not found in {path.parent}. Run the {stage}() stage first."
        )
    return path


# ─────────────────────────────────────────────────────────────────────
# Workflow class
# ─────────────────────────────────────────────────────────────────────

class DifferentialExpressionWorkflow:
    """Orchestrates the five stages over one counts directory and one
    metadata file, writing everything under one output directory.

    Every stage method returns ``self`` for chaining.

    Key attributes
    ~~~~~~~~~~~~~~
    params : WorkflowParams
        Settings snapshot (change with ``configure()``).
    paths : WorkflowPaths
        Where each artifact is written.
    counts_df : pd.DataFrame | None
        Raw counts (after ``ingest()`` or any later stage).
    metadata_df : pd.DataFrame | None
        Validated metadata, index = sample.
    dispersions, stabilized, pca_df : pd.DataFrame | None
        Outputs of ``explore()``.
    results_tables : dict[str, pd.DataFrame]
        Cleaned per-subset results (after ``differential()``).
    enrichment : pd.DataFrame | None
        Combined enrichment table (after ``enrich()``).
    enrichment_failures : list[dict]
        Enrichment queries that failed, one per (subset, direction).
    figures : dict
        Figures from ``plot()``; per-subset figures are nested dicts.
    step_timings : dict[str, float]
        Wall-clock seconds per stage.
    """

    STAGES = ("ingest", "explore", "differential", "enrich", "plot")

    def __init__(
        self,
        counts_dir: str | Path,
        metadata_path: str | Path,
        output_dir: str | Path,
        fitter: ModelFitter | None = None,
        client: EnrichmentClient | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ) -> None:
        self.counts_dir = Path(counts_dir)
        self.metadata_path = Path(metadata_path)
        self.paths = WorkflowPaths(output_dir)
        self.params = WorkflowParams()

        self._fitter = fitter
        self._client = client
        self.progress_callback = progress_callback

        self.counts_df: pd.DataFrame | None = None
        self.metadata_df: pd.DataFrame | None = None
        self.dispersions: pd.DataFrame | None = None
        self.stabilized: pd.DataFrame | None = None
        self.pca_df: pd.DataFrame | None = None
        self.results_tables: dict[str, pd.DataFrame] = {}
        self.enrichment: pd.DataFrame | None = None
        self.enrichment_failures: list[dict] = []
        self.figures: dict = {}

        self.step_timings: dict[str, float] = {}
        self._step_log: list[str] = []
        self._total_elapsed: float | None = None

    # ── Configuration ──────────────────────────────────────────────

    def configure(self, **kwargs) -> DifferentialExpressionWorkflow:
        """Set workflow parameters.  Unknown keys raise ``ValueError``.

        Column names and design formulas are lowercased to match the
        lowercased metadata headers.  A design of ``None`` is rebuilt from
        ``group_col`` and ``condition_col``.
        """
        valid = list(self.params.__dataclass_fields__)
        for key, value in kwargs.items():
            if key not in valid:
                raise ValueError(f"Unknown parameter: '{key}'. Valid keys: {valid}")
            if key in ("sample_col", "condition_col", "group_col"):
                value = str(value).strip().lower()
            elif key in ("global_design", "subset_design") and value is not None:
                value = str(value).strip().lower() or None
            setattr(self.params, key, value)
        return self

    # ── Collaborators and progress ─────────────────────────────────

    def _report(self, stage: str, message: str) -> None:
        logger.info("[%s] %s", stage, message)
        if self.progress_callback:
            self.progress_callback(self.STAGES.index(stage), len(self.STAGES), message)

    def _deseq_progress(self, stage: str) -> Callable[[int, int, str], None]:
        """Forward pydeseq2 sub-steps as messages of the current stage."""
        def callback(current: int, total: int, message: str) -> None:
            if self.progress_callback:
                self.progress_callback(
                    self.STAGES.index(stage), len(self.STAGES),
                    f"{stage}: {message} ({current}/{N_DESEQ2_STEPS})",
                )
        return callback

    def _get_fitter(self, stage: str) -> ModelFitter:
        if self._fitter is not None:
            return self._fitter
        return functools.partial(
            fit_deseq_model,
            progress_callback=self._deseq_progress(stage),
            shrink_lfc=self.params.shrink_lfc,
        )

    def _get_client(self) -> EnrichmentClient:
        if self._client is None:
            self._client = EnrichrClient(organism=self.params.organism)
        return self._client

    # ── Loading persisted inputs ───────────────────────────────────

    def _read_metadata(self) -> pd.DataFrame:
        p = self.params
        meta = read_metadata_file(self.metadata_path)
        meta = validate_metadata_df(
            meta, required_cols=(p.condition_col, p.group_col), sample_col=p.sample_col,
        )
        self.metadata_df = meta
        return meta

    def _load_metadata(self) -> pd.DataFrame:
        p = self.params
        meta = self._read_metadata()
        validate_contrast_levels(meta, p.condition_col, p.reference_level, p.test_level)
        self.metadata_df = meta
        return meta

    def _load_counts(self) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Raw counts + metadata, with the column/row order checked."""
        counts = read_counts_file(_require(self.paths.raw_counts, "ingest"))
        validate_counts_df(counts)
        meta = self._load_metadata()
        check_sample_order(counts, meta)
        self.counts_df = counts
        return counts, meta

    def _subsets(self) -> list[str]:
        p = self.params
        return subset_order(self.metadata_df, p.group_col, p.group_order)

    def _load_results(self) -> dict[str, pd.DataFrame]:
        self._load_metadata()
        return {
            subset: read_results_table(_require(self.paths.results(subset), "differential"))
            for subset in self._subsets()
        }

    # ── Stage 1: Ingest ────────────────────────────────────────────

    def ingest(self) -> DifferentialExpressionWorkflow:
        """Merge the per-sample count files into ``raw_counts.csv``.

        Columns follow the sample sheet; a sample missing on either side
        raises ``ValueError``.
        """
        self._report("ingest", "merging count files")
        t0 = time.monotonic()
        p = self.params

        counts = build_count_matrix(self.counts_dir, p.prefix, p.extension)
        validate_counts_df(counts)
        counts = align_to_metadata(counts, self._read_metadata())
        raw_check = check_counts_are_raw(counts)
        if raw_check["is_suspect"]:
            logger.warning("Counts may not be raw: %s", raw_check["reason"])

        write_table(counts, self.paths.raw_counts)
        self.counts_df = counts

        self.step_timings["ingest"] = time.monotonic() - t0
        self._step_log.append("ingest")
        return self

    # ── Stage 2: Explore ───────────────────────────────────────────

    def explore(self) -> DifferentialExpressionWorkflow:
        """Whole-dataset fit: dispersion diagnostics and the VST matrix."""
        self._report("explore", "fitting the global model")
        t0 = time.monotonic()
        p = self.params

        counts, meta = self._load_counts()
        result = explore(counts, meta, p.global_formula(), fitter=self._get_fitter("explore"))

        write_table(result.dispersions, self.paths.dispersions)
        write_table(result.stabilized, self.paths.vst_counts)
        self.dispersions = result.dispersions
        self.stabilized = result.stabilized
        self.pca_df = compute_pca(
            result.stabilized, meta, (p.condition_col, p.group_col), p.pca_top_genes,
        )

        self.step_timings["explore"] = time.monotonic() - t0
        self._step_log.append("explore")
        return self

    # ── Stage 3: Differential testing ──────────────────────────────

    def differential(self) -> DifferentialExpressionWorkflow:
        """Fit and test every subset independently; one CSV per subset."""
        self._report("differential", "testing each subset")
        t0 = time.monotonic()
        p = self.params

        counts, meta = self._load_counts()
        subsets = self._subsets()
        filenames = {results_filename(s) for s in subsets}
        if len(filenames) < len(subsets):
            raise ValueError(
                f"Subsets {subsets} map onto clashing result file names; "
                f"rename the '{p.group_col}' values."
            )
        tables = analyze_subsets(
            counts, meta, p.group_col, p.contrast(),
            design=p.subset_formula(),
            fitter=self._get_fitter("differential"),
            alpha=p.alpha,
            group_order=p.group_order,
        )
        for subset, results_df in tables.items():
            write_table(results_df, self.paths.results(subset))
        self.results_tables = tables

        self.step_timings["differential"] = time.monotonic() - t0
        self._step_log.append("differential")
        return self

    # ── Stage 4: Enrichment ────────────────────────────────────────

    def enrich(self) -> DifferentialExpressionWorkflow:
        """Query Enrichr for every (subset, direction) and persist one table."""
        self._report("enrich", "querying the enrichment service")
        t0 = time.monotonic()
        p = self.params

        tables = self._load_results()
        run = enrich_all(
            tables, databases=p.databases,
            client=self._get_client(), sig_filter=p.sig_filter(),
        )
        write_table(run.table, self.paths.enrichment)
        self.results_tables = tables
        self.enrichment = run.table
        self.enrichment_failures = run.failures

        self.step_timings["enrich"] = time.monotonic() - t0
        self._step_log.append("enrich")
        return self

    # ── Stage 5: Plots ─────────────────────────────────────────────

    def plot(self) -> DifferentialExpressionWorkflow:
        """Render every figure from the persisted tables.

        After this step ``self.figures`` holds ``"dispersion"``,
        ``"pca"``, ``"gene_counts"`` and the nested dicts
        ``"volcano"``/``"heatmap"`` (by subset) and ``"enrichment"``
        (by ``(subset, direction, database)``).  Heatmaps without any
        significant gene and enrichment plots without terms are skipped.
        """
        self._report("plot", "rendering figures")
        t0 = time.monotonic()
        p = self.params
        sig_filter = p.sig_filter()

        dispersions = read_results_table(_require(self.paths.dispersions, "explore"))
        stabilized = read_counts_file(_require(self.paths.vst_counts, "explore"))
        tables = self._load_results()
        meta = self.metadata_df
        enrichment = (
            read_enrichment_table(self.paths.enrichment)
            if self.paths.enrichment.exists() else None
        )

        figures: dict = {"volcano": {}, "heatmap": {}, "enrichment": {}}
        figures["dispersion"] = create_dispersion_plot(dispersions)
        self.pca_df = compute_pca(
            stabilized, meta, (p.condition_col, p.group_col), p.pca_top_genes,
        )
        figures["pca"] = create_pca_plot(self.pca_df, p.condition_col, p.group_col)
        figures["gene_counts"] = create_gene_count_plot(
            sig_filter.count_by_direction(tables), self._subsets(), xlabel=p.group_col,
        )

        for subset, results_df in tables.items():
            figures["volcano"][subset] = create_volcano_plot(
                prepare_volcano_data(results_df, sig_filter),
                sig_filter, subset=subset, contrast=p.contrast(),
            )
            zscores = prepare_heatmap_data(stabilized, results_df, sig_filter)
            if zscores.empty:
                logger.info("Subset %s: no significant genes, heatmap skipped", subset)
            else:
                figures["heatmap"][subset] = create_heatmap(
                    zscores, meta, (p.condition_col, p.group_col), subset=subset,
                )

        if enrichment is not None and not enrichment.empty:
            for subset in tables:
                for direction in DIRECTIONS:
                    for database in p.databases:
                        plot_df = prepare_enrichment_plot_data(
                            enrichment, subset, direction, database,
                        )
                        if plot_df.empty:
                            continue
                        figures["enrichment"][(subset, direction, database)] = (
                            create_enrichment_plot(plot_df)
                        )

        self.figures = figures
        self.results_tables = tables
        if p.save_figures:
            self.save_figures()

        self.step_timings["plot"] = time.monotonic() - t0
        self._step_log.append("plot")
        return self

    def save_figures(self) -> list[Path]:
        """Write every figure of ``self.figures`` under ``figures/``."""
        ext = self.params.figure_format
        out = self.paths.figures_dir
        written = []
        for name, fig in self.figures.items():
            if isinstance(fig, dict):
                for key, sub_fig in fig.items():
                    parts = key if isinstance(key, tuple) else (key,)
                    stem = safe_label("_".join([name, *(str(k) for k in parts)]))
                    written.append(save_figure(sub_fig, out / f"{stem}.{ext}"))
            else:
                written.append(save_figure(fig, out / f"{name}.{ext}"))
        logger.info("Saved %d figures to %s", len(written), out)
        return written

    # ── Convenience: run all ───────────────────────────────────────

    def run(self) -> DifferentialExpressionWorkflow:
        """Run all five stages in order, then write ``audit.json``."""
        t0 = time.monotonic()
        self.ingest().explore().differential().enrich().plot()
        self._total_elapsed = time.monotonic() - t0

        self.write_audit()
        if self.progress_callback:
            self.progress_callback(len(self.STAGES), len(self.STAGES), "done")
        self._step_log.append("run_complete")
        return self

    # ── Output accessors ───────────────────────────────────────────

    def build_audit(self) -> dict:
        """JSON-safe record of parameters, versions, timings and outcomes."""
        from seqflow.audit import build_workflow_audit
        return build_workflow_audit(self)

    def write_audit(self) -> Path:
        path = self.paths.audit
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.build_audit(), indent=2))
        logger.info("Audit written to %s", path)
        return path

    def get_results(self, subset: str) -> pd.DataFrame:
        """Cleaned results of one subset.

        Raises
        ------
        RuntimeError
            If ``differential()`` has not produced that subset yet.
        """
        if subset not in self.results_tables:
            raise RuntimeError(
                f"No results for subset '{subset}'. Run differential() first "
                f"(available: {list(self.results_tables)})."
            )
        return self.results_tables[subset]

    def params_dict(self) -> dict:
        return asdict(self.params)

    # ── Serialisation ──────────────────────────────────────────────

    def __getstate__(self) -> dict:
        """Drop callbacks, collaborators and figures; keep the tables."""
        state = self.__dict__.copy()
        state["progress_callback"] = None
        state["_fitter"] = None
        state["_client"] = None
        state["figures"] = {}
        return state

    def __setstate__(self, state: dict) -> None:
        self.__dict__.update(state)

    def __repr__(self) -> str:
        status = self._step_log[-1] if self._step_log else "not started"
        return (
            f"<DifferentialExpressionWorkflow "
            f"status={status!r} "
            f"subsets={list(self.results_tables) or '?'} "
            f"output_dir={str(self.paths.output_dir)!r}>"
        )
