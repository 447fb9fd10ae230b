"""
visualization.py — Figures for every stage of the workflow.

All functions are read-and-render: they take tables produced by the
earlier stages and return a ``matplotlib.figure.Figure``.  Nothing here
writes to disk except :func:`save_figure`, a convenience used by the
workflow's plot stage and by the Streamlit downloads.

Colour conventions (see ``THEME`` in :mod:`seqflow.config`):
- increased genes — warm red
- decreased genes — blue
- not significant — light grey

Functions
---------
create_dispersion_plot(dispersions)
    → Gene-wise, fitted and final dispersion against mean (log-log).

create_pca_plot(pca_df, color_col, style_col)
    → PC1/PC2 scatter, colour by one covariate, marker by another.

prepare_volcano_data(results_df, sig_filter)
create_volcano_plot(volcano_df, sig_filter, subset, contrast)
    → Volcano plot with threshold lines and labelled top genes.

create_gene_count_plot(counts_df, group_order)
    → Number of significant genes per (subset, direction).

prepare_heatmap_data(stabilized, results_df, sig_filter)
create_heatmap(zscores, metadata_df, annotation_cols)
    → Clustered heatmap of row z-scores with covariate colour bars.

prepare_enrichment_plot_data(enrichment, subset, direction, database, n)
create_enrichment_plot(plot_df)
    → Ranked -log10(padj) dot-plot of the top terms.

save_figure(fig, path, dpi)
    → Write a figure as PNG/PDF/SVG.

Usage example
-------------
    from seqflow.visualization import prepare_volcano_data, create_volcano_plot

    volcano_df = prepare_volcano_data(results_df)
    fig = create_volcano_plot(volcano_df, subset="8 wpi")
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib
import matplotlib.pyplot as plt
import matplotlib.figure

from seqflow.config import (
    DESEQ2_DEFAULTS,
    DIRECTIONS,
    DISPERSION_PLOT_CONFIG,
    ENRICHMENT_CONFIG,
    ENRICHMENT_PLOT_CONFIG,
    GENE_COUNT_PLOT_CONFIG,
    HEATMAP_CONFIG,
    MEMORY_CONFIG,
    PCA_PLOT_CONFIG,
    THEME,
    VOLCANO_PLOT_CONFIG,
)
from seqflow.protocols import Contrast
from seqflow.significance import SignificanceFilter

logger = logging.getLogger(__name__)


# ── Volcano categories, least prominent first ────────────────────────
CATEGORY_ORDER = ["NS", "decreased", "increased"]


def _apply_legend(ax, loc: str = "best", fontsize: int = 9, **extra_kw) -> None:
    """Create and style a legend on *ax* with the shared look."""
    legend_kw = dict(
        loc=loc,
        fontsize=fontsize,
        frameon=True,
        framealpha=0.9,
        facecolor="white",
        edgecolor=THEME["grid"],
    )
    legend_kw.update(extra_kw)
    legend = ax.legend(**legend_kw)
    legend.set_zorder(10)

    if matplotlib.get_backend().lower() != "agg":
        legend.set_draggable(True)


def _new_axes(figsize):
    """Figure + axes with the clean theme: light background, no top/right spines."""
    with plt.style.context("seaborn-v0_8-whitegrid"):
        fig, ax = plt.subplots(figsize=figsize)

    ax.set_facecolor(THEME["surface"])
    fig.patch.set_facecolor(THEME["bg"])
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.spines["left"].set_color(THEME["border"])
    ax.spines["bottom"].set_color(THEME["border"])
    ax.tick_params(
        axis="both", which="major",
        labelsize=10, colors=THEME["text_muted"],
        direction="out", length=4, width=0.8,
    )
    return fig, ax


# ═══════════════════════════════════════════════════════════════════════
# DISPERSION DIAGNOSTIC
# ═══════════════════════════════════════════════════════════════════════

def create_dispersion_plot(dispersions: pd.DataFrame) -> matplotlib.figure.Figure:
    """
    Per-gene dispersion against mean normalised count, log-log.

    Gene-wise estimates are drawn as dark points, the final (MAP)
    estimates in blue and the fitted trend as a red line.  A healthy fit
    shows dispersion decreasing with mean and the final estimates
    shrunk toward the trend.

    Parameters
    ----------
    dispersions : pd.DataFrame
        Output of ``FittedModel.dispersion_table()``: ``baseMean``,
        ``genewise_dispersion``, ``fitted_dispersion`` and
        ``MAP_dispersion`` per gene.
    """
    cfg = DISPERSION_PLOT_CONFIG

    df = dispersions[dispersions["baseMean"] > 0].sort_values("baseMean")
    fig, ax = _new_axes(cfg["figsize"])

    ax.scatter(
        df["baseMean"], df["genewise_dispersion"],
        s=cfg["point_size"], c=cfg["color_genewise"], alpha=0.5,
        edgecolors="none", label="gene-wise estimate", zorder=1,
    )
    if "MAP_dispersion" in df.columns:
        ax.scatter(
            df["baseMean"], df["MAP_dispersion"],
            s=cfg["point_size"], c=cfg["color_final"], alpha=0.5,
            edgecolors="none", label="final estimate", zorder=2,
        )
    ax.plot(
        df["baseMean"], df["fitted_dispersion"],
        color=cfg["color_fitted"], linewidth=1.5, label="fitted trend", zorder=3,
    )

    ax.set_xscale("log")
    ax.set_yscale("log")
    ax.set_xlabel(cfg["xlabel"], fontsize=cfg["font_axes"])
    ax.set_ylabel(cfg["ylabel"], fontsize=cfg["font_axes"])
    ax.set_title(cfg["title"], fontsize=cfg["font_title"], fontweight="bold", pad=15)
    _apply_legend(ax, loc="lower left", fontsize=cfg["font_legend"], markerscale=3)

    plt.tight_layout(pad=1.5)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# PCA
# ═══════════════════════════════════════════════════════════════════════

def create_pca_plot(
    pca_df: pd.DataFrame,
    color_col: str = DESEQ2_DEFAULTS["condition_col"],
    style_col: str | None = DESEQ2_DEFAULTS["group_col"],
    legend_loc: str = "best",
) -> matplotlib.figure.Figure:
    """
    PC1/PC2 scatter of the variance-stabilised samples.

    Parameters
    ----------
    pca_df : pd.DataFrame
        Output of :func:`seqflow.exploration.compute_pca`.  Must carry
        ``attrs["var_explained"]``.
    color_col : str
        Covariate mapped to colour.
    style_col : str or None
        Covariate mapped to marker shape; None draws circles only.
    """
    cfg = PCA_PLOT_CONFIG
    var_explained = pca_df.attrs.get("var_explained", [0, 0])

    n_samples = len(pca_df)
    width, height = cfg["figsize"]
    if n_samples > 20:
        width = min(width + (n_samples - 20) * 0.15, 14)
        height = min(height + (n_samples - 20) * 0.1, 10)

    fig, ax = _new_axes((width, height))

    color_levels = pd.unique(pca_df[color_col].astype(str)).tolist()
    color_map = {
        level: cfg["color_palette"][i % len(cfg["color_palette"])]
        for i, level in enumerate(color_levels)
    }
    if style_col:
        style_levels = pd.unique(pca_df[style_col].astype(str)).tolist()
        marker_map = {
            level: cfg["markers"][i % len(cfg["markers"])]
            for i, level in enumerate(style_levels)
        }
    else:
        style_levels = [None]
        marker_map = {None: "o"}

    for c_level in color_levels:
        for s_level in style_levels:
            mask = pca_df[color_col].astype(str) == c_level
            if style_col:
                mask &= pca_df[style_col].astype(str) == s_level
            if not mask.any():
                continue
            ax.scatter(
                pca_df.loc[mask, "PC1"],
                pca_df.loc[mask, "PC2"],
                c=color_map[c_level],
                marker=marker_map[s_level],
                s=cfg["point_size"],
                alpha=cfg["point_alpha"],
                edgecolors="white",
                linewidths=0.8,
                zorder=2,
            )

    # Legend: one block per covariate instead of every combination
    for c_level in color_levels:
        ax.scatter([], [], c=color_map[c_level], marker="o",
                   s=cfg["point_size"] * 0.6, label=f"{color_col}: {c_level}")
    if style_col:
        for s_level in style_levels:
            ax.scatter([], [], c=THEME["text_subtle"], marker=marker_map[s_level],
                       s=cfg["point_size"] * 0.6, label=f"{style_col}: {s_level}")

    max_label_samples = MEMORY_CONFIG.get("pca_label_max_samples", 60)
    if cfg.get("show_labels", True) and n_samples <= max_label_samples:
        label_fontsize = cfg.get("label_fontsize", 8)
        if n_samples > 30:
            label_fontsize = max(5, label_fontsize - 2)
        for sample_name, row in pca_df.iterrows():
            ax.text(
                row["PC1"], row["PC2"], f"  {sample_name}",
                fontsize=label_fontsize, color=THEME["text_muted"],
                zorder=3, ha="left", va="center",
            )

    ax.set_xlabel(f"PC1 ({var_explained[0] * 100:.1f}% variance)", fontsize=cfg["font_axes"])
    ax.set_ylabel(f"PC2 ({var_explained[1] * 100:.1f}% variance)", fontsize=cfg["font_axes"])
    ax.set_title(cfg["title"], fontsize=cfg["font_title"], fontweight="bold", pad=15)
    _apply_legend(ax, loc=legend_loc, fontsize=cfg["font_legend"])

    plt.tight_layout(pad=1.5)

    # Slightly expand limits so labels are not clipped
    x_margin = (ax.get_xlim()[1] - ax.get_xlim()[0]) * 0.08
    y_margin = (ax.get_ylim()[1] - ax.get_ylim()[0]) * 0.08
    ax.set_xlim(ax.get_xlim()[0] - x_margin, ax.get_xlim()[1] + x_margin)
    ax.set_ylim(ax.get_ylim()[0] - y_margin, ax.get_ylim()[1] + y_margin)

    return fig


# ═══════════════════════════════════════════════════════════════════════
# VOLCANO
# ═══════════════════════════════════════════════════════════════════════

def prepare_volcano_data(
    results_df: pd.DataFrame,
    sig_filter: SignificanceFilter | None = None,
) -> pd.DataFrame:
    """
    Add the plotting columns to a DE results table.

    Added columns:
    - ``neg_log10_padj`` — Y-axis value.  A ``padj`` of exactly 0 is
      replaced by the smallest non-zero ``padj`` so the point stays on
      the plot.
    - ``category`` — ``"increased"``, ``"decreased"`` or ``"NS"`` from
      the significance filter.

    Rows without ``padj`` are dropped.
    """
    sig_filter = sig_filter or SignificanceFilter()

    volcano_df = results_df.dropna(subset=["padj"]).copy()

    padj = volcano_df["padj"]
    positive = padj[padj > 0]
    floor = positive.min() if not positive.empty else np.finfo(float).tiny
    volcano_df["neg_log10_padj"] = -np.log10(padj.where(padj > 0, floor))

    volcano_df["category"] = sig_filter.classify(volcano_df).fillna("NS")
    return volcano_df


def create_volcano_plot(
    volcano_df: pd.DataFrame,
    sig_filter: SignificanceFilter | None = None,
    subset: str | None = None,
    contrast: Contrast | None = None,
    n_labels: int | None = None,
    legend_loc: str = "upper right",
) -> matplotlib.figure.Figure:
    """
    Volcano plot of one subset's results.

    Reference lines are drawn at ``-log10(sig_filter.padj)`` and at
    ``±sig_filter.log2fc``.  The *n_labels* significant genes with the
    smallest ``padj`` are labelled, positions de-overlapped with
    adjustText.

    Parameters
    ----------
    volcano_df : pd.DataFrame
        Output of :func:`prepare_volcano_data`.
    sig_filter : SignificanceFilter, optional
        Thresholds for the reference lines.
    subset : str, optional
        Subset label used in the title.
    contrast : Contrast, optional
        Used in the X-axis label.  Defaults to the configured levels.
    n_labels : int, optional
        Defaults to ``VOLCANO_PLOT_CONFIG["n_labels"]``.
    """
    cfg = VOLCANO_PLOT_CONFIG
    sig_filter = sig_filter or SignificanceFilter()
    if contrast is None:
        contrast = Contrast(
            DESEQ2_DEFAULTS["condition_col"],
            DESEQ2_DEFAULTS["test_level"],
            DESEQ2_DEFAULTS["reference_level"],
        )
    if n_labels is None:
        n_labels = cfg["n_labels"]

    fig, ax = _new_axes(cfg["figsize"])
    ax.yaxis.grid(True, linestyle=":", linewidth=0.5, color=THEME["grid"])
    ax.xaxis.grid(False)
    ax.set_axisbelow(True)

    cat_style = {
        "NS": {"color": cfg["color_ns"], "alpha": cfg["alpha_ns"],
               "size": cfg["size_ns"], "marker": "o", "label": "not significant",
               "zorder": 1},
        "decreased": {"color": cfg["color_down"], "alpha": cfg["alpha_down"],
                      "size": cfg["size_down"], "marker": "v", "label": "decreased",
                      "zorder": 2},
        "increased": {"color": cfg["color_up"], "alpha": cfg["alpha_up"],
                      "size": cfg["size_up"], "marker": "^", "label": "increased",
                      "zorder": 2},
    }

    for cat in CATEGORY_ORDER:
        mask = volcano_df["category"] == cat
        n = int(mask.sum())
        if n == 0:
            continue
        style = cat_style[cat]
        ax.scatter(
            volcano_df.loc[mask, "log2FoldChange"],
            volcano_df.loc[mask, "neg_log10_padj"],
            c=style["color"],
            alpha=style["alpha"],
            s=style["size"],
            marker=style["marker"],
            label=f'{style["label"]} ({n:,})',
            edgecolors="white",
            linewidths=0.3,
            zorder=style["zorder"],
        )

    threshold_kw = dict(
        linestyle=cfg["threshold_linestyle"],
        color=cfg["threshold_color"],
        linewidth=cfg["threshold_linewidth"],
        zorder=0,
    )
    ax.axhline(-np.log10(sig_filter.padj), **threshold_kw)
    ax.axvline(-sig_filter.log2fc, **threshold_kw)
    ax.axvline(sig_filter.log2fc, **threshold_kw)

    xlabel = cfg["xlabel_template"].format(
        test=contrast.test_level, ref=contrast.reference_level,
    )
    ax.set_xlabel(xlabel, fontsize=cfg["font_axes"], color=THEME["text"])
    ax.set_ylabel(cfg["ylabel"], fontsize=cfg["font_axes"], color=THEME["text"])
    title = cfg["title_template"].format(subset=subset) if subset is not None else "Volcano plot"
    ax.set_title(title, fontsize=cfg["font_title"], fontweight="bold",
                 color=THEME["text"], pad=15)

    if len(volcano_df):
        _apply_legend(ax, loc=legend_loc, fontsize=cfg["font_legend"],
                      borderpad=0.8, labelspacing=0.6, handletextpad=0.5)

    # ── Labels on the most significant genes ─────────────────────────
    significant = volcano_df[volcano_df["category"] != "NS"]
    to_label = significant.sort_values("padj", kind="mergesort").head(n_labels)
    texts = [
        ax.text(
            row["log2FoldChange"], row["neg_log10_padj"], str(gene),
            fontsize=cfg["font_annotation"], color=THEME["text"],
            ha="left", va="center", zorder=10,
        )
        for gene, row in to_label.iterrows()
    ]
    if len(texts) > 1:
        from adjustText import adjust_text

        adjust_text(
            texts,
            ax=ax,
            arrowprops=dict(arrowstyle="-", color=THEME["text_subtle"], lw=0.5),
        )

    plt.tight_layout(pad=1.5)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# GENE COUNTS PER SUBSET
# ═══════════════════════════════════════════════════════════════════════

def create_gene_count_plot(
    counts_df: pd.DataFrame,
    group_order: list[str] | None = None,
    xlabel: str = DESEQ2_DEFAULTS["group_col"],
) -> matplotlib.figure.Figure:
    """
    One point per (subset, direction): the number of significant genes.

    Parameters
    ----------
    counts_df : pd.DataFrame
        Output of ``SignificanceFilter.count_by_direction``.
    group_order : list[str], optional
        Subset order on the X axis.  Subsets not listed follow in the
        order they appear in *counts_df*; without an order, the
        appearance order is used as-is (never alphabetical).
    """
    cfg = GENE_COUNT_PLOT_CONFIG

    present = pd.unique(counts_df["subset"].astype(str)).tolist()
    order = [str(s) for s in (group_order or []) if str(s) in present]
    order += [s for s in present if s not in order]
    positions = {subset: i for i, subset in enumerate(order)}

    fig, ax = _new_axes(cfg["figsize"])
    ax.yaxis.grid(True, linestyle=":", linewidth=0.5, color=THEME["grid"])
    ax.set_axisbelow(True)

    for direction in DIRECTIONS:
        rows = counts_df[counts_df["direction"] == direction]
        x = [positions[str(s)] for s in rows["subset"]]
        ax.scatter(
            x, rows["n_genes"],
            s=cfg["point_size"], c=cfg["colors"][direction],
            edgecolors="white", linewidths=0.8, label=direction, zorder=2,
        )
        ordered = rows.assign(_x=x).sort_values("_x")
        ax.plot(ordered["_x"], ordered["n_genes"], color=cfg["colors"][direction],
                linewidth=1, alpha=0.6, zorder=1)

    ax.set_xticks(range(len(order)))
    ax.set_xticklabels(order)
    ax.set_xlabel(xlabel, fontsize=cfg["font_axes"])
    ax.set_ylabel(cfg["ylabel"], fontsize=cfg["font_axes"])
    ax.set_ylim(bottom=0)
    ax.set_title(cfg["title"], fontsize=cfg["font_title"], fontweight="bold", pad=15)
    _apply_legend(ax, loc="upper left", fontsize=cfg["font_legend"])

    plt.tight_layout(pad=1.5)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# HEATMAP
# ═══════════════════════════════════════════════════════════════════════

def prepare_heatmap_data(
    stabilized: pd.DataFrame,
    results_df: pd.DataFrame,
    sig_filter: SignificanceFilter | None = None,
) -> pd.DataFrame:
    """
    Row-wise z-scores of the stabilised matrix over the significant genes.

    Only genes passing *sig_filter* in *results_df* are kept, across ALL
    samples of *stabilized*.  Each row becomes ``(x - mean) / sd`` with
    the sample standard deviation (ddof=1, as R's ``scale``).  Rows with
    zero spread are set to 0.

    Returns
    -------
    pd.DataFrame
        Z-score matrix (genes x samples), genes in results order.
    """
    sig_filter = sig_filter or SignificanceFilter()

    genes = [g for g in sig_filter.select(results_df).index if g in stabilized.index]
    values = stabilized.loc[genes].to_numpy(dtype=float)

    if values.size == 0:
        return pd.DataFrame(index=pd.Index(genes, name=stabilized.index.name),
                            columns=stabilized.columns, dtype=float)

    row_mean = values.mean(axis=1, keepdims=True)
    if values.shape[1] > 1:
        row_std = values.std(axis=1, ddof=1, keepdims=True)
    else:
        row_std = np.zeros_like(row_mean)
    centered = values - row_mean
    zscores = np.divide(centered, row_std, out=np.zeros_like(centered), where=row_std > 0)

    return pd.DataFrame(
        zscores,
        index=pd.Index(genes, name=stabilized.index.name),
        columns=stabilized.columns,
    )


def create_heatmap(
    zscores: pd.DataFrame,
    metadata_df: pd.DataFrame,
    annotation_cols: list[str] | tuple[str, ...] = (
        DESEQ2_DEFAULTS["condition_col"],
        DESEQ2_DEFAULTS["group_col"],
    ),
    subset: str | None = None,
) -> matplotlib.figure.Figure:
    """
    Clustered heatmap (seaborn.clustermap) of gene z-scores.

    Genes and samples are both hierarchically clustered; each covariate
    in *annotation_cols* gets a colour bar above the samples.

    Raises
    ------
    ValueError
        If *zscores* has no genes.
    """
    import seaborn as sns
    from matplotlib.patches import Patch

    cfg = HEATMAP_CONFIG
    n_genes, n_samples = zscores.shape
    if n_genes == 0:
        raise ValueError(
            "No gene passes the significance filter; nothing to draw in the heatmap."
        )

    width = max(10, min(18, 4 + n_samples * 0.5))
    height = max(8, min(16, 3 + n_genes * 0.25))

    # ── One colour bar per covariate ─────────────────────────────────
    palette = PCA_PLOT_CONFIG["color_palette"]
    luts: dict[str, dict[str, str]] = {}
    bars = {}
    offset = 0
    for col in annotation_cols:
        values = metadata_df.loc[zscores.columns, col].astype(str)
        levels = pd.unique(values).tolist()
        lut = {lvl: palette[(offset + i) % len(palette)] for i, lvl in enumerate(levels)}
        offset += len(levels)
        luts[col] = lut
        bars[col] = values.map(lut)
    col_colors = pd.DataFrame(bars, index=zscores.columns) if bars else None

    vmax = float(np.abs(zscores.to_numpy()).max()) or 1.0
    show_genes = n_genes <= cfg.get("max_gene_labels", 60)

    g = sns.clustermap(
        zscores,
        cmap=cfg["cmap"],
        vmin=-vmax,
        vmax=vmax,
        center=cfg["center"],
        method=cfg["method"],
        metric=cfg["metric"],
        row_cluster=cfg["cluster_rows"] and n_genes > 1,
        col_cluster=cfg["cluster_cols"] and n_samples > 1,
        col_colors=col_colors,
        figsize=(width, height),
        dendrogram_ratio=(0.15, 0.15),
        cbar_pos=(0.02, 0.8, 0.03, 0.15),
        tree_kws={"linewidths": 1.0, "colors": "#666666"},
        xticklabels=True,
        yticklabels=show_genes,
    )

    g.ax_heatmap.set_xticklabels(
        g.ax_heatmap.get_xticklabels(), fontsize=8, rotation=90,
    )
    if show_genes:
        g.ax_heatmap.set_yticklabels(
            g.ax_heatmap.get_yticklabels(), fontsize=7, rotation=0,
        )

    title = cfg["title"].format(subset=subset) if subset is not None else "Z-scored VST counts"
    g.figure.suptitle(title, fontsize=cfg["font_title"], fontweight="bold", y=1.02)
    g.cax.set_ylabel("z-score", fontsize=10, rotation=90, labelpad=8)
    g.cax.yaxis.set_label_position("left")

    handles = []
    for col, lut in luts.items():
        handles.extend(
            Patch(facecolor=color, edgecolor="gray", label=f"{col}: {lvl}")
            for lvl, color in lut.items()
        )
    if handles:
        g.ax_heatmap.legend(
            handles=handles,
            loc="upper left",
            bbox_to_anchor=(1.12, 1.0),
            fontsize=8,
            frameon=True,
            framealpha=0.95,
            edgecolor=THEME["border"],
        )

    return g.figure


# ═══════════════════════════════════════════════════════════════════════
# ENRICHMENT RANKING
# ═══════════════════════════════════════════════════════════════════════

def prepare_enrichment_plot_data(
    enrichment: pd.DataFrame,
    subset: str,
    direction: str,
    database: str,
    n: int = ENRICHMENT_CONFIG["top_terms"],
) -> pd.DataFrame:
    """
    Top *n* terms of one (subset, direction, database) by ascending padj.

    Adds ``neg_log10_padj`` and ``rank`` (1 = best).  Rank order is kept
    for plotting; terms are never re-sorted alphabetically.
    """
    from seqflow.enrichment import top_terms

    plot_df = top_terms(enrichment, subset, direction, database, n).reset_index(drop=True)
    padj = plot_df["padj"].astype(float).clip(lower=np.finfo(float).tiny)
    plot_df["neg_log10_padj"] = -np.log10(padj)
    plot_df["rank"] = np.arange(1, len(plot_df) + 1)
    plot_df.attrs["title"] = ENRICHMENT_PLOT_CONFIG["title_template"].format(
        database=database, subset=subset, direction=direction,
    )
    return plot_df


def create_enrichment_plot(plot_df: pd.DataFrame) -> matplotlib.figure.Figure:
    """
    Ranked dot-plot: -log10(padj) per term, colour = combined score,
    text = overlap string.  The best term is at the top.

    Raises
    ------
    ValueError
        If *plot_df* is empty.
    """
    cfg = ENRICHMENT_PLOT_CONFIG
    if plot_df.empty:
        raise ValueError("No enrichment terms to plot for this selection.")

    height = max(cfg["figsize"][1], 1.5 + 0.45 * len(plot_df))
    fig, ax = _new_axes((cfg["figsize"][0], height))
    ax.xaxis.grid(True, linestyle=":", linewidth=0.5, color=THEME["grid"])
    ax.set_axisbelow(True)

    y = np.arange(len(plot_df))[::-1]
    sc = ax.scatter(
        plot_df["neg_log10_padj"], y,
        c=plot_df["combined_score"].astype(float), cmap=cfg["cmap"],
        s=cfg["point_size"], edgecolors="white", linewidths=0.6, zorder=2,
    )
    for yi, (_, row) in zip(y, plot_df.iterrows()):
        ax.annotate(
            str(row["overlap"]),
            xy=(row["neg_log10_padj"], yi),
            xytext=(8, 0), textcoords="offset points",
            fontsize=cfg["label_fontsize"], color=THEME["text_muted"], va="center",
        )

    ax.set_yticks(y)
    ax.set_yticklabels(plot_df["term"].astype(str), fontsize=cfg["label_fontsize"])
    ax.set_xlabel(cfg["xlabel"], fontsize=cfg["font_axes"])
    ax.set_xlim(left=0, right=plot_df["neg_log10_padj"].max() * 1.2 + 0.1)
    cbar = fig.colorbar(sc, ax=ax, pad=0.02)
    cbar.set_label("combined score", fontsize=9)
    ax.set_title(plot_df.attrs.get("title", ""), fontsize=cfg["font_title"],
                 fontweight="bold", pad=12)

    plt.tight_layout(pad=1.5)
    return fig


def save_figure(
    fig: matplotlib.figure.Figure,
    path: str | Path,
    dpi: int = 150,
) -> Path:
    """Write *fig* to *path* (format from the extension) and close it."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor=fig.get_facecolor())
    plt.close(fig)
    logger.debug("Saved figure %s", path)
    return path
