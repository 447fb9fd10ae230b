"""
config.py — Central configuration for the seqflow workflow.

Every default threshold, file name, design formula and plot setting of
the workflow lives here; the other modules import these dicts rather
than hard-coding values.

Sections
--------
0. THEME : dict
   → Shared colours and fonts for every plot.

1. INGEST_CONFIG : dict
   → How per-sample count files are discovered and named.

2. DESEQ2_DEFAULTS : dict
   → Covariates, contrast levels and design formulas.

3. SIGNIFICANCE_DEFAULTS : dict
   → The fixed "differentially expressed" predicate.

4. ENRICHMENT_CONFIG : dict
   → Enrichr databases and organism.

5. OUTPUT_FILES : dict
   → Names of every persisted table.

6-10. *_PLOT_CONFIG / HEATMAP_CONFIG : dict
   → Visual configuration per plot.

11. MEMORY_CONFIG : dict
    → Worker and dimensionality limits.

12. FILE_CONFIG : dict
    → Separators recognised by extension.

Usage example
-------------
    from seqflow.config import SIGNIFICANCE_DEFAULTS

    padj = SIGNIFICANCE_DEFAULTS["padj"]
"""

# ──────────────────────────────────────────────────────────────────────
# 0. Cohesive visual theme
# ──────────────────────────────────────────────────────────────────────
THEME: dict = {
    "bg":          "#FFFFFF",
    "surface":     "#FAFAFA",
    "border":      "#CCCCCC",
    "grid":        "#E0E0E0",
    "text":        "#222222",
    "text_muted":  "#555555",
    "text_subtle": "#999999",

    "color_ns":    "#BDBDBD",
    "color_up":    "#D84315",
    "color_down":  "#1565C0",

    "palette": [
        "#1565C0", "#D84315", "#2E7D32", "#6A1B9A",
        "#F9A825", "#00838F", "#AD1457", "#4E342E",
    ],
    "cmap_diverging":  "RdBu_r",
    "cmap_sequential": "viridis",

    "font_title":      14,
    "font_axes":       12,
    "font_legend":     9,
    "font_annotation": 9,
}

# ──────────────────────────────────────────────────────────────────────
# 1. Ingestion of per-sample count files
# ──────────────────────────────────────────────────────────────────────
INGEST_CONFIG: dict = {
    # Fixed prefix stripped from every file name to obtain the sample
    # identifier (e.g. "htseq_" in "htseq_S01.tabular").  Empty = none.
    "prefix": "",

    # Extension of the per-sample count files (Galaxy export).
    "extension": ".tabular",

    # Per-sample files are tab-delimited with no header line.
    "sep": "\t",

    # Index label written as the first column of the merged matrix.
    "gene_id_label": "gene_id",
}

# ──────────────────────────────────────────────────────────────────────
# 2. Covariates, contrast and design formulas
# ──────────────────────────────────────────────────────────────────────
DESEQ2_DEFAULTS: dict = {
    # Metadata column holding the sample identifiers.
    "sample_col": "sample",

    # Metadata column that defines the contrast (treatment A vs B).
    "condition_col": "treatment",

    # Metadata column whose values define the independently tested subsets.
    "group_col": "timepoint",

    # Denominator level of every contrast; positive log2 fold changes
    # mean higher expression than in this level.
    "reference_level": "Mock",

    # Level compared against the reference.
    "test_level": "RML",

    # Whole-dataset design for the default columns; the workflow builds
    # its own from the configured columns unless one is given.
    "global_design": "~ timepoint + treatment",

    # Design used inside one subset (the grouping covariate is constant).
    "subset_design": "~ treatment",

    # Adjusted p-value threshold passed to the Wald test (independent
    # filtering). The significance filter applies its own cut-off.
    "alpha": 0.05,

    # apeGLM shrinkage changes log2FoldChange; off to keep MLE estimates.
    "shrink_lfc": False,
}

# ──────────────────────────────────────────────────────────────────────
# 3. Significance filter
# ──────────────────────────────────────────────────────────────────────
# A gene is "differentially expressed" when ALL of the following hold:
#   padj < padj  AND  baseMean > base_mean  AND  |log2FC| > log2fc
# with the sign of log2FC deciding "increased" vs "decreased".
SIGNIFICANCE_DEFAULTS: dict = {
    "padj": 0.05,
    "log2fc": 0.85,
    "base_mean": 15,
}

DIRECTIONS: tuple = ("increased", "decreased")

# ──────────────────────────────────────────────────────────────────────
# 4. Enrichment (Enrichr via gseapy)
# ──────────────────────────────────────────────────────────────────────
ENRICHMENT_CONFIG: dict = {
    "databases": [
        "GO_Biological_Process_2023",
        "GO_Molecular_Function_2023",
        "GO_Cellular_Component_2023",
        "KEGG_2019_Mouse",
        "WikiPathways_2019_Mouse",
    ],
    "organism": "mouse",

    # Number of terms shown in the ranking plot.
    "top_terms": 10,

    # Column renames applied to every Enrichr table.
    "column_map": {
        "Term": "term",
        "Overlap": "overlap",
        "P-value": "pvalue",
        "Adjusted P-value": "padj",
        "Odds Ratio": "odds_ratio",
        "Combined Score": "combined_score",
        "Genes": "genes",
    },

    # Leading columns of the combined enrichment table.
    "leading_columns": [
        "term", "overlap", "pvalue", "padj", "combined_score",
        "subset", "direction", "database",
    ],
}

# ──────────────────────────────────────────────────────────────────────
# 5. Persisted artifacts
# ──────────────────────────────────────────────────────────────────────
OUTPUT_FILES: dict = {
    "raw_counts":      "raw_counts.csv",
    "vst_counts":      "vst_counts.csv",
    "dispersions":     "dispersions.csv",
    "results_template": "deseq2_results_{subset}.csv",
    "enrichment":      "enrichment_results.csv",
    "audit":           "audit.json",
}

# ──────────────────────────────────────────────────────────────────────
# 6. Visual configuration for the volcano plot
# ──────────────────────────────────────────────────────────────────────
VOLCANO_PLOT_CONFIG: dict = {
    "figsize": (9, 7),

    "color_ns":   THEME["color_ns"],
    "alpha_ns":   0.5,
    "size_ns":    12,

    "color_up":   THEME["color_up"],
    "alpha_up":   0.85,
    "size_up":    24,

    "color_down": THEME["color_down"],
    "alpha_down": 0.85,
    "size_down":  24,

    "threshold_linestyle": "--",
    "threshold_color":     THEME["text_subtle"],
    "threshold_linewidth": 0.9,

    # Number of most significant genes labelled on the plot.
    "n_labels": 10,

    "ylabel": r"$-\log_{10}$(adjusted p-value)",
    "xlabel_template": r"$\log_{{2}}$ Fold Change ({test} vs {ref})",
    "title_template": "Volcano plot — {subset}",

    "font_title":      THEME["font_title"],
    "font_axes":       THEME["font_axes"],
    "font_legend":     THEME["font_legend"],
    "font_annotation": THEME["font_annotation"],
}

# ──────────────────────────────────────────────────────────────────────
# 7. Visual configuration for the PCA plot
# ──────────────────────────────────────────────────────────────────────
PCA_PLOT_CONFIG: dict = {
    "figsize": (9, 7),
    "point_size":  110,
    "point_alpha": 0.85,
    "color_palette": THEME["palette"],
    "markers": ["o", "s", "^", "D", "v", "P", "X", "*"],
    "show_labels":    True,
    "label_fontsize": 7,
    "title":       "PCA — variance-stabilised counts",
    "font_title":  THEME["font_title"],
    "font_axes":   THEME["font_axes"],
    "font_legend": THEME["font_legend"],
}

# ──────────────────────────────────────────────────────────────────────
# 8. Visual configuration for the dispersion diagnostic
# ──────────────────────────────────────────────────────────────────────
DISPERSION_PLOT_CONFIG: dict = {
    "figsize": (8, 6),
    "color_genewise": "#212121",
    "color_fitted":   THEME["color_up"],
    "color_final":    THEME["color_down"],
    "point_size": 4,
    "title":  "Dispersion estimates",
    "xlabel": "mean of normalised counts",
    "ylabel": "dispersion",
    "font_title":  THEME["font_title"],
    "font_axes":   THEME["font_axes"],
    "font_legend": THEME["font_legend"],
}

# ──────────────────────────────────────────────────────────────────────
# 9. Visual configuration for the per-subset gene-count plot
# ──────────────────────────────────────────────────────────────────────
GENE_COUNT_PLOT_CONFIG: dict = {
    "figsize": (9, 5),
    "colors": {
        "increased": THEME["color_up"],
        "decreased": THEME["color_down"],
    },
    "point_size": 90,
    "title":  "Differentially expressed genes per subset",
    "ylabel": "number of genes",
    "font_title":  THEME["font_title"],
    "font_axes":   THEME["font_axes"],
    "font_legend": THEME["font_legend"],
}

# ──────────────────────────────────────────────────────────────────────
# 10. Visual configuration for the heatmap and enrichment ranking
# ──────────────────────────────────────────────────────────────────────
HEATMAP_CONFIG: dict = {
    "cmap":   THEME["cmap_diverging"],
    "center": 0,
    "cluster_rows": True,
    "cluster_cols": True,
    "method": "average",
    "metric": "euclidean",
    # Gene labels are hidden above this many rows.
    "max_gene_labels": 60,
    "title": "Z-scored VST counts — {subset}",
    "font_title": THEME["font_title"],
}

ENRICHMENT_PLOT_CONFIG: dict = {
    "figsize": (9, 6),
    "cmap": THEME["cmap_sequential"],
    "point_size": 140,
    "label_fontsize": 8,
    "xlabel": r"$-\log_{10}$(adjusted p-value)",
    "title_template": "{database} — {subset}, {direction}",
    "font_title": 12,
    "font_axes":  THEME["font_axes"],
}

# ──────────────────────────────────────────────────────────────────────
# 11. Memory / dimensionality limits
# ──────────────────────────────────────────────────────────────────────
MEMORY_CONFIG: dict = {
    # PyDESeq2 joblib workers; each gets a copy of the counts matrix.
    "deseq2_n_cpus": 4,

    # PCA on the top-variance genes only (DESeq2 plotPCA uses 500).
    "pca_top_var_genes": 500,

    # Maximum samples before PCA hides sample labels.
    "pca_label_max_samples": 60,
}

# ──────────────────────────────────────────────────────────────────────
# 12. File configuration (I/O)
# ──────────────────────────────────────────────────────────────────────
FILE_CONFIG: dict = {
    # File extension -> column separator.
    "separators": {
        "tsv": "\t",
        "tabular": "\t",
        "txt": "\t",
        "csv": ",",
    },
}
