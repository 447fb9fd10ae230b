"""
app.py — Streamlit front-end for the seqflow workflow.

Drives the five stages interactively: every stage reads its inputs from
the output directory and writes its tables back there, so stages can be
re-run one at a time after changing a setting in the sidebar.

To run:
    streamlit run app.py
"""

import io
import logging

import streamlit as st

from seqflow.config import DESEQ2_DEFAULTS, ENRICHMENT_CONFIG, INGEST_CONFIG, SIGNIFICANCE_DEFAULTS
from seqflow.data_io import read_counts_file, read_enrichment_table, read_results_table
from seqflow.pipeline import DifferentialExpressionWorkflow
from seqflow.audit import format_audit_text

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s: %(message)s",
)


def _fig_download_button(fig, base_name: str, key: str):
    """PNG download button for a matplotlib figure."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=300, bbox_inches="tight")
    buf.seek(0)
    st.download_button(
        label="📥 Download PNG",
        data=buf,
        file_name=f"{base_name}.png",
        mime="image/png",
        key=key,
    )


def _show_figure(fig, base_name: str, key: str):
    st.pyplot(fig, use_container_width=True)
    _fig_download_button(fig, base_name, key)


# ─────────────────────────────────────────────────────────────────────
# Page configuration
# ─────────────────────────────────────────────────────────────────────
st.set_page_config(
    page_title="seqflow — time-course RNA-seq",
    layout="wide",
    page_icon="🧬",
)
st.title("🧬 seqflow — time-course differential expression")

# ─────────────────────────────────────────────────────────────────────
# Sidebar: inputs and settings
# ─────────────────────────────────────────────────────────────────────
with st.sidebar:
    st.header("Inputs")
    counts_dir = st.text_input("Counts directory", value="counts")
    metadata_path = st.text_input("Metadata file", value="metadata.csv")
    output_dir = st.text_input("Output directory", value="results")
    prefix = st.text_input("File name prefix", value=INGEST_CONFIG["prefix"])
    extension = st.text_input("File extension", value=INGEST_CONFIG["extension"])

    st.header("Design")
    condition_col = st.text_input("Condition column", value=DESEQ2_DEFAULTS["condition_col"])
    group_col = st.text_input("Grouping column", value=DESEQ2_DEFAULTS["group_col"])
    reference_level = st.text_input("Reference level", value=DESEQ2_DEFAULTS["reference_level"])
    test_level = st.text_input("Test level", value=DESEQ2_DEFAULTS["test_level"])
    global_design = st.text_input(
        "Whole-dataset design", value="",
        help="Blank: ~ <grouping column> + <condition column>.",
    )
    subset_design = st.text_input(
        "Per-subset design", value="",
        help="Blank: ~ <condition column>.",
    )
    group_order_text = st.text_input(
        "Subset order (comma-separated)", value="",
        help="Order of the grouping values in plots; unlisted values follow.",
    )

    st.header("Significance")
    padj = st.number_input("padj <", value=float(SIGNIFICANCE_DEFAULTS["padj"]),
                           min_value=0.0, max_value=1.0, step=0.01, format="%.3f")
    log2fc = st.number_input("|log2FC| >", value=float(SIGNIFICANCE_DEFAULTS["log2fc"]),
                             min_value=0.0, step=0.05)
    base_mean = st.number_input("baseMean >", value=float(SIGNIFICANCE_DEFAULTS["base_mean"]),
                                min_value=0.0, step=1.0)

    st.header("Enrichment")
    organism = st.text_input("Organism", value=ENRICHMENT_CONFIG["organism"])
    databases = st.multiselect(
        "Databases", options=ENRICHMENT_CONFIG["databases"],
        default=ENRICHMENT_CONFIG["databases"],
    )

group_order = [g.strip() for g in group_order_text.split(",") if g.strip()] or None


def _build_workflow(progress_bar) -> DifferentialExpressionWorkflow:
    def _progress(current: int, total: int, message: str):
        progress_bar.progress(min(current / total, 1.0), text=message)

    workflow = DifferentialExpressionWorkflow(
        counts_dir, metadata_path, output_dir, progress_callback=_progress,
    )
    return workflow.configure(
        prefix=prefix,
        extension=extension,
        condition_col=condition_col,
        group_col=group_col,
        reference_level=reference_level,
        test_level=test_level,
        global_design=global_design.strip() or None,
        subset_design=subset_design.strip() or None,
        group_order=group_order,
        padj=padj,
        log2fc=log2fc,
        base_mean=base_mean,
        organism=organism,
        databases=databases,
    )


# ─────────────────────────────────────────────────────────────────────
# Stage buttons
# ─────────────────────────────────────────────────────────────────────
STAGE_LABELS = {
    "ingest": "1 · Merge counts",
    "explore": "2 · Explore",
    "differential": "3 · Test subsets",
    "enrich": "4 · Enrichment",
    "plot": "5 · Plots",
    "run": "Run all",
}

cols = st.columns(len(STAGE_LABELS))
clicked = None
for col, (stage, label) in zip(cols, STAGE_LABELS.items()):
    with col:
        if st.button(label, key=f"btn_{stage}", use_container_width=True):
            clicked = stage

if clicked:
    progress_bar = st.progress(0.0, text="starting")
    workflow = _build_workflow(progress_bar)
    try:
        with st.spinner(f"Running {STAGE_LABELS[clicked]}..."):
            getattr(workflow, clicked)()
    except (ValueError, FileNotFoundError, RuntimeError) as e:
        st.error(f"❌ {e}")
    else:
        st.success(f"✅ {STAGE_LABELS[clicked]} finished in {output_dir}/")
        st.session_state["workflow"] = workflow
    finally:
        progress_bar.empty()

workflow = st.session_state.get("workflow")
if workflow is None:
    st.info("Set the inputs in the sidebar and run a stage.")
    st.stop()

# ─────────────────────────────────────────────────────────────────────
# Tables
# ─────────────────────────────────────────────────────────────────────
paths = workflow.paths
tab_tables, tab_figures, tab_audit = st.tabs(["Tables", "Figures", "Audit"])

with tab_tables:
    if paths.raw_counts.exists():
        st.subheader("Raw counts")
        st.dataframe(read_counts_file(paths.raw_counts).head(200), use_container_width=True)

    if workflow.results_tables:
        st.subheader("Differential expression")
        subset = st.selectbox("Subset", options=list(workflow.results_tables))
        sig = workflow.params.sig_filter().select(workflow.results_tables[subset])
        st.caption(f"{len(sig)} genes pass the significance filter")
        st.dataframe(read_results_table(paths.results(subset)), use_container_width=True)

    if paths.enrichment.exists():
        st.subheader("Enrichment")
        st.dataframe(read_enrichment_table(paths.enrichment), use_container_width=True)
        for failure in workflow.enrichment_failures:
            st.warning(
                f"Enrichment failed for {failure['subset']} / "
                f"{failure['direction']}: {failure['error']}"
            )

# ─────────────────────────────────────────────────────────────────────
# Figures
# ─────────────────────────────────────────────────────────────────────
with tab_figures:
    figures = workflow.figures
    if not figures:
        st.info("Run the plot stage to render figures.")
    else:
        st.subheader("Exploration")
        c1, c2 = st.columns(2)
        with c1:
            _show_figure(figures["dispersion"], "dispersion", "dl_dispersion")
        with c2:
            _show_figure(figures["pca"], "pca", "dl_pca")
        _show_figure(figures["gene_counts"], "gene_counts", "dl_gene_counts")

        st.subheader("Per subset")
        subset = st.selectbox("Subset ", options=list(figures["volcano"]))
        c1, c2 = st.columns(2)
        with c1:
            _show_figure(figures["volcano"][subset], f"volcano_{subset}", f"dl_volcano_{subset}")
        with c2:
            if subset in figures["heatmap"]:
                _show_figure(figures["heatmap"][subset], f"heatmap_{subset}", f"dl_heatmap_{subset}")
            else:
                st.info("No significant genes: no heatmap for this subset.")

        enrichment_keys = [k for k in figures["enrichment"] if k[0] == subset]
        if enrichment_keys:
            st.subheader("Enrichment ranking")
            key = st.selectbox(
                "Direction / database", options=enrichment_keys,
                format_func=lambda k: f"{k[1]} — {k[2]}",
            )
            _show_figure(figures["enrichment"][key], "_".join(key), f"dl_enr_{'_'.join(key)}")

# ─────────────────────────────────────────────────────────────────────
# Audit
# ─────────────────────────────────────────────────────────────────────
with tab_audit:
    st.code(format_audit_text(workflow.build_audit()), language="text")
