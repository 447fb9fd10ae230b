"""
seqflow/audit.py -- Reproducibility record of a workflow run.

Captures parameters, library versions, data dimensions, stage timings,
per-subset gene counts and failed enrichment queries.  No Streamlit
dependency.

Functions
---------
get_library_versions()
    Return a dict of distribution name -> version string.

build_workflow_audit(workflow)
    Build a JSON-serializable audit log from a workflow.

format_audit_text(audit_dict)
    Format an audit dict as human-readable text for lab notebooks.
"""

from __future__ import annotations

import datetime
import platform
from dataclasses import asdict
from importlib import metadata
from typing import Any

import numpy as np

AUDITED_DISTRIBUTIONS = (
    "pydeseq2",
    "gseapy",
    "pandas",
    "numpy",
    "scipy",
    "scikit-learn",
    "matplotlib",
    "seaborn",
    "adjustText",
)


# ══════════════════════════════════════════════════════════════════════
# Library versions
# ══════════════════════════════════════════════════════════════════════

def get_library_versions() -> dict[str, str]:
    """Return ``{distribution: version}`` for the scientific stack.

    Distributions that are not installed report ``"not installed"``.
    """
    libs: dict[str, str] = {}
    for name in AUDITED_DISTRIBUTIONS:
        try:
            libs[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            libs[name] = "not installed"
    return libs


# ══════════════════════════════════════════════════════════════════════
# JSON-safe serialiser
# ══════════════════════════════════════════════════════════════════════

def _safe_serialize(obj: Any) -> Any:
    """Reduce *obj* to values ``json.dumps`` accepts.

    numpy scalars become Python scalars, arrays and sequences become
    lists, timestamps become ISO strings and anything else its ``str``.
    """
    if isinstance(obj, np.generic):
        return obj.item()
    if obj is None or isinstance(obj, (str, bool, int, float)):
        return obj
    if isinstance(obj, dict):
        return {str(key): _safe_serialize(value) for key, value in obj.items()}
    if isinstance(obj, np.ndarray):
        obj = obj.tolist()
    if isinstance(obj, (list, tuple, set)):
        return [_safe_serialize(item) for item in obj]
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    return str(obj)


# ══════════════════════════════════════════════════════════════════════
# Workflow audit builder
# ══════════════════════════════════════════════════════════════════════

def build_workflow_audit(workflow) -> dict:
    """Build a JSON-serializable audit log from a workflow.

    Works on a partially run workflow too; sections whose stage has not
    run are left empty.

    Parameters
    ----------
    workflow : DifferentialExpressionWorkflow

    Returns
    -------
    dict
        Complete audit log, safe for ``json.dumps()``.
    """
    p = workflow.params
    sig_filter = p.sig_filter()

    input_data: dict[str, Any] = {
        "counts_dir": str(workflow.counts_dir),
        "metadata_path": str(workflow.metadata_path),
    }
    if workflow.counts_df is not None:
        input_data["n_genes"] = int(workflow.counts_df.shape[0])
        input_data["n_samples"] = int(workflow.counts_df.shape[1])

    subsets: dict[str, Any] = {}
    if workflow.results_tables:
        counts = sig_filter.count_by_direction(workflow.results_tables)
        for subset, results_df in workflow.results_tables.items():
            rows = counts[counts["subset"] == subset]
            subsets[subset] = {
                "n_genes_tested": int(len(results_df)),
                **{r.direction: int(r.n_genes) for r in rows.itertuples()},
            }

    enrichment: dict[str, Any] = {"failed_queries": list(workflow.enrichment_failures)}
    if workflow.enrichment is not None:
        enrichment["n_terms"] = int(len(workflow.enrichment))

    audit = {
        "seqflow": {
            "workflow": "time_course_bulk_rnaseq",
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "output_dir": str(workflow.paths.output_dir),
        },
        "environment": {
            "python": platform.python_version(),
            "platform": platform.platform(),
            "libraries": get_library_versions(),
        },
        "input_data": input_data,
        "parameters": {
            **asdict(p),
            "global_design": p.global_formula(),
            "subset_design": p.subset_formula(),
        },
        "execution": {
            "steps_completed": list(workflow._step_log),
            "step_timings_seconds": dict(workflow.step_timings),
            "total_seconds": workflow._total_elapsed,
        },
        "subsets": subsets,
        "enrichment": enrichment,
    }
    return _safe_serialize(audit)


def _mapping_lines(mapping: dict, indent: str = "  ") -> list[str]:
    out = []
    for key, value in mapping.items():
        if isinstance(value, dict):
            out.append(f"{indent}{key}:")
            out.extend(_mapping_lines(value, indent + "  "))
        else:
            out.append(f"{indent}{key}: {value}")
    return out


def _execution_lines(execution: dict) -> list[str]:
    out = []
    if execution.get("total_seconds") is not None:
        out.append(f"  Total time: {execution['total_seconds']:.1f}s")
    steps = execution.get("steps_completed") or ["none"]
    out.append("  Steps: " + ", ".join(steps))
    out.extend(
        f"    {name}: {seconds:.2f}s"
        for name, seconds in execution.get("step_timings_seconds", {}).items()
    )
    return out


def _enrichment_lines(enrichment: dict) -> list[str]:
    out = []
    if "n_terms" in enrichment:
        out.append(f"  Terms: {enrichment['n_terms']}")
    failed = enrichment.get("failed_queries", [])
    out.append(f"  Failed queries: {len(failed)}")
    out.extend(
        f"    {q.get('subset')} / {q.get('direction')}: {q.get('error')}"
        for q in failed
    )
    return out


def format_audit_text(audit: dict) -> str:
    """Render an audit dict as plain text for a methods section or notebook."""
    rule = "=" * 60
    header = audit.get("seqflow", {})
    lines = [
        rule,
        "seqflow -- Audit Log",
        rule,
        "",
        f"Workflow : {header.get('workflow', 'unknown')}",
        f"Timestamp: {header.get('timestamp', 'unknown')}",
        "",
    ]

    sections = [
        ("Environment", _mapping_lines(audit.get("environment", {}))),
        ("Input Data", _mapping_lines(audit.get("input_data", {}))),
        ("Parameters", _mapping_lines(audit.get("parameters", {}))),
        ("Execution", _execution_lines(audit.get("execution", {}))),
        ("Significant Genes per Subset", [
            f"  {subset}: " + ", ".join(f"{k}={v}" for k, v in stats.items())
            for subset, stats in audit.get("subsets", {}).items()
        ]),
        ("Enrichment", _enrichment_lines(audit.get("enrichment", {}))),
    ]
    for title, body in sections:
        lines.append(f"--- {title} ---")
        lines.extend(body)
        lines.append("")

    lines.append(rule)
    return "\n".join(lines)
