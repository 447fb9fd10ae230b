"""
seqflow -- Time-course bulk RNA-seq differential expression workflow.

No Streamlit dependency. Importable for headless use, testing,
notebooks, or the Streamlit front-end in ``app.py``.

Usage:
    from seqflow import run_workflow
    from seqflow.pipeline import DifferentialExpressionWorkflow
    from seqflow.significance import SignificanceFilter
"""

from seqflow.analysis import run_workflow
from seqflow.pipeline import (
    DifferentialExpressionWorkflow,
    WorkflowParams,
    WorkflowPaths,
)
from seqflow.protocols import (
    Contrast,
    EnrichmentClient,
    FittedModel,
    ModelFitter,
    ProgressCallback,
)
from seqflow.significance import SignificanceFilter
from seqflow.enrichment import EnrichmentServiceError, EnrichrClient
from seqflow.data_io import build_count_matrix, read_counts_file, read_metadata_file
from seqflow.audit import build_workflow_audit, format_audit_text, get_library_versions

__all__ = [
    "run_workflow",
    "DifferentialExpressionWorkflow",
    "WorkflowParams",
    "WorkflowPaths",
    "Contrast",
    "EnrichmentClient",
    "FittedModel",
    "ModelFitter",
    "ProgressCallback",
    "SignificanceFilter",
    "EnrichmentServiceError",
    "EnrichrClient",
    "build_count_matrix",
    "read_counts_file",
    "read_metadata_file",
    "build_workflow_audit",
    "format_audit_text",
    "get_library_versions",
]
