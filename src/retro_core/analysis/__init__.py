"""Pattern analysis: AI backend, merge engine and the batched analyze run."""

from .analyze import BATCH_SIZE, AnalyzeResult, analysis_cutoff, analyze
from .backend import (
    AnalysisBackend,
    ArtifactDraft,
    TokenUsage,
    ValidationResult,
    parse_pattern_updates,
    parse_validation,
)
from .claude_cli import ClaudeCliBackend
from .merge import (
    SIMILARITY_THRESHOLD,
    MergePlan,
    MergeUpdate,
    apply_merge_plan,
    normalized_similarity,
    process_updates,
)

__all__ = [
    "AnalysisBackend",
    "ArtifactDraft",
    "TokenUsage",
    "ValidationResult",
    "ClaudeCliBackend",
    "parse_pattern_updates",
    "parse_validation",
    "SIMILARITY_THRESHOLD",
    "MergePlan",
    "MergeUpdate",
    "normalized_similarity",
    "process_updates",
    "apply_merge_plan",
    "BATCH_SIZE",
    "AnalyzeResult",
    "analysis_cutoff",
    "analyze",
]
