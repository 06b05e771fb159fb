"""LLM analysis of redacted snapshot summaries."""

from .client import ChatMessage, Completion, LLMClient, ProviderKind
from .results import AnalysisMetrics, AnalysisResult, IssueCategory, PerformanceIssue, Severity

__all__ = [
    "ChatMessage",
    "Completion",
    "LLMClient",
    "ProviderKind",
    "AnalysisMetrics",
    "AnalysisResult",
    "IssueCategory",
    "PerformanceIssue",
    "Severity",
]
