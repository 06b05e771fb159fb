"""Structured analysis results parsed from LLM output."""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class Severity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MEDIUM


class IssueCategory(str, enum.Enum):
    CPU = "cpu"
    MEMORY = "memory"
    RENDERING = "rendering"
    IO = "io"
    CONCURRENCY = "concurrency"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Any) -> "IssueCategory":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.GENERAL


@dataclass
class PerformanceIssue:
    title: str
    description: str
    severity: Severity = Severity.MEDIUM
    category: IssueCategory = IssueCategory.GENERAL
    affected_area: Optional[str] = None
    suggested_fixes: list[str] = field(default_factory=list)
    code_example: Optional[str] = None
    source_file: Optional[str] = None
    line_number: Optional[int] = None
    retention_path: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerformanceIssue":
        line = data.get("lineNumber")
        return cls(
            title=str(data.get("title") or "Unknown Issue"),
            description=str(data.get("description") or ""),
            severity=Severity.parse(data.get("severity")),
            category=IssueCategory.parse(data.get("category")),
            affected_area=data.get("affectedArea"),
            suggested_fixes=[str(s) for s in data.get("suggestedFixes") or []],
            code_example=data.get("codeExample"),
            source_file=data.get("sourceFile"),
            line_number=line if isinstance(line, int) else None,
            retention_path=[str(s) for s in data.get("retentionPath") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "category": self.category.value,
            "suggestedFixes": self.suggested_fixes,
        }
        for key, value in (
            ("affectedArea", self.affected_area),
            ("codeExample", self.code_example),
            ("sourceFile", self.source_file),
            ("lineNumber", self.line_number),
        ):
            if value is not None:
                data[key] = value
        if self.retention_path:
            data["retentionPath"] = self.retention_path
        return data


@dataclass
class AnalysisMetrics:
    tokens_used: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    response_time_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tokensUsed": self.tokens_used,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "responseTimeMs": self.response_time_ms,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class AnalysisResult:
    summary: str
    issues: list[PerformanceIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    metrics: AnalysisMetrics = field(default_factory=AnalysisMetrics)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_error(self) -> bool:
        return self.metrics.error is not None

    @property
    def critical_issues(self) -> list[PerformanceIssue]:
        return [i for i in self.issues if i.severity is Severity.CRITICAL]

    @classmethod
    def from_dict(cls, data: dict[str, Any], metrics: Optional[AnalysisMetrics] = None) -> "AnalysisResult":
        return cls(
            summary=str(data.get("summary") or "No summary provided"),
            issues=[
                PerformanceIssue.from_dict(i) for i in data.get("issues") or [] if isinstance(i, dict)
            ],
            recommendations=[str(r) for r in data.get("recommendations") or []],
            metrics=metrics or AnalysisMetrics(),
        )

    @classmethod
    def from_llm_response(cls, text: str, metrics: Optional[AnalysisMetrics] = None) -> "AnalysisResult":
        """Parse the first-to-last brace span as JSON; fall back to raw text."""
        match = _JSON_OBJECT.search(text)
        candidate = match.group(0) if match else text
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            logger.debug("LLM response is not JSON, using raw text as summary")
            return cls(summary=text.strip(), metrics=metrics or AnalysisMetrics())
        if not isinstance(data, dict):
            return cls(summary=text.strip(), metrics=metrics or AnalysisMetrics())
        return cls.from_dict(data, metrics)

    @classmethod
    def from_error(cls, message: str, response_time_ms: int = 0) -> "AnalysisResult":
        return cls(
            summary=f"Analysis failed: {message}",
            metrics=AnalysisMetrics(response_time_ms=response_time_ms, error=message),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "issues": [i.to_dict() for i in self.issues],
            "recommendations": self.recommendations,
            "metrics": self.metrics.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }
