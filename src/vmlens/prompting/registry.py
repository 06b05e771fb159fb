"""Prompt registry for LLM analysis and chat."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import yaml


@dataclass(frozen=True)
class PromptSpec:
    name: str
    system: str
    template: str
    description: str | None = None


PERFORMANCE_ANALYSIS_SYSTEM = """\
You are a runtime performance analyst for Dart and Flutter applications.
The data contains real class names, source locations, code snippets,
retention paths and codebase usages taken from the running application.

Rules:
- Only refer to class and function names that appear in the data.
- Quote code from codeSnippet, usageContext or usages when proposing a fix.
- Use retentionPath and rootType to explain why objects stay alive.
- For timeline data, use jankPattern and slowOperationsByCategory to locate the phase at fault.
- If timeline dataSource is "synthetic", say that frame metrics are placeholders.

Severity: critical (>1000 instances, >1MB or a clear leak), high (>500 instances,
>500KB or unbounded growth), medium (>100 instances or >100KB), low (>50 instances),
info otherwise.

Respond with a single JSON object:
{"summary": str,
 "issues": [{"title": str, "description": str,
             "severity": "critical|high|medium|low|info",
             "category": "cpu|memory|rendering|io|concurrency|general",
             "affectedArea": str, "sourceFile": str, "lineNumber": int,
             "retentionPath": [str], "suggestedFixes": [str], "codeExample": str}],
 "recommendations": [str]}
"""

CHAT_SYSTEM = """\
You are a performance assistant helping a developer understand runtime data
collected from their application. Be specific about what the data shows,
explain root causes plainly and give actionable fixes. Use markdown code blocks.
"""

CLASS_ANALYSIS_SYSTEM = """\
You are a memory analyst. Given one class with its source location, retention
path and usages, explain in two to four sentences why it holds memory, name the
likely root cause from the retention path, and give the exact code change needed.
"""

DEFAULT_PROMPTS: dict[str, dict[str, str]] = {
    "performance_analysis": {
        "system": PERFORMANCE_ANALYSIS_SYSTEM,
        "template": "Analyze this performance data:\n{data}",
    },
    "chat": {
        "system": CHAT_SYSTEM,
        "template": "Current performance data context:\n{context}\n\nUser question: {message}",
    },
    "class_analysis": {
        "system": CLASS_ANALYSIS_SYSTEM,
        "template": "Analyze this class and provide specific fixes:\n{entity}",
    },
}


class PromptRegistry:
    def __init__(
        self,
        root: Optional[Path] = None,
        overrides: Mapping[str, Mapping[str, str]] | None = None,
    ):
        self.root = Path(root) if root else None
        self.overrides = overrides or {}
        self._cache: dict[str, PromptSpec] = {}

    def load(self, name: str) -> PromptSpec:
        if name in self._cache:
            return self._cache[name]

        data: dict[str, str] | None = None
        path = self._find_prompt_file(name)
        if path:
            raw = os.path.expandvars(path.read_text(encoding="utf-8"))
            if path.suffix in {".yaml", ".yml"}:
                payload = yaml.safe_load(raw) or {}
            else:
                payload = json.loads(raw)
            if isinstance(payload, dict):
                data = {k: v for k, v in payload.items() if isinstance(v, str)}

        if not data:
            data = dict(DEFAULT_PROMPTS.get(name, {}))

        override = self.overrides.get(name) or {}
        if override:
            merged = dict(data)
            merged.update({k: v for k, v in override.items() if isinstance(v, str)})
            data = merged

        if not data:
            raise KeyError(f"prompt '{name}' not found")

        spec = PromptSpec(
            name=name,
            system=data.get("system", ""),
            template=data.get("template") or data.get("prompt", ""),
            description=data.get("description"),
        )
        self._cache[name] = spec
        return spec

    def render(self, name: str, **kwargs: object) -> tuple[str, str]:
        spec = self.load(name)
        try:
            rendered = spec.template.format(**kwargs)
        except KeyError as exc:
            raise ValueError(f"Missing template variable {exc} for prompt '{name}'") from exc
        return spec.system, rendered

    def _find_prompt_file(self, name: str) -> Path | None:
        if not self.root:
            return None
        for ext in (".yaml", ".yml", ".json"):
            candidate = self.root / f"{name}{ext}"
            if candidate.exists():
                return candidate
        return None
