"""Configuration loading and normalization.

Configs are YAML files turned into typed objects that the collectors, the
source resolver and the LLM client rely on.  Environment variables in YAML
values are expanded to keep secrets (LLM keys) out of the repo.
"""

from __future__ import annotations

import os
import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SKIP_DIRECTORIES = [
    ".dart_tool",
    ".git",
    ".idea",
    ".vscode",
    "build",
    "node_modules",
    "ios",
    "android",
    "macos",
    "windows",
    "linux",
    "web",
    ".pub-cache",
]


def _expand_env(text: str) -> str:
    """Expand ${VARS} inside YAML text."""
    return os.path.expandvars(text)


class ConnectionConfig(BaseModel):
    vm_service_uri: Optional[str] = None
    call_timeout_sec: float = 10.0


class CollectionConfig(BaseModel):
    window_sec: int = 10
    sample_period_us: int = 250
    cpu_top_n: int = 20
    user_class_limit: int = 30
    framework_class_limit: int = 20
    instance_sample_limit: int = 10
    retention_max_depth: int = 100
    slow_event_threshold_us: int = 2000
    timeline_flags: list[str] = Field(
        default_factory=lambda: ["Dart", "GC", "Compiler", "Embedder", "API"]
    )

    @property
    def window_us(self) -> int:
        return self.window_sec * 1_000_000


class SourceConfig(BaseModel):
    workspace_root: Optional[Path] = None
    cache_size: int = 200
    timeout_sec: float = 5.0
    max_directory_depth: int = 10
    max_files: int = 500
    max_scripts_to_search: int = 100
    max_usages: int = 5
    skip_directories: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_DIRECTORIES))


class PrivacyConfig(BaseModel):
    level: str = "maximum"


class LLMConfig(BaseModel):
    provider: str = "openai"
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 4096
    timeout_sec: float = 60.0
    prompts_dir: Optional[Path] = None


class AppConfig(BaseModel):
    connection: ConnectionConfig = ConnectionConfig()
    collection: CollectionConfig = CollectionConfig()
    source: SourceConfig = SourceConfig()
    privacy: PrivacyConfig = PrivacyConfig()
    llm: LLMConfig = LLMConfig()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        raw = load_yaml(path)
        return cls.from_raw(raw)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "AppConfig":
        normalized = normalize_raw_config(raw)
        try:
            return cls(**normalized)
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load YAML and expand environment variables."""
    p = Path(path)
    try:
        text = _expand_env(p.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config {p}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {p}")
    logger.debug("Loaded YAML: path=%s keys=%s", p, list(data.keys()))
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries (override wins)."""
    result = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def normalize_raw_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Accept shorthand config shapes and map them to AppConfig fields."""
    connection_cfg = dict(raw.get("connection", {}) or {})
    if "vm_service_uri" in raw:
        connection_cfg.setdefault("vm_service_uri", raw["vm_service_uri"])

    privacy_cfg = raw.get("privacy", {}) or {}
    if isinstance(privacy_cfg, str):
        privacy_cfg = {"level": privacy_cfg}
    privacy_cfg = dict(privacy_cfg)
    if "privacy_level" in raw:
        privacy_cfg.setdefault("level", raw["privacy_level"])
    level = str(privacy_cfg.get("level", "maximum")).lower()
    if level not in {"maximum", "partial", "minimal"}:
        raise ConfigError(f"Unknown privacy level: {level}")
    privacy_cfg["level"] = level

    llm_cfg = dict(raw.get("llm", {}) or {})
    api_key_env = llm_cfg.pop("api_key_env", None)
    if not llm_cfg.get("api_key") and api_key_env:
        llm_cfg["api_key"] = os.getenv(api_key_env)
    if not llm_cfg.get("api_key"):
        llm_cfg["api_key"] = os.getenv("VMLENS_LLM_API_KEY")
    logger.debug(
        "Normalizing config: connection_keys=%s llm_keys=%s",
        list(connection_cfg.keys()),
        list(llm_cfg.keys()),
    )

    return {
        "connection": connection_cfg,
        "collection": raw.get("collection", {}) or {},
        "source": raw.get("source", {}) or {},
        "privacy": privacy_cfg,
        "llm": llm_cfg,
    }
