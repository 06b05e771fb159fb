"""Regex-based PII scrubbing."""

from __future__ import annotations

import re
from typing import Any, Optional

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
IP_PATTERN = re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b")
URL_PATTERN = re.compile(r"https?://\S+")
TOKEN_PATTERN = re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\S+", re.IGNORECASE)
ABSOLUTE_PATH_PATTERN = re.compile(
    r"(/Users/|/home/|/root/|/var/|/tmp/|/opt/|/private/|/srv/|/mnt/|/Volumes/|[A-Za-z]:\\)[^\s:'\"]+"
)
# Any other rooted path of two or more segments (/etc/x, /data/user/0/...).
# Not after a word, scheme, dot or slash, so package URIs and relative paths survive.
ROOTED_PATH_PATTERN = re.compile(r"(?<![\w:/.])/[^\s'\"/(),;]+(?:/[^\s'\"/(),;]+)+/?")


def scrub_sensitive(text: str) -> str:
    result = EMAIL_PATTERN.sub("[EMAIL]", text)
    result = IP_PATTERN.sub("[IP]", result)
    result = TOKEN_PATTERN.sub("[REDACTED]", result)
    result = URL_PATTERN.sub("[URL]", result)
    result = ABSOLUTE_PATH_PATTERN.sub("[PATH]", result)
    return ROOTED_PATH_PATTERN.sub("[PATH]", result)


def scrub_optional(text: Optional[str]) -> Optional[str]:
    return scrub_sensitive(text) if text is not None else None


def scrub_mapping(values: dict[str, Any]) -> dict[str, Any]:
    return {k: scrub_sensitive(v) if isinstance(v, str) else v for k, v in values.items()}


def relative_path(path: str) -> str:
    """Workspace-relative display form of a source path; never absolute."""
    if path.startswith("package:"):
        parts = path.split("/", 1)
        return parts[1] if len(parts) == 2 else path[len("package:"):]
    if path.startswith("file://"):
        path = path[len("file://"):]
    normalized = path.replace("\\", "/")
    if normalized.startswith("/") or re.match(r"^[A-Za-z]:/", normalized):
        marker = normalized.rfind("/lib/")
        if marker >= 0:
            return normalized[marker + 1:]
        return normalized.rsplit("/", 1)[-1]
    return normalized
