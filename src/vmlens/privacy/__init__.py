"""Redaction and summarization for external consumers."""

from .patterns import scrub_sensitive
from .redactor import DataRedactor, PrivacyLevel
from .summary import summarize

__all__ = ["DataRedactor", "PrivacyLevel", "scrub_sensitive", "summarize"]
