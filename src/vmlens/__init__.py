"""Runtime performance telemetry for VM-service instrumented processes."""

from .collectors import PerformanceCollector
from .models import PerformanceSnapshot
from .privacy import DataRedactor, PrivacyLevel, summarize

__all__ = ["PerformanceCollector", "PerformanceSnapshot", "DataRedactor", "PrivacyLevel", "summarize"]
