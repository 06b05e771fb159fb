"""Privacy redaction of performance snapshots."""

from __future__ import annotations

import enum
import hashlib
import logging
import secrets
from dataclasses import replace
from typing import Optional

from vmlens.models import (
    AllocationSample,
    ClassUsage,
    CodeLocation,
    CpuData,
    FunctionSample,
    MemoryData,
    PerformanceSnapshot,
    RetentionInfo,
    SlowTimelineEvent,
    TimelineData,
)

from .patterns import relative_path, scrub_mapping, scrub_optional, scrub_sensitive

logger = logging.getLogger(__name__)


class PrivacyLevel(str, enum.Enum):
    MAXIMUM = "maximum"
    PARTIAL = "partial"
    MINIMAL = "minimal"


class DataRedactor:
    """Copy-on-write redaction.

    Pseudonyms are salted SHA-256 prefixes, stable for one redactor instance
    (one run) and unlinkable across runs. User classification is cached on each
    sample before its library URI is dropped.
    """

    def __init__(self, level: PrivacyLevel | str = PrivacyLevel.MAXIMUM, salt: Optional[bytes] = None):
        self.level = PrivacyLevel(level)
        self.salt = salt if salt is not None else secrets.token_bytes(16)

    def pseudonym(self, prefix: str, value: str) -> str:
        digest = hashlib.sha256(self.salt + value.encode("utf-8")).hexdigest()[:8]
        return f"{prefix}_{digest}"

    def redact(self, snapshot: PerformanceSnapshot) -> PerformanceSnapshot:
        return replace(
            snapshot,
            isolate_id=self.pseudonym("isolate", snapshot.isolate_id),
            cpu=self.redact_cpu(snapshot.cpu) if snapshot.cpu else None,
            memory=self.redact_memory(snapshot.memory) if snapshot.memory else None,
            timeline=self.redact_timeline(snapshot.timeline) if snapshot.timeline else None,
        )

    # -- locations ----------------------------------------------------------

    def _location(self, loc: Optional[CodeLocation]) -> Optional[CodeLocation]:
        if loc is None:
            return None
        if self.level is PrivacyLevel.MINIMAL:
            return replace(
                loc,
                file_path=scrub_sensitive(loc.file_path),
                code_snippet=scrub_optional(loc.code_snippet),
                usage_context=scrub_optional(loc.usage_context),
            )
        return replace(
            loc,
            file_path=relative_path(loc.file_path),
            code_snippet=scrub_optional(loc.code_snippet),
            usage_context=scrub_optional(loc.usage_context),
        )

    def _usage(self, usage: ClassUsage) -> ClassUsage:
        path = usage.file_path
        path = scrub_sensitive(path) if self.level is PrivacyLevel.MINIMAL else relative_path(path)
        return ClassUsage(
            file_path=path,
            line_number=usage.line_number,
            line_content=scrub_sensitive(usage.line_content),
            context=scrub_sensitive(usage.context),
        )

    def _retention(self, info: Optional[RetentionInfo]) -> Optional[RetentionInfo]:
        if info is None:
            return None
        steps = [
            replace(
                step,
                description=scrub_sensitive(step.description),
                field_name=scrub_optional(step.field_name),
                source_location=self._location(step.source_location),
            )
            for step in info.path
        ]
        return replace(info, path=steps)

    # -- cpu ----------------------------------------------------------------

    def redact_function(self, sample: FunctionSample) -> FunctionSample:
        is_user = sample.is_user_code
        if self.level is PrivacyLevel.MINIMAL:
            return replace(
                sample,
                library_uri=scrub_optional(sample.library_uri),
                source_location=self._location(sample.source_location),
                user_code_cached=is_user,
            )
        keep_names = is_user or self.level is PrivacyLevel.PARTIAL
        return replace(
            sample,
            function_name=(
                sample.function_name if keep_names else self.pseudonym("fn", sample.function_name)
            ),
            class_name=(
                sample.class_name
                if keep_names or sample.class_name is None
                else self.pseudonym("Class", sample.class_name)
            ),
            library_uri=None,
            source_location=self._location(sample.source_location) if keep_names else None,
            function_id=None,
            user_code_cached=is_user,
        )

    def redact_cpu(self, cpu: CpuData) -> CpuData:
        return replace(cpu, top_functions=[self.redact_function(f) for f in cpu.top_functions])

    # -- memory -------------------------------------------------------------

    def redact_allocation(self, sample: AllocationSample) -> AllocationSample:
        is_user = sample.is_user_class
        usages = [self._usage(u) for u in sample.class_usages] if sample.class_usages else None
        if self.level is PrivacyLevel.MINIMAL:
            return replace(
                sample,
                library_uri=scrub_optional(sample.library_uri),
                source_location=self._location(sample.source_location),
                retention_info=self._retention(sample.retention_info),
                class_usages=usages,
                user_class_cached=is_user,
            )
        keep_name = is_user or self.level is PrivacyLevel.PARTIAL
        if not keep_name:
            return replace(
                sample,
                class_name=self.pseudonym("Type", sample.class_name),
                library_uri=None,
                source_location=None,
                retention_info=None,
                class_usages=None,
                user_class_cached=is_user,
            )
        return replace(
            sample,
            library_uri=None,
            source_location=self._location(sample.source_location),
            retention_info=self._retention(sample.retention_info),
            class_usages=usages,
            user_class_cached=is_user,
        )

    def redact_memory(self, memory: MemoryData) -> MemoryData:
        return replace(
            memory, top_allocations=[self.redact_allocation(a) for a in memory.top_allocations]
        )

    # -- timeline -----------------------------------------------------------

    def _slow_event(self, event: SlowTimelineEvent) -> SlowTimelineEvent:
        return replace(event, name=scrub_sensitive(event.name), args=scrub_mapping(event.args))

    def redact_timeline(self, timeline: TimelineData) -> TimelineData:
        # frame timings are plain aggregates; only event names and args carry text
        return replace(timeline, slow_events=[self._slow_event(e) for e in timeline.slow_events])
