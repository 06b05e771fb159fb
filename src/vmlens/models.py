"""Telemetry data model.

Records are immutable; enhancement and redaction derive new records with
``dataclasses.replace``.  ``to_dict`` produces the camelCase JSON shape handed
to external consumers.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .classify import is_user_class, is_user_library
from .metrics import Metric

JANK_THRESHOLD_US = 16_667


class DataSource(str, enum.Enum):
    REAL = "real"
    SYNTHETIC = "synthetic"


@dataclass(frozen=True)
class CodeLocation:
    file_path: str
    line_number: Optional[int] = None
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    code_snippet: Optional[str] = None
    usage_context: Optional[str] = None

    @property
    def display_path(self) -> str:
        path = self.file_path
        if path.startswith("package:"):
            parts = path.split("/", 1)
            if len(parts) == 2:
                path = parts[1]
        if self.line_number and self.line_number > 0:
            return f"{path}:{self.line_number}"
        return path

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"filePath": self.file_path}
        if self.line_number is not None:
            data["lineNumber"] = self.line_number
        if self.function_name is not None:
            data["functionName"] = self.function_name
        if self.class_name is not None:
            data["className"] = self.class_name
        if self.code_snippet is not None:
            data["codeSnippet"] = self.code_snippet
        if self.usage_context is not None:
            data["usageContext"] = self.usage_context
        return data


@dataclass(frozen=True)
class ClassUsage:
    file_path: str
    line_number: int
    line_content: str
    context: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "filePath": self.file_path,
            "lineNumber": self.line_number,
            "lineContent": self.line_content,
            "context": self.context,
        }


@dataclass(frozen=True)
class RetentionStep:
    description: str
    field_name: Optional[str] = None
    class_name: Optional[str] = None
    source_location: Optional[CodeLocation] = None
    is_gc_root: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"description": self.description}
        if self.field_name is not None:
            data["fieldName"] = self.field_name
        if self.class_name is not None:
            data["className"] = self.class_name
        if self.source_location is not None:
            data["sourceLocation"] = self.source_location.to_dict()
        data["isGcRoot"] = self.is_gc_root
        return data


@dataclass(frozen=True)
class RetentionInfo:
    class_name: str
    path: list[RetentionStep]
    root_type: str

    @property
    def path_summary(self) -> list[str]:
        return [step.field_name or step.description for step in self.path]

    def to_dict(self) -> dict[str, Any]:
        return {
            "className": self.class_name,
            "rootType": self.root_type,
            "path": [step.to_dict() for step in self.path],
            "pathSummary": self.path_summary,
        }


@dataclass(frozen=True)
class FunctionSample:
    function_name: str
    class_name: Optional[str]
    library_uri: Optional[str]
    exclusive_ticks: int
    inclusive_ticks: int
    percentage: float
    source_location: Optional[CodeLocation] = None
    function_id: Optional[str] = None
    user_code_cached: Optional[bool] = None

    @property
    def is_user_code(self) -> bool:
        if self.user_code_cached is not None:
            return self.user_code_cached
        return is_user_library(self.library_uri)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"functionName": self.function_name}
        if self.class_name is not None:
            data["className"] = self.class_name
        if self.library_uri is not None:
            data["libraryUri"] = self.library_uri
        data.update(
            {
                "exclusiveTicks": self.exclusive_ticks,
                "inclusiveTicks": self.inclusive_ticks,
                "percentage": round(self.percentage, 2),
                "isUserCode": self.is_user_code,
            }
        )
        if self.source_location is not None:
            data["sourceLocation"] = self.source_location.to_dict()
        return data


@dataclass(frozen=True)
class CpuData:
    sample_count: int
    sample_period_us: int
    max_stack_depth: int
    total_cpu_time_ms: float
    top_functions: list[FunctionSample] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sampleCount": self.sample_count,
            "samplePeriodMicros": self.sample_period_us,
            "maxStackDepth": self.max_stack_depth,
            "totalCpuTimeMs": self.total_cpu_time_ms,
            "topFunctions": [f.to_dict() for f in self.top_functions],
        }

    def to_metrics(self) -> list[Metric]:
        metrics = [
            Metric(metric_name="cpu_sample_count", value=float(self.sample_count), unit="samples"),
            Metric(metric_name="cpu_time_ms", value=self.total_cpu_time_ms, unit="ms"),
            Metric(metric_name="cpu_max_stack_depth", value=float(self.max_stack_depth), unit="frames"),
        ]
        if self.top_functions:
            top = self.top_functions[0]
            metrics.append(
                Metric(
                    metric_name="cpu_top_function_pct",
                    value=top.percentage,
                    unit="%",
                    tags={"function": top.function_name},
                )
            )
        return metrics


@dataclass(frozen=True)
class CpuProfilingStatus:
    is_available: bool
    message: str
    hint: str
    sample_count: int = 0
    function_count: int = 0
    error: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.sample_count > 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "isAvailable": self.is_available,
            "message": self.message,
            "hint": self.hint,
            "sampleCount": self.sample_count,
            "functionCount": self.function_count,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class AllocationSample:
    class_name: str
    library_uri: Optional[str]
    instance_count: int
    total_bytes: int
    accumulated_bytes: int
    class_id: Optional[str] = None
    source_location: Optional[CodeLocation] = None
    retention_info: Optional[RetentionInfo] = None
    class_usages: Optional[list[ClassUsage]] = None
    user_class_cached: Optional[bool] = None

    @property
    def is_user_class(self) -> bool:
        if self.user_class_cached is not None:
            return self.user_class_cached
        return is_user_class(self.class_name, self.library_uri)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"className": self.class_name}
        if self.library_uri is not None:
            data["libraryUri"] = self.library_uri
        data.update(
            {
                "instanceCount": self.instance_count,
                "totalBytes": self.total_bytes,
                "accumulatedBytes": self.accumulated_bytes,
                "isUserClass": self.is_user_class,
            }
        )
        if self.source_location is not None:
            data["sourceLocation"] = self.source_location.to_dict()
        if self.retention_info is not None:
            data["retentionInfo"] = self.retention_info.to_dict()
        if self.class_usages:
            data["classUsages"] = [u.to_dict() for u in self.class_usages]
        return data


@dataclass(frozen=True)
class MemoryData:
    used_heap_bytes: int
    heap_capacity_bytes: int
    external_bytes: int
    gc_count: int
    top_allocations: list[AllocationSample] = field(default_factory=list)

    @property
    def heap_usage_percent(self) -> float:
        if self.heap_capacity_bytes <= 0:
            return 0.0
        return self.used_heap_bytes / self.heap_capacity_bytes * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "usedHeapSizeBytes": self.used_heap_bytes,
            "heapCapacityBytes": self.heap_capacity_bytes,
            "heapUsagePercent": round(self.heap_usage_percent, 1),
            "externalUsageBytes": self.external_bytes,
            "gcCount": self.gc_count,
            "topAllocations": [a.to_dict() for a in self.top_allocations],
        }

    def to_metrics(self) -> list[Metric]:
        return [
            Metric(metric_name="heap_used_bytes", value=float(self.used_heap_bytes), unit="bytes"),
            Metric(metric_name="heap_capacity_bytes", value=float(self.heap_capacity_bytes), unit="bytes"),
            Metric(metric_name="heap_usage_pct", value=self.heap_usage_percent, unit="%"),
            Metric(metric_name="external_bytes", value=float(self.external_bytes), unit="bytes"),
        ]


@dataclass(frozen=True)
class FrameTiming:
    build_time_us: int
    raster_time_us: int
    total_time_us: int
    is_jank: bool

    @classmethod
    def from_durations(cls, build_us: int, raster_us: int, total_us: int) -> "FrameTiming":
        return cls(
            build_time_us=build_us,
            raster_time_us=raster_us,
            total_time_us=total_us,
            is_jank=total_us > JANK_THRESHOLD_US,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "buildTimeMs": round(self.build_time_us / 1000, 2),
            "rasterTimeMs": round(self.raster_time_us / 1000, 2),
            "totalTimeMs": round(self.total_time_us / 1000, 2),
            "isJank": self.is_jank,
        }


@dataclass(frozen=True)
class SlowTimelineEvent:
    name: str
    duration_us: int
    timestamp: int
    category: str
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return self.duration_us / 1000

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "durationMs": round(self.duration_ms, 2),
            "category": self.category,
        }
        if self.args:
            data["details"] = dict(self.args)
        return data


@dataclass(frozen=True)
class TimelineData:
    frames: list[FrameTiming]
    total_frames: int
    jank_frame_count: int
    average_frame_time_ms: float
    p95_frame_time_ms: float
    p99_frame_time_ms: float
    slow_events: list[SlowTimelineEvent] = field(default_factory=list)
    data_source: DataSource = DataSource.REAL

    @property
    def jank_percent(self) -> float:
        if self.total_frames <= 0:
            return 0.0
        return self.jank_frame_count / self.total_frames * 100

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "dataSource": self.data_source.value,
            "totalFrames": self.total_frames,
            "jankFrameCount": self.jank_frame_count,
            "jankPercent": round(self.jank_percent, 1),
            "averageFrameTimeMs": round(self.average_frame_time_ms, 2),
            "p95FrameTimeMs": round(self.p95_frame_time_ms, 2),
            "p99FrameTimeMs": round(self.p99_frame_time_ms, 2),
            "recentFrames": [f.to_dict() for f in self.frames[:20]],
        }
        if self.slow_events:
            data["slowOperations"] = [e.to_dict() for e in self.slow_events[:15]]
        return data

    def to_metrics(self) -> list[Metric]:
        tags = {"data_source": self.data_source.value}
        return [
            Metric(metric_name="frame_count", value=float(self.total_frames), unit="frames", tags=tags),
            Metric(metric_name="jank_frames", value=float(self.jank_frame_count), unit="frames", tags=tags),
            Metric(metric_name="frame_avg_ms", value=self.average_frame_time_ms, unit="ms", tags=tags),
            Metric(metric_name="frame_p95_ms", value=self.p95_frame_time_ms, unit="ms", tags=tags),
            Metric(metric_name="frame_p99_ms", value=self.p99_frame_time_ms, unit="ms", tags=tags),
        ]


@dataclass(frozen=True)
class PerformanceSnapshot:
    timestamp: datetime
    isolate_id: str
    cpu: Optional[CpuData] = None
    memory: Optional[MemoryData] = None
    timeline: Optional[TimelineData] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "isolateId": self.isolate_id,
        }
        if self.cpu is not None:
            data["cpu"] = self.cpu.to_dict()
        if self.memory is not None:
            data["memory"] = self.memory.to_dict()
        if self.timeline is not None:
            data["timeline"] = self.timeline.to_dict()
        return data

    def to_metrics(self) -> list[Metric]:
        metrics: list[Metric] = []
        for part in (self.cpu, self.memory, self.timeline):
            if part is not None:
                metrics.extend(part.to_metrics())
        return metrics
