"""Compact snapshot projections for external consumers."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Optional

from vmlens.models import CpuData, FrameTiming, MemoryData, PerformanceSnapshot, TimelineData

from .redactor import DataRedactor, PrivacyLevel

MB = 1024 * 1024


def _kb(n: int) -> float:
    return round(n / 1024, 1)


def frame_cause(frame: FrameTiming) -> str:
    if frame.build_time_us > frame.raster_time_us * 2:
        return "Build phase (widget tree)"
    if frame.raster_time_us > frame.build_time_us * 2:
        return "Raster phase (rendering)"
    return "Mixed (both phases)"


def cpu_summary(cpu: Optional[CpuData]) -> Optional[dict[str, Any]]:
    if cpu is None:
        return None
    return {
        "sampleCount": cpu.sample_count,
        "totalCpuTimeMs": cpu.total_cpu_time_ms,
        "topFunctionsCount": len(cpu.top_functions),
        "hotspots": [
            {
                "name": f.function_name,
                "percentage": round(f.percentage, 1),
                "ticks": f.exclusive_ticks,
            }
            for f in cpu.top_functions[:5]
        ],
    }


def enhanced_cpu_summary(cpu: Optional[CpuData]) -> Optional[dict[str, Any]]:
    if cpu is None:
        return None
    app = [f for f in cpu.top_functions if f.is_user_code][:10]
    framework = [f for f in cpu.top_functions if not f.is_user_code][:5]
    app_entries = []
    for f in app:
        entry: dict[str, Any] = {"functionName": f.function_name}
        if f.class_name is not None:
            entry["className"] = f.class_name
        entry.update(
            {"percentage": round(f.percentage, 1), "exclusiveTicks": f.exclusive_ticks, "isUserCode": True}
        )
        if f.source_location is not None:
            entry["sourceLocation"] = f.source_location.display_path
            if f.source_location.code_snippet is not None:
                entry["codeSnippet"] = f.source_location.code_snippet
        app_entries.append(entry)
    framework_entries = []
    for f in framework:
        entry = {"functionName": f.function_name}
        if f.class_name is not None:
            entry["className"] = f.class_name
        entry["percentage"] = round(f.percentage, 1)
        framework_entries.append(entry)
    return {
        "sampleCount": cpu.sample_count,
        "totalCpuTimeMs": cpu.total_cpu_time_ms,
        "appFunctions": app_entries,
        "frameworkFunctions": framework_entries,
    }


def _heap_fields(memory: MemoryData) -> dict[str, Any]:
    return {
        "heapUsedMB": round(memory.used_heap_bytes / MB, 1),
        "heapCapacityMB": round(memory.heap_capacity_bytes / MB, 1),
        "heapUsagePercent": round(memory.heap_usage_percent, 1),
        "gcCount": memory.gc_count,
    }


def memory_summary(memory: Optional[MemoryData]) -> Optional[dict[str, Any]]:
    if memory is None:
        return None
    data = _heap_fields(memory)
    data["topAllocations"] = [
        {"type": a.class_name, "instances": a.instance_count, "bytesKB": _kb(a.total_bytes)}
        for a in memory.top_allocations[:5]
    ]
    return data


def enhanced_memory_summary(memory: Optional[MemoryData]) -> Optional[dict[str, Any]]:
    if memory is None:
        return None
    app = [a for a in memory.top_allocations if a.is_user_class][:10]
    framework = [a for a in memory.top_allocations if not a.is_user_class][:5]
    app_entries = []
    for a in app:
        entry: dict[str, Any] = {
            "className": a.class_name,
            "instances": a.instance_count,
            "bytesKB": _kb(a.total_bytes),
            "isUserClass": True,
        }
        loc = a.source_location
        if loc is not None:
            entry["sourceLocation"] = loc.display_path
            if loc.code_snippet is not None:
                entry["codeSnippet"] = loc.code_snippet
            if loc.usage_context is not None:
                entry["usageContext"] = loc.usage_context
        if a.retention_info is not None:
            entry["retentionPath"] = a.retention_info.path_summary
            entry["rootType"] = a.retention_info.root_type
        if a.class_usages:
            entry["usages"] = [
                {"location": f"{u.file_path}:{u.line_number}", "code": u.line_content}
                for u in a.class_usages
            ]
        app_entries.append(entry)
    data = _heap_fields(memory)
    data["appClasses"] = app_entries
    data["frameworkClasses"] = [
        {"className": a.class_name, "instances": a.instance_count, "bytesKB": _kb(a.total_bytes)}
        for a in framework
    ]
    return data


def timeline_summary(timeline: Optional[TimelineData]) -> Optional[dict[str, Any]]:
    if timeline is None:
        return None
    jank = [f for f in timeline.frames if f.is_jank][:10]
    build_heavy = sum(1 for f in jank if f.build_time_us > f.raster_time_us)
    raster_heavy = len(jank) - build_heavy
    data: dict[str, Any] = {
        "dataSource": timeline.data_source.value,
        "totalFrames": timeline.total_frames,
        "jankFrameCount": timeline.jank_frame_count,
        "jankPercent": round(timeline.jank_percent, 1),
        "avgFrameTimeMs": round(timeline.average_frame_time_ms, 2),
        "p95FrameTimeMs": round(timeline.p95_frame_time_ms, 2),
        "p99FrameTimeMs": round(timeline.p99_frame_time_ms, 2),
        "jankPattern": "build-heavy" if build_heavy > raster_heavy else "raster-heavy",
        "jankFrames": [
            {
                "totalTimeMs": round(f.total_time_us / 1000, 1),
                "buildTimeMs": round(f.build_time_us / 1000, 1),
                "rasterTimeMs": round(f.raster_time_us / 1000, 1),
                "cause": frame_cause(f),
            }
            for f in jank
        ],
    }
    if timeline.slow_events:
        by_category: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for event in timeline.slow_events[:20]:
            by_category[event.category].append(event.to_dict())
        data["slowOperations"] = [e.to_dict() for e in timeline.slow_events[:15]]
        data["slowOperationsByCategory"] = dict(by_category)
    return data


def summarize(
    snapshot: PerformanceSnapshot,
    level: PrivacyLevel | str = PrivacyLevel.MAXIMUM,
    redactor: Optional[DataRedactor] = None,
    enhanced: bool = True,
) -> dict[str, Any]:
    """Redact ``snapshot`` then project it; the input is never modified."""
    redactor = redactor or DataRedactor(level)
    redacted = redactor.redact(snapshot)
    if enhanced:
        cpu, memory = enhanced_cpu_summary(redacted.cpu), enhanced_memory_summary(redacted.memory)
    else:
        cpu, memory = cpu_summary(redacted.cpu), memory_summary(redacted.memory)
    return {
        "timestamp": redacted.timestamp.isoformat(),
        "privacyLevel": redactor.level.value,
        "cpu": cpu,
        "memory": memory,
        "timeline": timeline_summary(redacted.timeline),
    }
