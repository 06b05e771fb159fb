"""Runtime telemetry collectors."""

from .cpu import CpuCollector, aggregate_samples, build_cpu_data, rank_functions
from .facade import PerformanceCollector
from .memory import MemoryCollector, rank_allocations
from .retention import parse_retaining_path
from .timeline import TimelineCollector, frame_statistics, process_events, synthetic_timeline

__all__ = [
    "CpuCollector",
    "MemoryCollector",
    "TimelineCollector",
    "PerformanceCollector",
    "aggregate_samples",
    "build_cpu_data",
    "rank_functions",
    "rank_allocations",
    "parse_retaining_path",
    "process_events",
    "frame_statistics",
    "synthetic_timeline",
]
