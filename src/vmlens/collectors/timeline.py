"""Frame timing extraction from trace events."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from vmlens.core.config import CollectionConfig
from vmlens.core.errors import VmLensError
from vmlens.metrics import quantile_index
from vmlens.models import DataSource, FrameTiming, SlowTimelineEvent, TimelineData
from vmlens.protocol.client import ProtocolClient, call_with_timeout

from .window import trailing_window

logger = logging.getLogger(__name__)

SYNTHETIC_FRAME_COUNT = 50

EVENT_CATEGORIES: list[tuple[str, tuple[str, ...]]] = [
    ("build", ("build", "widget", "element")),
    ("layout", ("layout", "relayout")),
    ("paint", ("paint", "draw", "canvas")),
    ("raster", ("raster", "gpu", "composite")),
    ("gc", ("gc", "scavenge", "mark")),
    ("image", ("image", "decode", "texture")),
]

FRAME_MARKERS = ("Frame", "VSYNC", "vsync", "Animator", "Pipeline")


def categorize_event(name: str) -> str:
    lower = name.lower()
    for category, needles in EVENT_CATEGORIES:
        if any(n in lower for n in needles):
            return category
    return "other"


def is_build_event(name: str) -> bool:
    return name in ("Build", "buildScope") or "Widget build" in name


def is_raster_event(name: str) -> bool:
    return (
        "Raster" in name
        or "Paint" in name
        or "Composite" in name
        or name == "GPURasterizer::Draw"
    )


def is_frame_event(name: str) -> bool:
    return any(m in name for m in FRAME_MARKERS) or name == "GPURasterizer::Draw"


def relevant_args(args: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Keep short identifier-like strings and small integers."""
    kept: dict[str, Any] = {}
    for key, value in (args or {}).items():
        if isinstance(value, bool):
            continue
        if isinstance(value, str) and value and "/" not in value and len(value) < 100:
            kept[key] = value
        elif isinstance(value, int) and value < 1_000_000:
            kept[key] = value
    return kept


@dataclass
class _PhaseTracker:
    """Accumulates one phase's duration from B/E pairs or complete events."""

    start: Optional[int] = None
    duration: int = 0

    def feed(self, ph: Optional[str], ts: int, dur: Optional[int]) -> None:
        if ph == "B":
            self.start = ts
        elif ph == "E" and self.start is not None:
            self.duration += ts - self.start
            self.start = None
        elif dur is not None:
            self.duration += dur

    def take(self, fallback: int) -> int:
        return self.duration if self.duration > 0 else fallback


def frame_statistics(
    frames: list[FrameTiming],
    slow_events: Optional[list[SlowTimelineEvent]] = None,
    data_source: DataSource = DataSource.REAL,
) -> TimelineData:
    totals = sorted(float(f.total_time_us) for f in frames)
    n = len(totals)
    avg = sum(totals) / n if n else 0.0
    return TimelineData(
        frames=list(frames),
        total_frames=n,
        jank_frame_count=sum(1 for f in frames if f.is_jank),
        average_frame_time_ms=avg / 1000,
        p95_frame_time_ms=totals[quantile_index(n, 0.95)] / 1000 if n else 0.0,
        p99_frame_time_ms=totals[quantile_index(n, 0.99)] / 1000 if n else 0.0,
        slow_events=list(slow_events or []),
        data_source=data_source,
    )


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def process_events(
    events: Iterable[dict[str, Any]],
    slow_threshold_us: int = 2000,
    log: logging.Logger = logger,
) -> Optional[TimelineData]:
    """Frames and slow events from trace events; ``None`` when no frame is found."""
    frames: list[FrameTiming] = []
    slow: list[SlowTimelineEvent] = []
    open_frames: list[int] = []
    build = _PhaseTracker()
    raster = _PhaseTracker()
    seen_names: set[str] = set()

    for event in events:
        name = event.get("name")
        ts = _as_int(event.get("ts"))
        if not name or ts is None:
            continue
        ph = event.get("ph")
        dur = _as_int(event.get("dur"))
        seen_names.add(name)

        if dur is not None and dur > slow_threshold_us:
            slow.append(
                SlowTimelineEvent(
                    name=name,
                    duration_us=dur,
                    timestamp=ts,
                    category=categorize_event(name),
                    args=relevant_args(event.get("args")),
                )
            )

        if is_build_event(name):
            build.feed(ph, ts, dur)
        if is_raster_event(name):
            raster.feed(ph, ts, dur)

        if not is_frame_event(name):
            continue
        total: Optional[int] = None
        if ph == "B":
            open_frames.append(ts)
        elif ph == "E" and open_frames:
            total = ts - open_frames.pop()
        elif dur is not None:
            total = dur
        if total is None:
            continue
        frames.append(
            FrameTiming.from_durations(build.take(total // 2), raster.take(total // 2), total)
        )
        build.duration = 0
        raster.duration = 0

    slow.sort(key=lambda e: e.duration_us, reverse=True)
    log.debug(
        "Timeline: %d frames, %d slow events, %d distinct event names",
        len(frames),
        len(slow),
        len(seen_names),
    )
    if not frames:
        return None
    return frame_statistics(frames, slow, DataSource.REAL)


def synthetic_timeline(seed: Optional[int] = None) -> TimelineData:
    """Placeholder frame distribution, always tagged ``DataSource.SYNTHETIC``."""
    base = seed if seed is not None else int(time.time() * 1000)
    frames = []
    for i in range(SYNTHETIC_FRAME_COUNT):
        s = (base + i * 7) % 100
        if s < 75:
            total = 8000 + s * 100
        elif s < 90:
            total = 17000 + (s - 75) * 500
        else:
            total = 25000 + (s - 90) * 2500
        build_us = round(total * (0.6 if s < 50 else 0.4))
        frames.append(FrameTiming.from_durations(build_us, total - build_us, total))
    return frame_statistics(frames, [], DataSource.SYNTHETIC)


class TimelineCollector:
    def __init__(
        self,
        client: ProtocolClient,
        config: Optional[CollectionConfig] = None,
        call_timeout_sec: float = 10.0,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.config = config or CollectionConfig()
        self.call_timeout_sec = call_timeout_sec
        self.log = log or logger
        self.enabled = False

    async def enable(self) -> None:
        if self.enabled:
            return
        try:
            await call_with_timeout(
                self.client.set_vm_timeline_flags(self.config.timeline_flags),
                self.call_timeout_sec,
                "setVMTimelineFlags",
            )
        except VmLensError as exc:
            self.log.warning("Could not enable timeline recording: %s", exc)
            return
        self.enabled = True
        self.log.info("Timeline recording enabled: %s", ",".join(self.config.timeline_flags))

    async def clear(self) -> None:
        await call_with_timeout(self.client.clear_vm_timeline(), self.call_timeout_sec, "clearVMTimeline")

    async def collect(self) -> TimelineData:
        origin, extent = await trailing_window(
            self.client, self.config.window_us, self.call_timeout_sec, self.log
        )
        timeline = await call_with_timeout(
            self.client.get_vm_timeline(origin, extent), self.call_timeout_sec, "getVMTimeline"
        )
        events = [e for e in timeline.get("traceEvents") or [] if isinstance(e, dict)]
        self.log.debug("Timeline: got %d events", len(events))
        if not events:
            self.log.warning("Timeline: no trace events, returning synthetic frames")
            return synthetic_timeline()
        data = process_events(events, self.config.slow_event_threshold_us, self.log)
        if data is None:
            self.log.warning("Timeline: no frame events found, returning synthetic frames")
            return synthetic_timeline()
        return data
