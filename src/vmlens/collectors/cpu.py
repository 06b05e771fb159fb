"""CPU stack-sample aggregation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Optional

from vmlens.classify import is_user_library
from vmlens.core.config import CollectionConfig
from vmlens.core.errors import VmLensError
from vmlens.models import CpuData, CpuProfilingStatus, FunctionSample
from vmlens.protocol.client import ProtocolClient, call_with_timeout
from vmlens.protocol.shapes import class_name_of_owner, is_function, library_uri_of_owner
from vmlens.source.resolver import SourceResolver

from .window import trailing_window

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_PERIOD_US = 1000
STATUS_WINDOW_US = 1_000_000


@dataclass(frozen=True)
class FunctionInfo:
    name: str
    class_name: Optional[str] = None
    library_uri: Optional[str] = None
    function_id: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.class_name or ''}.{self.name}"


UNKNOWN_FUNCTION = FunctionInfo(name="unknown")


@dataclass
class FunctionStats:
    info: FunctionInfo
    exclusive_ticks: int = 0
    inclusive_ticks: int = 0


@dataclass(frozen=True)
class SampleAggregate:
    stats: dict[str, FunctionStats]
    total_samples: int
    empty_samples: int


def function_info(batch: dict[str, Any], index: int) -> FunctionInfo:
    """Resolve a stack frame index through the batch's function table."""
    functions = batch.get("functions") or []
    if not isinstance(index, int) or index < 0 or index >= len(functions):
        return UNKNOWN_FUNCTION
    func_ref = (functions[index] or {}).get("function")
    if not is_function(func_ref):
        # native and stub frames carry a NativeFunction or Code ref
        name = (func_ref or {}).get("name") if isinstance(func_ref, dict) else None
        return FunctionInfo(name=name or "unknown")
    owner = func_ref.get("owner")
    return FunctionInfo(
        name=func_ref.get("name") or "unknown",
        class_name=class_name_of_owner(owner),
        library_uri=library_uri_of_owner(owner),
        function_id=func_ref.get("id"),
    )


def aggregate_samples(batch: dict[str, Any]) -> SampleAggregate:
    """Exclusive ticks go to the innermost frame; inclusive once per distinct function."""
    stats: dict[str, FunctionStats] = {}
    total = 0
    empty = 0
    cache: dict[int, FunctionInfo] = {}

    def _info(index: int) -> FunctionInfo:
        if index not in cache:
            cache[index] = function_info(batch, index)
        return cache[index]

    for sample in batch.get("samples") or []:
        stack = sample.get("stack") or []
        if not stack:
            empty += 1
            continue
        total += 1
        top = _info(stack[0])
        stats.setdefault(top.key, FunctionStats(top)).exclusive_ticks += 1
        seen: set[str] = set()
        for frame in stack:
            info = _info(frame)
            if info.key in seen:
                continue
            seen.add(info.key)
            stats.setdefault(info.key, FunctionStats(info)).inclusive_ticks += 1
    return SampleAggregate(stats=stats, total_samples=total, empty_samples=empty)


def rank_functions(stats: dict[str, FunctionStats], total: int, top_n: int = 20) -> list[FunctionSample]:
    ordered = sorted(stats.values(), key=lambda s: s.exclusive_ticks, reverse=True)
    ranked = []
    for s in ordered[:top_n]:
        ranked.append(
            FunctionSample(
                function_name=s.info.name,
                class_name=s.info.class_name,
                library_uri=s.info.library_uri,
                exclusive_ticks=s.exclusive_ticks,
                inclusive_ticks=s.inclusive_ticks,
                percentage=(s.exclusive_ticks / total * 100) if total > 0 else 0.0,
                function_id=s.info.function_id,
                user_code_cached=is_user_library(s.info.library_uri),
            )
        )
    return ranked


def build_cpu_data(batch: dict[str, Any], top_n: int = 20) -> CpuData:
    agg = aggregate_samples(batch)
    period = batch.get("samplePeriod") or DEFAULT_SAMPLE_PERIOD_US
    return CpuData(
        sample_count=agg.total_samples,
        sample_period_us=period,
        max_stack_depth=batch.get("maxStackDepth") or 0,
        total_cpu_time_ms=agg.total_samples * period / 1000,
        top_functions=rank_functions(agg.stats, agg.total_samples, top_n),
    )


class CpuCollector:
    def __init__(
        self,
        client: ProtocolClient,
        config: Optional[CollectionConfig] = None,
        resolver: Optional[SourceResolver] = None,
        call_timeout_sec: float = 10.0,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.config = config or CollectionConfig()
        self.resolver = resolver
        self.call_timeout_sec = call_timeout_sec
        self.log = log or logger
        self.enabled = False

    async def enable(self, isolate_id: str) -> None:
        """Set the sampling period and drop stale samples, once per session."""
        if self.enabled:
            return
        try:
            await call_with_timeout(
                self.client.set_profile_period(self.config.sample_period_us),
                self.call_timeout_sec,
                "setVMFlag(profile_period)",
            )
            self.log.debug("Profile period set to %dus", self.config.sample_period_us)
        except VmLensError as exc:
            self.log.warning("Could not set profile period: %s", exc)
        try:
            await call_with_timeout(
                self.client.clear_cpu_samples(isolate_id), self.call_timeout_sec, "clearCpuSamples"
            )
        except VmLensError as exc:
            self.log.warning("Could not clear old CPU samples: %s", exc)
        self.enabled = True
        self.log.info("CPU profiling enabled for %s", isolate_id)

    async def collect(self, isolate_id: str) -> Optional[CpuData]:
        batch = await self._samples(isolate_id, self.config.window_us)
        samples = batch.get("samples") or []
        self.log.debug(
            "Got %d samples, %d functions", len(samples), len(batch.get("functions") or [])
        )
        cpu = build_cpu_data(batch, self.config.cpu_top_n)
        if cpu.sample_count == 0:
            # a batch of empty stacks carries no attributable time
            self._log_no_samples()
            return None
        user_count = sum(1 for f in cpu.top_functions if f.is_user_code)
        self.log.debug("Top functions: %d, user functions: %d", len(cpu.top_functions), user_count)
        return cpu

    async def _samples(self, isolate_id: str, window_us: int) -> dict[str, Any]:
        origin, extent = await trailing_window(self.client, window_us, self.call_timeout_sec, self.log)
        return await call_with_timeout(
            self.client.get_cpu_samples(isolate_id, origin, extent), self.call_timeout_sec, "getCpuSamples"
        )

    def _log_no_samples(self) -> None:
        self.log.warning(
            "No CPU samples collected. Probable causes: target not running in a "
            "profiling-capable mode, target idle, profiler unsupported on this "
            "platform, or samples cleared too recently."
        )

    async def check_status(self, isolate_id: str) -> CpuProfilingStatus:
        try:
            vm = await call_with_timeout(self.client.get_vm(), self.call_timeout_sec, "getVM")
            self.log.debug("CPU status: VM version %s", vm.get("version"))
            batch = await self._samples(isolate_id, STATUS_WINDOW_US)
        except VmLensError as exc:
            self.log.warning("CPU status check failed: %s", exc)
            return CpuProfilingStatus(
                is_available=False,
                message="CPU profiling unavailable",
                hint="Run the target in profile mode",
                error=str(exc),
            )
        sample_count = len(batch.get("samples") or [])
        function_count = len(batch.get("functions") or [])
        if sample_count:
            return CpuProfilingStatus(
                is_available=True,
                message="CPU profiling active",
                hint=f"{sample_count} samples collected in last second",
                sample_count=sample_count,
                function_count=function_count,
            )
        return CpuProfilingStatus(
            is_available=True,
            message="CPU profiler ready but no samples yet",
            hint="Interact with the target to generate CPU activity, then collect again.",
            function_count=function_count,
        )

    async def enhance(self, isolate_id: str, cpu: CpuData) -> CpuData:
        """Attach source locations to user functions, keeping ranking order."""
        if self.resolver is None:
            return cpu
        targets = [f for f in cpu.top_functions if f.is_user_code and f.function_id]

        async def _resolve(sample: FunctionSample) -> FunctionSample:
            try:
                location = await self.resolver.resolve_function(isolate_id, sample.function_id)
            except VmLensError as exc:
                self.log.warning("Source lookup failed for %s: %s", sample.function_name, exc)
                return sample
            if location is None:
                return sample
            return replace(sample, source_location=location)

        resolved = await asyncio.gather(*(_resolve(f) for f in targets))
        by_id = {f.function_id: f for f in resolved}
        functions = [by_id.get(f.function_id, f) if f.function_id else f for f in cpu.top_functions]
        return replace(cpu, top_functions=functions)
