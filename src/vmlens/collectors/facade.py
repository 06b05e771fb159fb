"""Snapshot orchestration over the CPU, memory and timeline collectors."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar

from vmlens.core.config import AppConfig
from vmlens.core.errors import UnavailableError, VmLensError
from vmlens.files.access import FileAccess
from vmlens.models import (
    AllocationSample,
    CodeLocation,
    CpuData,
    CpuProfilingStatus,
    PerformanceSnapshot,
    RetentionInfo,
)
from vmlens.protocol.client import ProtocolClient, call_with_timeout
from vmlens.protocol.shapes import isolate_refs
from vmlens.source.resolver import SourceResolver

from .cpu import CpuCollector
from .memory import MemoryCollector
from .timeline import TimelineCollector

logger = logging.getLogger(__name__)

T = TypeVar("T")


def pick_main_isolate(vm: dict) -> Optional[str]:
    refs = isolate_refs(vm)
    for ref in refs:
        if ref.get("name") == "main" and ref.get("id"):
            return ref["id"]
    return refs[0].get("id") if refs else None


class PerformanceCollector:
    """Entry point for snapshot collection and on-demand drill-down.

    ``enhance_class`` and ``enhance_functions`` are opt-in and may run
    concurrently. Each keeps its own version token: a newer class selection
    invalidates a pending class enhancement, a newer function enhancement a
    pending function one, and a snapshot both. Discarded results are ``None``.
    """

    def __init__(
        self,
        client: ProtocolClient,
        config: Optional[AppConfig] = None,
        file_access: Optional[FileAccess] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.config = config or AppConfig()
        self.file_access = file_access
        self.log = log or logger
        self.resolver = SourceResolver(client, self.config.source, file_access, log=self.log)
        timeout = self.config.connection.call_timeout_sec
        self.cpu = CpuCollector(
            client, self.config.collection, self.resolver, call_timeout_sec=timeout, log=self.log
        )
        self.memory = MemoryCollector(
            client,
            self.config.collection,
            self.resolver,
            call_timeout_sec=timeout,
            max_usages=self.config.source.max_usages,
            log=self.log,
        )
        self.timeline = TimelineCollector(
            client, self.config.collection, call_timeout_sec=timeout, log=self.log
        )
        self.isolate_id: Optional[str] = None
        self._class_version = 0
        self._function_version = 0

    @property
    def selection_version(self) -> int:
        return self._class_version

    def _next_class_version(self) -> int:
        self._class_version += 1
        return self._class_version

    def _next_function_version(self) -> int:
        self._function_version += 1
        return self._function_version

    async def initialize(self) -> str:
        vm = await call_with_timeout(self.client.get_vm(), self.config.connection.call_timeout_sec, "getVM")
        isolate_id = pick_main_isolate(vm)
        if not isolate_id:
            raise UnavailableError("No isolate found on the target VM")
        self.isolate_id = isolate_id
        self.log.info("Using isolate %s", isolate_id)
        if self.file_access is not None:
            roots = await self.file_access.workspace_roots()
            self.log.debug("Workspace roots: %s", roots)
        await self.cpu.enable(isolate_id)
        await self.timeline.enable()
        return isolate_id

    async def _isolate(self) -> str:
        if self.isolate_id is None:
            return await self.initialize()
        return self.isolate_id

    async def _guarded(self, name: str, awaitable: Awaitable[T]) -> Optional[T]:
        try:
            return await awaitable
        except Exception as exc:  # collector failures never fail the snapshot
            self.log.warning("%s collection failed: %s", name, exc, exc_info=not isinstance(exc, VmLensError))
            return None

    async def collect_snapshot(self) -> PerformanceSnapshot:
        isolate_id = await self._isolate()
        self._next_class_version()
        self._next_function_version()
        if not self.cpu.enabled:
            await self.cpu.enable(isolate_id)
        if not self.timeline.enabled:
            await self.timeline.enable()
        timestamp = datetime.now(timezone.utc)
        cpu, memory, timeline = await asyncio.gather(
            self._guarded("CPU", self.cpu.collect(isolate_id)),
            self._guarded("Memory", self.memory.collect(isolate_id)),
            self._guarded("Timeline", self.timeline.collect()),
        )
        return PerformanceSnapshot(
            timestamp=timestamp,
            isolate_id=isolate_id,
            cpu=cpu,
            memory=memory,
            timeline=timeline,
        )

    async def enhance_class(self, sample: AllocationSample) -> Optional[AllocationSample]:
        version = self._next_class_version()
        isolate_id = await self._isolate()
        try:
            enhanced = await self.memory.enhance(isolate_id, sample)
        except Exception as exc:
            self.log.warning("Enhancing %s failed: %s", sample.class_name, exc)
            enhanced = sample
        if version != self._class_version:
            self.log.debug("Discarding stale enhancement for %s", sample.class_name)
            return None
        return enhanced

    async def enhance_functions(self, cpu: CpuData) -> Optional[CpuData]:
        version = self._next_function_version()
        isolate_id = await self._isolate()
        try:
            enhanced = await self.cpu.enhance(isolate_id, cpu)
        except Exception as exc:
            self.log.warning("Enhancing CPU functions failed: %s", exc)
            enhanced = cpu
        if version != self._function_version:
            self.log.debug("Discarding stale function enhancement")
            return None
        return enhanced

    async def get_retention_path(self, class_id: str) -> Optional[RetentionInfo]:
        isolate_id = await self._isolate()
        try:
            return await self.memory.retention_path(isolate_id, class_id)
        except VmLensError as exc:
            self.log.info("No retention path for %s: %s", class_id, exc)
            return None

    async def get_class_source_location(self, class_id: str) -> Optional[CodeLocation]:
        isolate_id = await self._isolate()
        return await self.resolver.resolve_class(isolate_id, class_id)

    async def get_function_source_location(self, function_id: str) -> Optional[CodeLocation]:
        isolate_id = await self._isolate()
        return await self.resolver.resolve_function(isolate_id, function_id)

    async def check_cpu_status(self) -> CpuProfilingStatus:
        try:
            isolate_id = await self._isolate()
        except VmLensError as exc:
            return CpuProfilingStatus(
                is_available=False,
                message="CPU profiling unavailable",
                hint="Connect to a running target",
                error=str(exc),
            )
        return await self.cpu.check_status(isolate_id)

    async def clear_data(self) -> None:
        if self.isolate_id is None:
            return
        await call_with_timeout(
            self.client.clear_cpu_samples(self.isolate_id),
            self.config.connection.call_timeout_sec,
            "clearCpuSamples",
        )
        await self.timeline.clear()
        await self.resolver.cache.clear()
