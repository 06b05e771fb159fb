"""Heap allocation profile collection and per-class drill-down."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Optional

from vmlens.classify import is_user_class
from vmlens.core.config import CollectionConfig
from vmlens.core.errors import NoInstancesError, NotFoundError, VmLensError
from vmlens.models import AllocationSample, ClassUsage, CodeLocation, MemoryData, RetentionInfo
from vmlens.protocol.client import ProtocolClient, call_with_timeout
from vmlens.protocol.shapes import is_class
from vmlens.source.resolver import SourceResolver

from .retention import parse_retaining_path

logger = logging.getLogger(__name__)


def allocation_from_member(member: dict[str, Any]) -> Optional[AllocationSample]:
    instances = member.get("instancesCurrent") or 0
    if instances <= 0:
        return None
    class_ref = member.get("class") or {}
    class_name = class_ref.get("name") or "Unknown"
    library_uri = (class_ref.get("library") or {}).get("uri")
    current = member.get("bytesCurrent") or 0
    return AllocationSample(
        class_name=class_name,
        library_uri=library_uri,
        instance_count=instances,
        total_bytes=current,
        accumulated_bytes=member.get("accumulatedSize", current) or current,
        class_id=class_ref.get("id"),
        user_class_cached=is_user_class(class_name, library_uri),
    )


def rank_allocations(
    allocations: list[AllocationSample], user_limit: int = 30, framework_limit: int = 20
) -> list[AllocationSample]:
    """User classes first, then framework classes, each by live bytes descending.

    Underscore-prefixed classes are private implementation types and never ranked.
    """
    visible = [a for a in allocations if not a.class_name.startswith("_")]
    user = sorted((a for a in visible if a.is_user_class), key=lambda a: a.total_bytes, reverse=True)
    framework = sorted(
        (a for a in visible if not a.is_user_class), key=lambda a: a.total_bytes, reverse=True
    )
    return user[:user_limit] + framework[:framework_limit]


class MemoryCollector:
    def __init__(
        self,
        client: ProtocolClient,
        config: Optional[CollectionConfig] = None,
        resolver: Optional[SourceResolver] = None,
        call_timeout_sec: float = 10.0,
        max_usages: int = 5,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.config = config or CollectionConfig()
        self.resolver = resolver
        self.call_timeout_sec = call_timeout_sec
        self.max_usages = max_usages
        self.log = log or logger

    async def collect(self, isolate_id: str) -> MemoryData:
        profile = await call_with_timeout(
            self.client.get_allocation_profile(isolate_id, gc=False),
            self.call_timeout_sec,
            "getAllocationProfile",
        )
        usage = await call_with_timeout(
            self.client.get_memory_usage(isolate_id), self.call_timeout_sec, "getMemoryUsage"
        )
        allocations = [
            sample
            for sample in (allocation_from_member(m) for m in profile.get("members") or [])
            if sample is not None
        ]
        ranked = rank_allocations(
            allocations, self.config.user_class_limit, self.config.framework_class_limit
        )
        self.log.debug(
            "Allocations: %d live classes, %d user, %d ranked",
            len(allocations),
            sum(1 for a in allocations if a.is_user_class),
            len(ranked),
        )
        return MemoryData(
            used_heap_bytes=usage.get("heapUsage") or 0,
            heap_capacity_bytes=usage.get("heapCapacity") or 0,
            external_bytes=usage.get("externalUsage") or 0,
            gc_count=1 if profile.get("dateLastAccumulatorReset") else 0,
            top_allocations=ranked,
        )

    async def retention_path(self, isolate_id: str, class_id: str) -> RetentionInfo:
        class_obj = await call_with_timeout(
            self.client.get_object(isolate_id, class_id), self.call_timeout_sec, "getObject"
        )
        if not is_class(class_obj):
            raise NotFoundError(f"{class_id} is not a class ({class_obj.get('type')})")
        class_name = class_obj.get("name", "")
        instances = await call_with_timeout(
            self.client.get_instances(isolate_id, class_id, self.config.instance_sample_limit),
            self.call_timeout_sec,
            "getInstances",
        )
        refs = instances.get("instances") or []
        if not refs:
            raise NoInstancesError(f"No live instances of {class_name}")
        target_id = refs[0].get("id")
        if not target_id:
            raise NotFoundError(f"First instance of {class_name} has no id")
        payload = await call_with_timeout(
            self.client.get_retaining_path(isolate_id, target_id, self.config.retention_max_depth),
            self.call_timeout_sec,
            "getRetainingPath",
        )
        info = parse_retaining_path(class_name, payload)
        self.log.debug("Retention path for %s: %s", class_name, info.path_summary)
        return info

    async def source_location(self, isolate_id: str, class_id: str) -> Optional[CodeLocation]:
        if self.resolver is None:
            return None
        return await self.resolver.resolve_class(isolate_id, class_id)

    async def class_usages(self, isolate_id: str, class_name: str) -> Optional[list[ClassUsage]]:
        if self.resolver is None or class_name.startswith("_"):
            return None
        usages = await self.resolver.find_class_usages(class_name, isolate_id, limit=self.max_usages)
        return usages or None

    async def enhance(self, isolate_id: str, sample: AllocationSample) -> AllocationSample:
        """Source location, retention path and usages, fetched concurrently."""
        if not sample.class_id:
            return sample
        location, retention, usages = await asyncio.gather(
            self.source_location(isolate_id, sample.class_id),
            self.retention_path(isolate_id, sample.class_id),
            self.class_usages(isolate_id, sample.class_name),
            return_exceptions=True,
        )
        for part, result in (("source", location), ("retention", retention), ("usages", usages)):
            if isinstance(result, VmLensError):
                self.log.info("Enhance %s: %s unavailable: %s", sample.class_name, part, result)
            elif isinstance(result, BaseException):
                raise result
        return replace(
            sample,
            source_location=location if isinstance(location, CodeLocation) else sample.source_location,
            retention_info=retention if isinstance(retention, RetentionInfo) else sample.retention_info,
            class_usages=usages if isinstance(usages, list) else sample.class_usages,
        )
