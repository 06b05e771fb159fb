"""Shared fixtures: an in-memory VM service and workspace."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from vmlens.collectors.timeline import frame_statistics
from vmlens.core.errors import RemoteError
from vmlens.files.access import DirEntry
from vmlens.models import (
    AllocationSample,
    ClassUsage,
    CodeLocation,
    CpuData,
    FrameTiming,
    FunctionSample,
    MemoryData,
    PerformanceSnapshot,
    RetentionInfo,
    RetentionStep,
    SlowTimelineEvent,
)


def class_ref(class_id: str, name: str, library_uri: Optional[str]) -> dict[str, Any]:
    ref: dict[str, Any] = {"type": "@Class", "id": class_id, "name": name}
    if library_uri is not None:
        ref["library"] = {"type": "@Library", "id": f"libraries/{name}", "uri": library_uri}
    return ref


def func_ref(func_id: str, name: str, owner: dict[str, Any]) -> dict[str, Any]:
    return {"type": "@Function", "id": func_id, "name": name, "owner": owner}


def library_ref(uri: str) -> dict[str, Any]:
    return {"type": "@Library", "id": f"libraries/{uri}", "uri": uri}


def heap_member(ref: dict[str, Any], instances: int, size: int) -> dict[str, Any]:
    return {
        "type": "ClassHeapStats",
        "class": ref,
        "instancesCurrent": instances,
        "bytesCurrent": size,
        "accumulatedSize": size,
    }


class FakeProtocolClient:
    """Answers protocol calls from dicts; records every call."""

    def __init__(self) -> None:
        self.isolates: list[dict[str, Any]] = [
            {"type": "@Isolate", "id": "isolates/1", "name": "main"}
        ]
        self.cpu_samples: dict[str, Any] = {"samples": [], "functions": []}
        self.allocation_profile: dict[str, Any] = {"members": []}
        self.memory_usage: dict[str, Any] = {
            "heapUsage": 10 * 1024 * 1024,
            "heapCapacity": 20 * 1024 * 1024,
            "externalUsage": 1024,
        }
        self.objects: dict[str, dict[str, Any]] = {}
        self.instances: dict[str, list[dict[str, Any]]] = {}
        self.retaining_paths: dict[str, dict[str, Any]] = {}
        self.scripts: list[dict[str, Any]] = []
        self.trace_events: list[dict[str, Any]] = []
        self.timeline_micros = 50_000_000
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[tuple[str, tuple]] = []

    async def _answer(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.delays:
            await asyncio.sleep(self.delays[method])
        if method in self.failures:
            raise self.failures[method]

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def get_vm(self):
        await self._answer("getVM")
        return {"type": "VM", "version": "3.4.0", "isolates": self.isolates}

    async def get_isolate(self, isolate_id):
        await self._answer("getIsolate", isolate_id)
        return {"type": "Isolate", "id": isolate_id, "name": "main"}

    async def get_cpu_samples(self, isolate_id, time_origin_us, time_extent_us):
        await self._answer("getCpuSamples", isolate_id, time_origin_us, time_extent_us)
        return self.cpu_samples

    async def clear_cpu_samples(self, isolate_id):
        await self._answer("clearCpuSamples", isolate_id)
        return {"type": "Success"}

    async def set_profile_period(self, period_us):
        await self._answer("setProfilePeriod", period_us)
        return {"type": "Success"}

    async def get_allocation_profile(self, isolate_id, gc=False):
        await self._answer("getAllocationProfile", isolate_id, gc)
        return self.allocation_profile

    async def get_memory_usage(self, isolate_id):
        await self._answer("getMemoryUsage", isolate_id)
        return self.memory_usage

    async def get_object(self, isolate_id, object_id):
        await self._answer("getObject", isolate_id, object_id)
        if object_id not in self.objects:
            raise RemoteError("getObject", 113, f"unknown object {object_id}")
        return self.objects[object_id]

    async def get_instances(self, isolate_id, class_id, limit):
        await self._answer("getInstances", isolate_id, class_id, limit)
        refs = self.instances.get(class_id, [])
        return {"type": "InstanceSet", "totalCount": len(refs), "instances": refs[:limit]}

    async def get_retaining_path(self, isolate_id, target_id, limit):
        await self._answer("getRetainingPath", isolate_id, target_id, limit)
        return self.retaining_paths.get(target_id, {"type": "RetainingPath", "elements": []})

    async def get_scripts(self, isolate_id):
        await self._answer("getScripts", isolate_id)
        return {"type": "ScriptList", "scripts": self.scripts}

    async def get_vm_timeline(self, time_origin_us, time_extent_us):
        await self._answer("getVMTimeline", time_origin_us, time_extent_us)
        return {"type": "Timeline", "traceEvents": self.trace_events}

    async def set_vm_timeline_flags(self, flags):
        await self._answer("setVMTimelineFlags", list(flags))
        return {"type": "Success"}

    async def clear_vm_timeline(self):
        await self._answer("clearVMTimeline")
        return {"type": "Success"}

    async def get_vm_timeline_micros(self):
        await self._answer("getVMTimelineMicros")
        return {"type": "Timestamp", "timestamp": self.timeline_micros}


class FakeFileAccess:
    """Workspace held in a dict of relative path -> text."""

    def __init__(self, files: dict[str, str], root: str = "/home/dev/shop_app") -> None:
        self.files = files
        self.root = root
        self.reads: list[str] = []

    async def workspace_roots(self) -> list[str]:
        return [self.root]

    async def list_directory(self, path: str) -> list[DirEntry]:
        prefix = path.rstrip("/") + "/"
        children: dict[str, bool] = {}
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            rest = file_path[len(prefix):]
            head, _, tail = rest.partition("/")
            children[head] = children.get(head, False) or bool(tail)
        return [
            DirEntry(name=name, path=prefix + name, is_dir=is_dir)
            for name, is_dir in sorted(children.items())
        ]

    async def read_file(self, path: str) -> Optional[str]:
        self.reads.append(path)
        return self.files.get(path)


ORDER_SOURCE = """\
import 'package:flutter/material.dart';

class OrderItem {
  final String sku;
  final int quantity;
  OrderItem(this.sku, this.quantity);
}

class _CartPageState extends State<CartPage> {
  final List<OrderItem> _orders = [];

  void addOrder(String sku) {
    _orders.add(OrderItem(sku, 1));
  }
}
"""


@pytest.fixture
def fake_client() -> FakeProtocolClient:
    return FakeProtocolClient()


@pytest.fixture
def shop_client(fake_client: FakeProtocolClient) -> FakeProtocolClient:
    """Target with a user class, a framework class and a private class."""
    order = class_ref("classes/order", "OrderItem", "package:shop_app/models/order.dart")
    widget = class_ref("classes/widget", "Widget", "package:flutter/src/widgets/framework.dart")
    internal = class_ref("classes/cache", "_InternalCache", "package:shop_app/cache.dart")
    fake_client.allocation_profile = {
        "type": "AllocationProfile",
        "dateLastAccumulatorReset": "1700000000000",
        "members": [
            heap_member(widget, 50, 4_000),
            heap_member(order, 1200, 600 * 1024),
            heap_member(internal, 300, 900 * 1024),
            heap_member(class_ref("classes/dead", "Gone", "package:shop_app/gone.dart"), 0, 0),
        ],
    }
    fake_client.objects["classes/order"] = {
        "type": "Class",
        "id": "classes/order",
        "name": "OrderItem",
        "library": order["library"],
        "location": {
            "type": "SourceLocation",
            "script": {"type": "@Script", "id": "scripts/order", "uri": "package:shop_app/models/order.dart"},
            "tokenPos": 40,
            "line": 1,
        },
    }
    fake_client.objects["scripts/order"] = {
        "type": "Script",
        "id": "scripts/order",
        "uri": "package:shop_app/models/order.dart",
        "source": ORDER_SOURCE,
    }
    fake_client.instances["classes/order"] = [{"type": "@Instance", "id": "objects/o1"}]
    fake_client.retaining_paths["objects/o1"] = {
        "type": "RetainingPath",
        "gcRootType": "isolate_object_store",
        "elements": [
            {"value": {"type": "@Instance", "id": "objects/o1", "class": {"type": "@Class", "name": "OrderItem"}}},
            {
                "value": {"type": "@Instance", "id": "objects/l1", "class": {"type": "@Class", "name": "_GrowableList"}},
                "parentListIndex": 7,
            },
            {
                "value": {"type": "@Instance", "id": "objects/s1", "class": {"type": "@Class", "name": "_CartPageState"}},
                "parentField": "_orders",
            },
        ],
    }
    return fake_client


def make_snapshot() -> PerformanceSnapshot:
    """One snapshot with user and framework entries carrying PII-like text."""
    user_fn = FunctionSample(
        function_name="computeTotal",
        class_name="CartModel",
        library_uri="package:shop_app/cart.dart",
        exclusive_ticks=6,
        inclusive_ticks=8,
        percentage=60.0,
        source_location=CodeLocation(
            file_path="/home/dev/shop_app/lib/cart.dart",
            line_number=12,
            function_name="computeTotal",
            code_snippet="  // see /Users/alice/notes.txt\n  int computeTotal() {",
        ),
        function_id="functions/total",
    )
    framework_fn = FunctionSample(
        function_name="rebuild",
        class_name="Element",
        library_uri="package:flutter/src/widgets/framework.dart",
        exclusive_ticks=4,
        inclusive_ticks=4,
        percentage=40.0,
        source_location=CodeLocation(file_path="/opt/flutter/packages/flutter/lib/src/widgets/framework.dart"),
        function_id="functions/rebuild",
    )
    user_class = AllocationSample(
        class_name="OrderItem",
        library_uri="package:shop_app/models/order.dart",
        instance_count=1200,
        total_bytes=600 * 1024,
        accumulated_bytes=600 * 1024,
        class_id="classes/order",
        source_location=CodeLocation(
            file_path="package:shop_app/models/order.dart",
            line_number=3,
            class_name="OrderItem",
            code_snippet="class OrderItem {  // owner: dev@example.com",
        ),
        retention_info=RetentionInfo(
            class_name="OrderItem",
            path=[
                RetentionStep(description="OrderItem", class_name="OrderItem"),
                RetentionStep(description="_CartPageState", field_name="_orders"),
                RetentionStep(description="GC Root (Widget Tree)", is_gc_root=True),
            ],
            root_type="Widget Tree",
        ),
        class_usages=[
            ClassUsage(
                file_path="/home/dev/shop_app/lib/pages/cart.dart",
                line_number=5,
                line_content="OrderItem? selected;",
                context="// token=abc123\nOrderItem? selected;",
            )
        ],
    )
    framework_class = AllocationSample(
        class_name="RenderParagraph",
        library_uri="package:flutter/src/rendering/paragraph.dart",
        instance_count=40,
        total_bytes=4000,
        accumulated_bytes=4000,
        class_id="classes/para",
        retention_info=RetentionInfo(class_name="RenderParagraph", path=[], root_type="unknown"),
    )
    timeline = frame_statistics(
        [FrameTiming.from_durations(12_000, 8_000, 20_000)],
        [
            SlowTimelineEvent(
                name="ImageDecoder",
                duration_us=5_000,
                timestamp=10,
                category="image",
                args={"url": "https://cdn.example.com/a.png", "size": 12},
            )
        ],
    )
    return PerformanceSnapshot(
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        isolate_id="isolates/12345",
        cpu=CpuData(
            sample_count=10,
            sample_period_us=250,
            max_stack_depth=4,
            total_cpu_time_ms=2.5,
            top_functions=[user_fn, framework_fn],
        ),
        memory=MemoryData(
            used_heap_bytes=1024,
            heap_capacity_bytes=2048,
            external_bytes=0,
            gc_count=1,
            top_allocations=[user_class, framework_class],
        ),
        timeline=timeline,
    )
