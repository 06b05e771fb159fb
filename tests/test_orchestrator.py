"""Tests for the PerformanceCollector orchestrator."""

import asyncio

import pytest

from conftest import class_ref, func_ref

from vmlens.collectors.facade import PerformanceCollector, pick_main_isolate
from vmlens.core.config import AppConfig, ConnectionConfig
from vmlens.core.errors import RemoteError, UnavailableError
from vmlens.models import DataSource


def _with_cpu_samples(client):
    owner = class_ref("classes/cart", "CartModel", "package:shop_app/cart.dart")
    client.cpu_samples = {
        "samplePeriod": 250,
        "functions": [{"function": func_ref("functions/total", "computeTotal", owner)}],
        "samples": [{"stack": [0]}, {"stack": [0]}],
    }
    return client


class TestPickMainIsolate:
    """Tests for isolate selection."""

    def test_prefers_main(self):
        """Test the isolate named main wins."""
        vm = {"isolates": [{"id": "isolates/2", "name": "worker"}, {"id": "isolates/1", "name": "main"}]}
        assert pick_main_isolate(vm) == "isolates/1"

    def test_falls_back_to_first(self):
        """Test the first isolate is used without a main one."""
        vm = {"isolates": [{"id": "isolates/7", "name": "background"}]}
        assert pick_main_isolate(vm) == "isolates/7"

    def test_none(self):
        """Test no isolates gives None."""
        assert pick_main_isolate({"isolates": []}) is None


class TestInitialize:
    """Tests for session setup."""

    @pytest.mark.asyncio
    async def test_no_isolate(self, fake_client):
        """Test a VM without isolates is unavailable."""
        fake_client.isolates = []
        with pytest.raises(UnavailableError):
            await PerformanceCollector(fake_client).initialize()

    @pytest.mark.asyncio
    async def test_enables_collectors_once(self, shop_client):
        """Test profiling setup happens once across snapshots."""
        collector = PerformanceCollector(_with_cpu_samples(shop_client))
        await collector.collect_snapshot()
        await collector.collect_snapshot()
        assert shop_client.count("getVM") == 1
        assert shop_client.count("setProfilePeriod") == 1
        assert shop_client.count("setVMTimelineFlags") == 1


class TestCollectSnapshot:
    """Tests for concurrent snapshot collection."""

    @pytest.mark.asyncio
    async def test_all_parts(self, shop_client):
        """Test a healthy target fills every part."""
        snapshot = await PerformanceCollector(_with_cpu_samples(shop_client)).collect_snapshot()
        assert snapshot.isolate_id == "isolates/1"
        assert snapshot.cpu.sample_count == 2
        assert [a.class_name for a in snapshot.memory.top_allocations] == ["OrderItem", "Widget"]
        assert snapshot.timeline.data_source is DataSource.SYNTHETIC

    @pytest.mark.asyncio
    async def test_failing_collector_is_absent(self, shop_client):
        """Test one failing collector leaves the others intact."""
        shop_client.failures["getAllocationProfile"] = RemoteError("getAllocationProfile", -32000, "boom")
        snapshot = await PerformanceCollector(_with_cpu_samples(shop_client)).collect_snapshot()
        assert snapshot.memory is None
        assert snapshot.cpu is not None
        assert snapshot.timeline is not None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_absent(self, shop_client):
        """Test non-protocol errors are contained too."""
        shop_client.failures["getVMTimeline"] = RuntimeError("bad payload")
        snapshot = await PerformanceCollector(shop_client).collect_snapshot()
        assert snapshot.timeline is None
        assert snapshot.memory is not None

    @pytest.mark.asyncio
    async def test_hung_cpu_call_times_out(self, shop_client):
        """Test a CPU call that never answers leaves only the CPU part absent."""
        shop_client.delays["getCpuSamples"] = 3600
        config = AppConfig(connection=ConnectionConfig(call_timeout_sec=0.2))
        collector = PerformanceCollector(_with_cpu_samples(shop_client), config)
        snapshot = await asyncio.wait_for(collector.collect_snapshot(), timeout=5)
        assert snapshot.cpu is None
        assert snapshot.memory is not None
        assert snapshot.timeline is not None

    @pytest.mark.asyncio
    async def test_no_cpu_samples(self, shop_client):
        """Test an idle target has no CPU part."""
        snapshot = await PerformanceCollector(shop_client).collect_snapshot()
        assert snapshot.cpu is None


class TestEnhancement:
    """Tests for opt-in drill-down and stale results."""

    @pytest.mark.asyncio
    async def test_enhance_class(self, shop_client):
        """Test a class is enhanced with source and retention."""
        collector = PerformanceCollector(shop_client)
        snapshot = await collector.collect_snapshot()
        enhanced = await collector.enhance_class(snapshot.memory.top_allocations[0])
        assert enhanced.source_location.line_number == 3
        assert enhanced.retention_info.root_type == "Widget Tree"

    @pytest.mark.asyncio
    async def test_stale_selection_is_discarded(self, shop_client):
        """Test an enhancement overtaken by a newer selection returns None."""
        shop_client.delays["getObject"] = 0.01
        collector = PerformanceCollector(shop_client)
        snapshot = await collector.collect_snapshot()
        order = snapshot.memory.top_allocations[0]
        first = asyncio.create_task(collector.enhance_class(order))
        await asyncio.sleep(0)
        second = asyncio.create_task(collector.enhance_class(order))
        first_result, second_result = await asyncio.gather(first, second)
        assert first_result is None
        assert second_result is not None
        assert second_result.retention_info is not None

    @pytest.mark.asyncio
    async def test_class_and_function_enhancement_run_together(self, shop_client):
        """Test concurrent class and function enhancement do not discard each other."""
        shop_client.delays["getObject"] = 0.01
        collector = PerformanceCollector(_with_cpu_samples(shop_client))
        snapshot = await collector.collect_snapshot()
        order = snapshot.memory.top_allocations[0]
        enhanced_class, enhanced_cpu = await asyncio.gather(
            collector.enhance_class(order), collector.enhance_functions(snapshot.cpu)
        )
        assert enhanced_class is not None
        assert enhanced_class.retention_info is not None
        assert enhanced_cpu is not None

    @pytest.mark.asyncio
    async def test_new_snapshot_discards_pending_enhancement(self, shop_client):
        """Test a snapshot started mid-enhancement invalidates the result."""
        shop_client.delays["getObject"] = 0.05
        collector = PerformanceCollector(shop_client)
        snapshot = await collector.collect_snapshot()
        pending = asyncio.create_task(collector.enhance_class(snapshot.memory.top_allocations[0]))
        await asyncio.sleep(0)
        await collector.collect_snapshot()
        assert await pending is None

    @pytest.mark.asyncio
    async def test_failed_enhancement_returns_input(self, shop_client):
        """Test an unexpected failure hands back the unenhanced sample."""
        collector = PerformanceCollector(shop_client)
        snapshot = await collector.collect_snapshot()
        order = snapshot.memory.top_allocations[0]
        shop_client.failures["getInstances"] = RuntimeError("boom")
        assert await collector.enhance_class(order) is order

    @pytest.mark.asyncio
    async def test_enhance_functions(self, shop_client):
        """Test function enhancement keeps the sample count and order."""
        collector = PerformanceCollector(_with_cpu_samples(shop_client))
        snapshot = await collector.collect_snapshot()
        enhanced = await collector.enhance_functions(snapshot.cpu)
        assert enhanced.sample_count == snapshot.cpu.sample_count
        assert [f.function_name for f in enhanced.top_functions] == ["computeTotal"]

    @pytest.mark.asyncio
    async def test_retention_path_without_instances(self, shop_client):
        """Test a class without instances has no retention path."""
        shop_client.instances["classes/order"] = []
        collector = PerformanceCollector(shop_client)
        assert await collector.get_retention_path("classes/order") is None


class TestStatusAndReset:
    """Tests for CPU status and clearing."""

    @pytest.mark.asyncio
    async def test_cpu_status_without_isolate(self, fake_client):
        """Test status reports unavailable when nothing can be profiled."""
        fake_client.isolates = []
        status = await PerformanceCollector(fake_client).check_cpu_status()
        assert not status.is_available
        assert status.error is not None

    @pytest.mark.asyncio
    async def test_clear_data(self, shop_client):
        """Test clearing drops samples, timeline and cached sources."""
        collector = PerformanceCollector(shop_client)
        snapshot = await collector.collect_snapshot()
        await collector.get_class_source_location("classes/order")
        assert len(collector.resolver.cache) == 1
        await collector.clear_data()
        assert len(collector.resolver.cache) == 0
        assert shop_client.count("clearVMTimeline") == 1
        assert shop_client.count("clearCpuSamples") == 2
        assert snapshot.memory is not None
