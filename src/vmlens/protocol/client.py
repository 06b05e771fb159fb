"""VM service JSON-RPC client over a websocket."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Awaitable, Optional, Protocol, TypeVar

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from vmlens.core.errors import (
    MalformedResponseError,
    RemoteError,
    RemoteTimeoutError,
    UnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Response = dict[str, Any]


class ProtocolClient(Protocol):
    """Async introspection calls the collectors rely on.

    Responses are the protocol's JSON objects: dicts keyed by camelCase names
    with a ``type`` tag (``@Class``, ``Instance``, ``Sentinel`` ...).
    """

    async def get_vm(self) -> Response: ...

    async def get_isolate(self, isolate_id: str) -> Response: ...

    async def get_cpu_samples(
        self, isolate_id: str, time_origin_us: int, time_extent_us: int
    ) -> Response: ...

    async def clear_cpu_samples(self, isolate_id: str) -> Response: ...

    async def set_profile_period(self, period_us: int) -> Response: ...

    async def get_allocation_profile(self, isolate_id: str, gc: bool = False) -> Response: ...

    async def get_memory_usage(self, isolate_id: str) -> Response: ...

    async def get_object(self, isolate_id: str, object_id: str) -> Response: ...

    async def get_instances(self, isolate_id: str, class_id: str, limit: int) -> Response: ...

    async def get_retaining_path(
        self, isolate_id: str, target_id: str, limit: int
    ) -> Response: ...

    async def get_scripts(self, isolate_id: str) -> Response: ...

    async def get_vm_timeline(self, time_origin_us: int, time_extent_us: int) -> Response: ...

    async def set_vm_timeline_flags(self, flags: list[str]) -> Response: ...

    async def clear_vm_timeline(self) -> Response: ...

    async def get_vm_timeline_micros(self) -> Response: ...


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, what: str) -> T:
    """Await one remote call, turning an expired budget into RemoteTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise RemoteTimeoutError(f"{what} timed out after {timeout:.1f}s") from exc


class VmServiceClient:
    """JSON-RPC 2.0 client for a VM service websocket endpoint.

    A single reader task routes responses to pending futures by request id;
    stream notifications are ignored.
    """

    def __init__(self, uri: str, call_timeout_sec: float = 10.0) -> None:
        self.uri = uri
        self.call_timeout_sec = call_timeout_sec
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: dict[str, asyncio.Future] = {}
        self._ids = itertools.count(1)

    async def connect(self) -> "VmServiceClient":
        try:
            self._ws = await websockets.connect(self.uri, max_size=None)
        except (OSError, WebSocketException) as exc:
            raise UnavailableError(f"Cannot connect to {self.uri}: {exc}") from exc
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("Connected to VM service at %s", self.uri)
        return self

    async def close(self) -> None:
        if self._reader:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._fail_pending(UnavailableError("VM service connection closed"))

    async def __aenter__(self) -> "VmServiceClient":
        return await self.connect()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _read_loop(self) -> None:
        assert self._ws is not None
        try:
            async for raw in self._ws:
                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Dropping non-JSON frame from VM service")
                    continue
                req_id = msg.get("id")
                if req_id is None:
                    continue
                fut = self._pending.pop(str(req_id), None)
                if fut is not None and not fut.done():
                    fut.set_result(msg)
        except ConnectionClosed as exc:
            logger.warning("VM service connection closed: %s", exc)
        self._fail_pending(UnavailableError("VM service connection closed"))

    def _fail_pending(self, exc: Exception) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(exc)
        self._pending.clear()

    async def request(self, method: str, params: Optional[dict[str, Any]] = None) -> Response:
        if self._ws is None:
            raise UnavailableError("VM service not connected")
        req_id = str(next(self._ids))
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        payload = {"jsonrpc": "2.0", "id": req_id, "method": method, "params": params or {}}
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            self._pending.pop(req_id, None)
            raise UnavailableError(f"VM service connection closed: {exc}") from exc
        try:
            msg = await call_with_timeout(fut, self.call_timeout_sec, method)
        finally:
            self._pending.pop(req_id, None)
        if "error" in msg:
            err = msg["error"] or {}
            raise RemoteError(method, err.get("code"), err.get("message", ""), err.get("data"))
        result = msg.get("result")
        if not isinstance(result, dict):
            raise MalformedResponseError(f"{method}: missing result object")
        return result

    async def get_vm(self) -> Response:
        return await self.request("getVM")

    async def get_isolate(self, isolate_id: str) -> Response:
        return await self.request("getIsolate", {"isolateId": isolate_id})

    async def get_cpu_samples(
        self, isolate_id: str, time_origin_us: int, time_extent_us: int
    ) -> Response:
        return await self.request(
            "getCpuSamples",
            {
                "isolateId": isolate_id,
                "timeOriginMicros": time_origin_us,
                "timeExtentMicros": time_extent_us,
            },
        )

    async def clear_cpu_samples(self, isolate_id: str) -> Response:
        return await self.request("clearCpuSamples", {"isolateId": isolate_id})

    async def set_profile_period(self, period_us: int) -> Response:
        return await self.request("setFlag", {"name": "profile_period", "value": str(period_us)})

    async def get_allocation_profile(self, isolate_id: str, gc: bool = False) -> Response:
        params: dict[str, Any] = {"isolateId": isolate_id}
        if gc:
            params["gc"] = True
        return await self.request("getAllocationProfile", params)

    async def get_memory_usage(self, isolate_id: str) -> Response:
        return await self.request("getMemoryUsage", {"isolateId": isolate_id})

    async def get_object(self, isolate_id: str, object_id: str) -> Response:
        return await self.request("getObject", {"isolateId": isolate_id, "objectId": object_id})

    async def get_instances(self, isolate_id: str, class_id: str, limit: int) -> Response:
        return await self.request(
            "getInstances", {"isolateId": isolate_id, "objectId": class_id, "limit": limit}
        )

    async def get_retaining_path(self, isolate_id: str, target_id: str, limit: int) -> Response:
        return await self.request(
            "getRetainingPath", {"isolateId": isolate_id, "targetId": target_id, "limit": limit}
        )

    async def get_scripts(self, isolate_id: str) -> Response:
        return await self.request("getScripts", {"isolateId": isolate_id})

    async def get_vm_timeline(self, time_origin_us: int, time_extent_us: int) -> Response:
        return await self.request(
            "getVMTimeline",
            {"timeOriginMicros": time_origin_us, "timeExtentMicros": time_extent_us},
        )

    async def set_vm_timeline_flags(self, flags: list[str]) -> Response:
        return await self.request("setVMTimelineFlags", {"recordedStreams": list(flags)})

    async def clear_vm_timeline(self) -> Response:
        return await self.request("clearVMTimeline")

    async def get_vm_timeline_micros(self) -> Response:
        return await self.request("getVMTimelineMicros")
