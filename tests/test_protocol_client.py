"""Tests for the VM service JSON-RPC client."""

import asyncio
import json

import pytest

from vmlens.core.errors import (
    MalformedResponseError,
    RemoteError,
    RemoteTimeoutError,
    UnavailableError,
)
from vmlens.protocol.client import VmServiceClient, call_with_timeout
from vmlens.protocol.shapes import bare_type, is_class, line_for_token_pos, library_uri_of_owner


class ScriptedSocket:
    """Websocket stand-in answering each request from a method table."""

    def __init__(self, answers):
        self.answers = answers
        self.sent = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, raw):
        msg = json.loads(raw)
        self.sent.append(msg)
        answer = self.answers.get(msg["method"])
        if answer is None:
            return
        await self._inbox.put(json.dumps({"jsonrpc": "2.0", "id": msg["id"], **answer}))

    async def close(self):
        await self._inbox.put(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


def _attach(client, socket):
    client._ws = socket
    client._reader = asyncio.create_task(client._read_loop())
    return client


class TestCallWithTimeout:
    """Tests for per-call time budgets."""

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test an expired budget raises RemoteTimeoutError."""
        with pytest.raises(RemoteTimeoutError):
            await call_with_timeout(asyncio.sleep(1), 0.01, "sleep")

    @pytest.mark.asyncio
    async def test_passthrough(self):
        """Test a fast call returns its value."""

        async def _value():
            return 42

        assert await call_with_timeout(_value(), 1.0, "value") == 42


class TestVmServiceClient:
    """Tests for request routing and error mapping."""

    @pytest.mark.asyncio
    async def test_result_routing(self):
        """Test results are matched to requests and params are camelCase."""
        socket = ScriptedSocket({"getObject": {"result": {"type": "Class", "name": "OrderItem"}}})
        client = _attach(VmServiceClient("ws://test"), socket)
        try:
            obj = await client.get_object("isolates/1", "classes/9")
        finally:
            await client.close()
        assert obj["name"] == "OrderItem"
        assert socket.sent[0]["params"] == {"isolateId": "isolates/1", "objectId": "classes/9"}

    @pytest.mark.asyncio
    async def test_profile_period_is_a_flag(self):
        """Test the sampling period is set through setFlag."""
        socket = ScriptedSocket({"setFlag": {"result": {"type": "Success"}}})
        client = _attach(VmServiceClient("ws://test"), socket)
        try:
            await client.set_profile_period(250)
        finally:
            await client.close()
        assert socket.sent[0]["method"] == "setFlag"
        assert socket.sent[0]["params"] == {"name": "profile_period", "value": "250"}

    @pytest.mark.asyncio
    async def test_error_response(self):
        """Test JSON-RPC errors raise RemoteError with the code."""
        socket = ScriptedSocket({"getIsolate": {"error": {"code": 105, "message": "Isolate must be runnable"}}})
        client = _attach(VmServiceClient("ws://test"), socket)
        try:
            with pytest.raises(RemoteError) as excinfo:
                await client.get_isolate("isolates/1")
        finally:
            await client.close()
        assert excinfo.value.code == 105
        assert excinfo.value.method == "getIsolate"

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        """Test a response without a result object is rejected."""
        socket = ScriptedSocket({"getVM": {"result": "nope"}})
        client = _attach(VmServiceClient("ws://test"), socket)
        try:
            with pytest.raises(MalformedResponseError):
                await client.get_vm()
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unanswered_request_times_out(self):
        """Test a request without an answer fails within the call budget."""
        client = _attach(VmServiceClient("ws://test", call_timeout_sec=0.01), ScriptedSocket({}))
        try:
            with pytest.raises(RemoteTimeoutError):
                await client.get_vm()
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_not_connected(self):
        """Test requests before connecting are unavailable."""
        with pytest.raises(UnavailableError):
            await VmServiceClient("ws://test").get_vm()


class TestShapes:
    """Tests for response object readers."""

    def test_ref_and_full_types(self):
        """Test refs and full objects share a bare type."""
        assert bare_type({"type": "@Class"}) == "Class"
        assert is_class({"type": "Class"})
        assert not is_class({"type": "@Instance"})
        assert bare_type(None) == ""

    def test_library_uri_of_owner(self):
        """Test owners may be classes or libraries."""
        cls = {"type": "@Class", "library": {"type": "@Library", "uri": "package:a/b.dart"}}
        assert library_uri_of_owner(cls) == "package:a/b.dart"
        assert library_uri_of_owner({"type": "@Library", "uri": "dart:core"}) == "dart:core"
        assert library_uri_of_owner(None) is None

    def test_line_for_token_pos(self):
        """Test token positions map to lines through the table."""
        script = {"tokenPosTable": [[1, 0, 1, 5, 7], [3, 20, 1, 28, 9]]}
        assert line_for_token_pos(script, 20) == 3
        assert line_for_token_pos(script, 25) == 3
        assert line_for_token_pos(script, 6) == 1
        assert line_for_token_pos(script, None) is None
        assert line_for_token_pos({}, 4) is None
