"""
Unit tests for the connection registry.

Tests apps/services/gateway/connection_registry.py against fake websockets.
"""

import asyncio

import pytest

from conftest import FakeWebSocket
from libs.core.exceptions import SendFailed


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_assigns_unique_identities(self, registry):
        conns = [await registry.register(FakeWebSocket(), f"10.0.0.{i}:5000") for i in range(20)]
        identities = {c.identity for c in conns}

        assert len(identities) == 20
        assert all(i.startswith("client_") for i in identities)
        assert registry.count() == 20

    @pytest.mark.asyncio
    async def test_unregister_removes_and_marks_dead(self, registry):
        conn = await registry.register(FakeWebSocket(), "1.2.3.4:1")
        removed = await registry.unregister(conn.identity)

        assert removed is conn
        assert conn.alive is False
        assert registry.count() == 0
        assert await registry.lookup(conn.identity) is None

    @pytest.mark.asyncio
    async def test_unregister_unknown_identity_is_ignored(self, registry):
        assert await registry.unregister("client_missing") is None

    @pytest.mark.asyncio
    async def test_concurrent_register_unregister_is_consistent(self, registry):
        async def churn(i):
            conn = await registry.register(FakeWebSocket(), f"h:{i}")
            await asyncio.sleep(0)
            if i % 2:
                await registry.unregister(conn.identity)

        await asyncio.gather(*(churn(i) for i in range(100)))

        assert registry.count() == 50
        assert all(c.alive for c in await registry.snapshot())

    @pytest.mark.asyncio
    async def test_describe_lists_clients(self, registry):
        conn = await registry.register(FakeWebSocket(), "1.2.3.4:99")
        [entry] = registry.describe()

        assert entry["id"] == conn.identity
        assert entry["remote_address"] == "1.2.3.4:99"
        assert entry["connected_seconds"] >= 0


class TestSend:
    @pytest.mark.asyncio
    async def test_send_writes_encoded_envelope(self, registry):
        ws = FakeWebSocket()
        conn = await registry.register(ws)

        await registry.send(conn.identity, {"kind": "pong", "timestamp": 5})

        assert ws.sent == [{"kind": "pong", "timestamp": 5}]

    @pytest.mark.asyncio
    async def test_send_to_unknown_identity_fails(self, registry):
        with pytest.raises(SendFailed) as exc_info:
            await registry.send("client_gone", {"kind": "pong"})
        assert exc_info.value.identity == "client_gone"
        assert registry.send_failures == 1

    @pytest.mark.asyncio
    async def test_send_after_unregister_fails(self, registry):
        conn = await registry.register(FakeWebSocket())
        await registry.unregister(conn.identity)

        with pytest.raises(SendFailed):
            await registry.send(conn.identity, {"kind": "pong"})

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_send_failed(self, registry):
        conn = await registry.register(FakeWebSocket(fail=True))

        with pytest.raises(SendFailed) as exc_info:
            await registry.send(conn.identity, {"kind": "pong"})
        assert "websocket is closed" in exc_info.value.reason
        assert registry.send_failures == 1


class TestFanOutIteration:
    @pytest.mark.asyncio
    async def test_for_each_except_skips_sender_and_survives_failures(self, registry):
        a = await registry.register(FakeWebSocket())
        b = await registry.register(FakeWebSocket(fail=True))
        c = await registry.register(FakeWebSocket())
        visited = []

        async def visit(conn):
            visited.append(conn.identity)
            if conn is b:
                raise RuntimeError("boom")

        succeeded, failures = await registry.for_each_except(a.identity, visit)

        assert set(visited) == {b.identity, c.identity}
        assert succeeded == 1
        assert [identity for identity, _ in failures] == [b.identity]

    @pytest.mark.asyncio
    async def test_iteration_uses_snapshot(self, registry):
        a = await registry.register(FakeWebSocket())
        b = await registry.register(FakeWebSocket())
        seen = []

        async def visit(conn):
            seen.append(conn.identity)
            # Registering mid-iteration does not change the targets
            await registry.register(FakeWebSocket())

        await registry.for_each_except(None, visit)

        assert sorted(seen) == sorted([a.identity, b.identity])
        assert registry.count() == 4

    @pytest.mark.asyncio
    async def test_connection_removed_mid_fan_out_is_reported_not_written(self, registry):
        a_ws, b_ws = FakeWebSocket(), FakeWebSocket()
        a = await registry.register(a_ws)
        b = await registry.register(b_ws)

        async def visit(conn):
            # The first target removes the other one before it is reached
            other = b if conn is a else a
            await registry.unregister(other.identity)
            await registry._write(conn, {"kind": "broadcast"})

        succeeded, failures = await registry.for_each_except(None, visit)

        assert succeeded == 1
        assert len(failures) == 1
        assert isinstance(failures[0][1], SendFailed)
        assert len(a_ws.sent) + len(b_ws.sent) == 1


class TestCloseAll:
    @pytest.mark.asyncio
    async def test_close_all_closes_every_socket(self, registry):
        sockets = [FakeWebSocket() for _ in range(3)]
        for ws in sockets:
            await registry.register(ws)

        closed = await registry.close_all(code=1001, reason="bye")

        assert closed == 3
        assert registry.count() == 0
        assert all(ws.closed and ws.close_code == 1001 for ws in sockets)

    @pytest.mark.asyncio
    async def test_close_all_on_empty_registry(self, registry):
        assert await registry.close_all() == 0

    @pytest.mark.asyncio
    async def test_stalled_peers_close_concurrently(self, registry):
        for _ in range(5):
            await registry.register(FakeWebSocket(stall=True))
        healthy = FakeWebSocket()
        await registry.register(healthy)

        loop = asyncio.get_running_loop()
        started = loop.time()
        closed = await registry.close_all(timeout=0.2)
        elapsed = loop.time() - started

        assert closed == 6
        assert healthy.closed
        # One bound for all closes, not one per stalled peer
        assert elapsed < 0.6
        assert registry.count() == 0


class TestBoundedFanOut:
    @pytest.mark.asyncio
    async def test_stalled_write_times_out_without_blocking_others(self, registry):
        sender = await registry.register(FakeWebSocket())
        stalled = await registry.register(FakeWebSocket(stall=True))
        fast_ws = FakeWebSocket()
        await registry.register(fast_ws)

        delivered, failures = await registry.send_to_all_except(
            sender.identity, {"kind": "broadcast"}, timeout=0.1
        )

        assert delivered == 1
        assert fast_ws.sent == [{"kind": "broadcast"}]
        [(identity, error)] = failures
        assert identity == stalled.identity
        assert isinstance(error, SendFailed)
        assert "timed out" in error.reason
