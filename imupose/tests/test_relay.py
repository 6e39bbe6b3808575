#!/usr/bin/env python3
"""
test_relay.py -- Tests for record fan-out and the relay pump.

Tests cover:
  * Subscriber registration and greeting
  * Broadcast to writable subscribers only, no replay
  * Framer -> relay pump
  * Real WebSocket round trip on localhost

Run:  python3 -m pytest imupose/tests/test_relay.py -v
"""

import asyncio
import json
import pytest

# Allow running from repo root
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from websockets.asyncio.client import connect
from websockets.asyncio.server import serve

from imupose.framer import PacketFramer
from imupose.relay import Relay, WebSocketSubscriber
from imupose.server import pump


class FakeSubscriber:
    def __init__(self, writable: bool = True):
        self.writable = writable
        self.sent: list[str] = []

    def send(self, payload: str) -> None:
        self.sent.append(payload)

    def records(self) -> list:
        return [json.loads(p) for p in self.sent]


async def _chunks(*chunks):
    for c in chunks:
        yield c


# ── Relay ──────────────────────────────────────────────────────────────────

class TestRelay:
    def test_greeting_on_subscribe(self):
        relay = Relay()
        sub = FakeSubscriber()
        relay.subscribe(sub)
        assert sub.records() == [{"type": "info", "msg": "Connected to Phone"}]
        assert relay.subscribers == 1

    def test_no_greeting(self):
        relay = Relay(greeting=None)
        sub = FakeSubscriber()
        relay.subscribe(sub)
        assert sub.sent == []

    def test_broadcast_reaches_all(self):
        relay = Relay(greeting=None)
        subs = [FakeSubscriber() for _ in range(3)]
        for s in subs:
            relay.subscribe(s)
        assert relay.broadcast({"a": 1}) == 3
        for s in subs:
            assert s.records() == [{"a": 1}]

    def test_no_subscribers(self):
        assert Relay().broadcast({"a": 1}) == 0

    def test_unwritable_subscriber_skipped(self):
        relay = Relay(greeting=None)
        ok, busy = FakeSubscriber(), FakeSubscriber(writable=False)
        relay.subscribe(ok)
        relay.subscribe(busy)
        assert relay.broadcast({"a": 1}) == 1
        busy.writable = True
        relay.broadcast({"b": 2})
        assert busy.records() == [{"b": 2}]
        assert ok.records() == [{"a": 1}, {"b": 2}]

    def test_late_subscriber_gets_no_history(self):
        relay = Relay(greeting=None)
        early = FakeSubscriber()
        relay.subscribe(early)
        relay.broadcast({"a": 1})
        late = FakeSubscriber()
        relay.subscribe(late)
        relay.broadcast({"b": 2})
        assert early.records() == [{"a": 1}, {"b": 2}]
        assert late.records() == [{"b": 2}]

    def test_unsubscribe(self):
        relay = Relay(greeting=None)
        sub = FakeSubscriber()
        relay.subscribe(sub)
        relay.unsubscribe(sub)
        relay.unsubscribe(sub)
        relay.broadcast({"a": 1})
        assert sub.sent == []
        assert relay.subscribers == 0


# ── Pump ───────────────────────────────────────────────────────────────────

class TestPump:
    def test_framed_records_broadcast_in_order(self):
        relay = Relay(greeting=None)
        sub = FakeSubscriber()
        relay.subscribe(sub)
        chunks = _chunks(b'{"Motion Accel":{"values":[1,2,3]}}\n{"Pseudo',
                         b' Gyro":{"values":[0.1,0.2,0.3]}}{"a":1}')
        sent = asyncio.run(pump(chunks, PacketFramer(), relay))
        assert sent == 3
        assert sub.records() == [
            {"Motion Accel": {"values": [1, 2, 3]}},
            {"Pseudo Gyro": {"values": [0.1, 0.2, 0.3]}},
            {"a": 1},
        ]

    def test_garbage_not_broadcast(self):
        relay = Relay(greeting=None)
        sub = FakeSubscriber()
        relay.subscribe(sub)
        framer = PacketFramer()
        sent = asyncio.run(pump(_chunks(b'{"a":x}{"b":2}'), framer, relay))
        assert sent == 1
        assert sub.records() == [{"b": 2}]
        assert framer.stats.dropped == 1


# ── WebSocket transport ────────────────────────────────────────────────────

class TestWebSocket:
    def test_round_trip(self):
        async def scenario():
            relay = Relay()

            async def handler(connection):
                sub = WebSocketSubscriber(connection)
                relay.subscribe(sub)
                try:
                    await connection.wait_closed()
                finally:
                    relay.unsubscribe(sub)

            async with serve(handler, "127.0.0.1", 0) as server:
                port = next(iter(server.sockets)).getsockname()[1]
                async with connect(f"ws://127.0.0.1:{port}") as ws:
                    greeting = json.loads(await ws.recv())
                    relay.broadcast({"Motion Accel": {"values": [1, 2, 3]}})
                    record = json.loads(await ws.recv())
                for _ in range(200):
                    if relay.subscribers == 0:
                        break
                    await asyncio.sleep(0.01)
                return greeting, record, relay.subscribers

        greeting, record, remaining = asyncio.run(asyncio.wait_for(scenario(), 10))
        assert greeting == {"type": "info", "msg": "Connected to Phone"}
        assert record == {"Motion Accel": {"values": [1, 2, 3]}}
        assert remaining == 0
