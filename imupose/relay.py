#!/usr/bin/env python3
"""
relay.py — Fan framed records out to every connected client.

Best effort: no queuing, no retry, no replay.  A subscriber that is not
writable when a record is broadcast simply misses that record.
"""

from __future__ import annotations

import json
from typing import Optional, Protocol, Set

from websockets.asyncio.server import ServerConnection, broadcast
from websockets.protocol import State

from .packets import info_record


class Subscriber(Protocol):
    @property
    def writable(self) -> bool: ...

    def send(self, payload: str) -> None: ...


class WebSocketSubscriber:
    """Adapt a websockets server connection to :class:`Subscriber`."""

    def __init__(self, connection: ServerConnection):
        self.connection = connection

    @property
    def writable(self) -> bool:
        return self.connection.protocol.state is State.OPEN

    def send(self, payload: str) -> None:
        # non-blocking; skips the connection unless it is OPEN
        broadcast([self.connection], payload)

    def __repr__(self) -> str:
        return f"WebSocketSubscriber({self.connection.remote_address!r})"


class Relay:
    """
    Subscriber registry plus broadcast.

    Parameters
    ----------
    greeting : str, optional
        Text of the info record sent to each new subscriber.  ``None``
        sends nothing.
    """

    def __init__(self, greeting: Optional[str] = "Connected to Phone"):
        self.greeting = greeting
        self._subscribers: Set[Subscriber] = set()

    @property
    def subscribers(self) -> int:
        return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.add(subscriber)
        if self.greeting is not None and subscriber.writable:
            subscriber.send(json.dumps(info_record(self.greeting)))

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.discard(subscriber)

    def broadcast(self, record: dict) -> int:
        """Send *record* to every writable subscriber.  Returns the count reached."""
        payload = json.dumps(record)
        delivered = 0
        for sub in list(self._subscribers):
            if not sub.writable:
                continue
            sub.send(payload)
            delivered += 1
        return delivered
