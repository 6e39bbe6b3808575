#!/usr/bin/env python3
"""
server.py -- Phone-side sensor relay.

Reads the raw termux-sensor output (or a serial sensor board), frames it
into JSON records and broadcasts every record to all connected WebSocket
clients.

Usage
-----
  python3 -m imupose.server                         # termux-sensor, port 8080
  python3 -m imupose.server --port 9000
  python3 -m imupose.server --source serial /dev/ttyUSB0
  python3 -m imupose.server --max-buffer 0          # unbounded framer buffer

Each client first receives {"type": "info", "msg": "Connected to Phone"}
and then only records framed after it connected.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from contextlib import aclosing
from typing import AsyncIterator

from websockets.asyncio.server import ServerConnection, serve

from .config import FramerConfig, ServerConfig
from .framer import PacketFramer
from .relay import Relay, WebSocketSubscriber
from .sources import serial_chunks_async, termux_chunks

log = logging.getLogger(__name__)


async def pump(chunks: AsyncIterator[bytes], framer: PacketFramer,
               relay: Relay) -> int:
    """Frame every chunk and broadcast the records.  Returns records sent."""
    sent = 0
    overflows = framer.stats.overflows
    async with aclosing(chunks):
        async for chunk in chunks:
            for record in framer.feed(chunk):
                if sent == 0:
                    log.info("Sample Data Received: %s", json.dumps(record, indent=2))
                relay.broadcast(record)
                sent += 1
            if framer.stats.overflows != overflows:
                overflows = framer.stats.overflows
                log.warning("Framer buffer overflow, resynchronised (%d so far)",
                            overflows)
    return sent


def open_source(cfg: ServerConfig) -> AsyncIterator[bytes]:
    if cfg.source == "serial":
        return serial_chunks_async(cfg.serial_port, cfg.baud)
    return termux_chunks(cfg.sensors, cfg.command)


async def run(cfg: ServerConfig) -> None:
    relay = Relay(cfg.greeting)
    framer = PacketFramer(cfg.framer.max_buffer)

    async def handler(connection: ServerConnection) -> None:
        sub = WebSocketSubscriber(connection)
        log.info("Client connected! %s", connection.remote_address)
        relay.subscribe(sub)
        try:
            await connection.wait_closed()
        finally:
            relay.unsubscribe(sub)
            log.info("Client disconnected")

    async with serve(handler, cfg.host, cfg.port):
        log.info("WebSocket Server started on %s:%d", cfg.host, cfg.port)
        sent = await pump(open_source(cfg), framer, relay)
        s = framer.stats
        log.info("Sensor stream ended: %d records relayed, %d fragments dropped",
                 sent, s.dropped)


async def _main_async(cfg: ServerConfig) -> None:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)
    try:
        await run(cfg)
    except asyncio.CancelledError:
        log.info("Cleaning up...")
    except OSError as e:
        log.error("Server failed: %s", e)


def main() -> None:
    default = ServerConfig()

    ap = argparse.ArgumentParser(description="Phone sensor -> WebSocket relay")
    ap.add_argument("serial_port", nargs="?", default=None,
                    help="Serial port for --source serial (auto-detect)")
    ap.add_argument("--host", default=default.host,
                    help=f"Bind address (default {default.host})")
    ap.add_argument("-p", "--port", type=int, default=default.port,
                    help=f"WebSocket port (default {default.port})")
    ap.add_argument("--source", choices=("termux", "serial"), default=default.source)
    ap.add_argument("--command", default=default.command,
                    help=f"Sensor command (default {default.command})")
    ap.add_argument("-s", "--sensors", default=",".join(default.sensors),
                    help="Comma-separated sensor names")
    ap.add_argument("-b", "--baud", type=int, default=default.baud)
    ap.add_argument("--max-buffer", type=int, default=default.framer.max_buffer,
                    help="Framer buffer cap in chars, 0 = unbounded "
                         f"(default {default.framer.max_buffer})")
    ap.add_argument("--no-greeting", action="store_true",
                    help="Do not send the info record to new clients")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s - %(levelname)s - %(message)s")

    cfg = ServerConfig(
        host=args.host,
        port=args.port,
        source=args.source,
        sensors=tuple(s.strip() for s in args.sensors.split(",") if s.strip()),
        command=args.command,
        serial_port=args.serial_port,
        baud=args.baud,
        greeting=None if args.no_greeting else default.greeting,
        framer=FramerConfig(max_buffer=args.max_buffer or None),
    )
    asyncio.run(_main_async(cfg))


if __name__ == "__main__":
    main()
