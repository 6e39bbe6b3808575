#!/usr/bin/env python3
"""
sources.py — Raw byte sources feeding the framer.

termux_chunks   stdout of ``termux-sensor -s "Motion Accel,Pseudo Gyro"``
serial_chunks   a sensor board printing the same JSON over a serial port

Both yield raw byte chunks exactly as the OS hands them over; framing is
the framer's job.
"""

from __future__ import annotations

import asyncio
import glob
import logging
import threading
from typing import AsyncIterator, Generator, Optional, Sequence

import serial
import serial.tools.list_ports

from .packets import ACCEL_CHANNEL, GYRO_CHANNEL

log = logging.getLogger(__name__)

CHUNK = 4096
BAUD  = 115_200


async def _log_stderr(stream: asyncio.StreamReader) -> None:
    async for line in stream:
        log.error("Sensor Error: %s", line.decode(errors="replace").rstrip())


async def termux_chunks(sensors: Sequence[str] = (ACCEL_CHANNEL, GYRO_CHANNEL),
                        command: str = "termux-sensor") -> AsyncIterator[bytes]:
    """
    Spawn the sensor process and yield its stdout chunks until it exits.

    The process is killed when the generator is closed early.
    """
    args = ["-s", ",".join(sensors)]
    log.info("Spawning sensor process: %s %s", command, " ".join(args))
    proc = await asyncio.create_subprocess_exec(
        command, *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stderr_task = asyncio.create_task(_log_stderr(proc.stderr))
    try:
        while True:
            chunk = await proc.stdout.read(CHUNK)
            if not chunk:
                break
            yield chunk
    finally:
        if proc.returncode is None:
            proc.kill()
        code = await proc.wait()
        await stderr_task
        log.info("Sensor process exited with code %s", code)


def find_port() -> Optional[str]:
    """Auto-detect a USB serial sensor board."""
    for p in serial.tools.list_ports.comports():
        d = ((p.description or "") + (p.manufacturer or "")).lower()
        if any(k in d for k in ("ftdi", "cp210", "ch340", "usb serial", "uart")):
            return p.device
    usbs = sorted(glob.glob("/dev/ttyUSB*") + glob.glob("/dev/ttyACM*"))
    return usbs[0] if usbs else None


def serial_chunks(port: Optional[str] = None,
                  baud: int = BAUD) -> Generator[bytes, None, None]:
    """Open *port* and yield whatever bytes arrive, as they arrive."""
    port = port or find_port()
    if port is None:
        raise RuntimeError("No serial port found.  Is the sensor connected?")

    ser = serial.Serial(port, baud, timeout=0.5)
    ser.reset_input_buffer()
    log.info("Reading sensor stream from %s @ %d", port, baud)

    try:
        while True:
            waiting = ser.in_waiting
            chunk = ser.read(max(waiting, 1))
            if chunk:
                yield chunk
    finally:
        ser.close()


async def serial_chunks_async(port: Optional[str] = None,
                              baud: int = BAUD) -> AsyncIterator[bytes]:
    """
    :func:`serial_chunks` pumped from a daemon thread into the event loop.

    pyserial blocks, so the port is read on its own thread; chunks are
    handed over in order through a queue.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    stop = threading.Event()

    def _put(item) -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(queue.put_nowait, item)

    def _pump() -> None:
        try:
            for chunk in serial_chunks(port, baud):
                if stop.is_set():
                    break
                _put(chunk)
        except (serial.SerialException, RuntimeError) as e:
            log.error("Serial source failed: %s", e)
        finally:
            _put(None)

    threading.Thread(target=_pump, daemon=True).start()
    try:
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield chunk
    finally:
        stop.set()
