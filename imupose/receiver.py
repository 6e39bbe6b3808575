#!/usr/bin/env python3
"""
receiver.py -- Desktop-side pose receiver.

Connects to the phone relay, feeds every sensor record into the pose
estimator and prints the latest pose at a fixed display rate.

Usage
-----
  python3 -m imupose.receiver 192.168.1.42          # ws://...:8080
  python3 -m imupose.receiver 192.168.1.42 -p 9000
  python3 -m imupose.receiver 192.168.1.42 --csv > session.csv

Send SIGUSR1 to reset position/rotation to identity.
"""

from __future__ import annotations

import argparse
import asyncio
import collections
import contextlib
import logging
import signal
import sys
import time
from typing import Deque, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from . import packets
from .config import ReceiverConfig
from .estimator import ControllerState, NonFiniteSampleError, PoseEstimator

log = logging.getLogger(__name__)


class Receiver:
    """
    Glue between the transport and the estimator.

    All calls happen on the event loop thread, so ``update`` and
    ``reset`` never run concurrently.
    """

    def __init__(self, cfg: ReceiverConfig):
        self.cfg = cfg
        self.estimator = PoseEstimator(cfg.estimator)
        self.status: Deque[str] = collections.deque(maxlen=cfg.status_log_size)
        self.connected = False
        self.samples = 0

    def add_log(self, msg: str, level: int = logging.INFO) -> None:
        self.status.appendleft(f"[{time.strftime('%H:%M:%S')}] {msg}")
        log.log(level, msg)

    def reset(self) -> None:
        self.estimator.reset()
        self.add_log("Position/Rotation Reset.")

    def handle_message(self, text, t: Optional[float] = None) -> Optional[ControllerState]:
        """Process one transport message.  Returns the new pose, if any."""
        t = time.monotonic() if t is None else t
        try:
            packet = packets.loads(text, t)
        except ValueError as e:
            log.error("Parse Error: %s", e)
            return None

        if isinstance(packet, packets.InfoMessage):
            self.add_log(f"Phone: {packet.msg}")
            return None
        if packet is None:
            return None

        try:
            state = self.estimator.update_sample(packet)
        except NonFiniteSampleError as e:
            log.warning("Dropped sample: %s", e)
            return None
        self.samples += 1
        return state

    async def run(self) -> bool:
        """Connect and process messages until the connection closes."""
        host = self.cfg.host.strip()
        if not host:
            self.add_log("Error: Please enter an IP address.", logging.ERROR)
            return False

        uri = f"ws://{host}:{self.cfg.port}"
        self.add_log(f"Attempting to connect to {uri}...")
        try:
            async with connect(uri) as ws:
                self.connected = True
                self.add_log("WebSocket Connected!")
                self.estimator.reset()
                display = asyncio.create_task(self._display())
                try:
                    async for message in ws:
                        self.handle_message(message)
                finally:
                    display.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await display
        except (OSError, InvalidURI, InvalidHandshake) as e:
            self.add_log("WebSocket Error. Check IP or Network.", logging.ERROR)
            log.debug("connect failed: %r", e)
            return False
        except ConnectionClosed as e:
            log.warning("Connection lost: %s", e)
        finally:
            if self.connected:
                self.connected = False
                self.add_log("Disconnected.")
        return True

    # -- Display -------------------------------------------------------------

    async def _display(self) -> None:
        """Read the published pose at the display rate, like a render loop."""
        period = 1.0 / self.cfg.display_hz
        if self.cfg.csv:
            print("t,px,py,pz,qx,qy,qz,qw,vx,vy,vz,roll,pitch,yaw", flush=True)
        while True:
            await asyncio.sleep(period)
            self._print_state(self.estimator.get_state())

    def _print_state(self, s: ControllerState) -> None:
        p, q, v, e = s.position, s.rotation, s.velocity, s.euler
        if self.cfg.csv:
            print(f"{s.t:.6f},{p[0]:.5f},{p[1]:.5f},{p[2]:.5f},"
                  f"{q[0]:.5f},{q[1]:.5f},{q[2]:.5f},{q[3]:.5f},"
                  f"{v[0]:.5f},{v[1]:.5f},{v[2]:.5f},"
                  f"{e[0]:.2f},{e[1]:.2f},{e[2]:.2f}", flush=True)
            return
        sys.stdout.write(
            f"\r  P=[{p[0]:+7.3f} {p[1]:+7.3f} {p[2]:+7.3f}] m  "
            f"RPY=[{e[0]:+7.1f} {e[1]:+7.1f} {e[2]:+7.1f}] deg  "
            f"|v|={s.speed:6.3f} m/s  ({self.samples} samples)")
        sys.stdout.flush()


async def _main_async(receiver: Receiver) -> bool:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)
    if hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(signal.SIGUSR1, receiver.reset)
    try:
        return await receiver.run()
    except asyncio.CancelledError:
        return True


def main() -> None:
    default = ReceiverConfig()

    ap = argparse.ArgumentParser(description="Phone pose receiver")
    ap.add_argument("host", nargs="?", default=default.host,
                    help="Phone IP address")
    ap.add_argument("-p", "--port", type=int, default=default.port,
                    help=f"Relay port (default {default.port})")
    ap.add_argument("--display-hz", type=float, default=default.display_hz,
                    help=f"Pose print rate (default {default.display_hz:g})")
    ap.add_argument("--csv", action="store_true", help="CSV output mode")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s - %(levelname)s - %(message)s")

    receiver = Receiver(ReceiverConfig(host=args.host, port=args.port,
                                       display_hz=args.display_hz,
                                       csv=args.csv))
    ok = asyncio.run(_main_async(receiver))
    if not args.csv:
        print()
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
