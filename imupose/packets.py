#!/usr/bin/env python3
"""
packets.py — Wire format of the phone sensor stream.

Every record is one UTF-8 JSON object.  Two shapes occur:

  Sensor record
    {"Motion Accel": {"values": [ax, ay, az, ...]},
     "Pseudo Gyro":  {"values": [gx, gy, gz, ...]}, ...}

  Info record
    {"type": "info", "msg": "<text>"}

Other channel names in a sensor record are ignored.  Info records are
status messages from the relay and never reach the estimator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

# ── Channel names (termux-sensor) ───────────────────────────────────────────
ACCEL_CHANNEL = "Motion Accel"    # linear acceleration  (m/s^2)
GYRO_CHANNEL  = "Pseudo Gyro"     # angular velocity     (rad/s)
INFO_TYPE     = "info"


@dataclass
class SensorSample:
    """One decoded accelerometer + gyroscope reading."""
    t: float              # monotonic timestamp (s), stamped on arrival
    gyro: np.ndarray      # [gx, gy, gz]  rad/s
    accel: np.ndarray     # [ax, ay, az]  m/s^2


@dataclass
class InfoMessage:
    """Informational record, not a sensor sample."""
    msg: str


Packet = Union[SensorSample, InfoMessage]


def info_record(msg: str) -> dict:
    return {"type": INFO_TYPE, "msg": msg}


def is_info(record: dict) -> bool:
    return record.get("type") == INFO_TYPE


def _channel(record: dict, name: str) -> Optional[np.ndarray]:
    ch = record.get(name)
    if not isinstance(ch, dict):
        return None
    values = ch.get("values")
    if not isinstance(values, list) or len(values) < 3:
        return None
    try:
        return np.array(values[:3], dtype=float)
    except (TypeError, ValueError):
        return None


def decode(record: dict, t: float) -> Optional[Packet]:
    """
    Turn one framed record into a :class:`SensorSample` or an
    :class:`InfoMessage`.

    Returns None for records that carry neither both sensor channels nor
    an info message.
    """
    if is_info(record):
        return InfoMessage(msg=str(record.get("msg", "")))

    accel = _channel(record, ACCEL_CHANNEL)
    gyro = _channel(record, GYRO_CHANNEL)
    if accel is None or gyro is None:
        return None
    return SensorSample(t=t, gyro=gyro, accel=accel)


def loads(text: str, t: float) -> Optional[Packet]:
    """Decode one transport message.  Raises ``ValueError`` on bad JSON."""
    record = json.loads(text)
    if not isinstance(record, dict):
        return None
    return decode(record, t)
