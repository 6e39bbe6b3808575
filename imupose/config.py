"""Configuration dataclasses for the sensor relay and pose receiver."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .packets import ACCEL_CHANNEL, GYRO_CHANNEL


@dataclass
class EstimatorConfig:
    """
    Tunables of the dead-reckoning pose estimator.

    These are heuristic stabilisers, not physical constants.  Changing
    them changes the observable pose.
    """
    gravity: float = 9.81          # m/s^2, subtracted from the up axis
    up_axis: int = 1               # world Y is up
    friction: float = 0.95         # velocity kept per step
    dead_zone: float = 0.2         # |a| below this is clamped to 0 (m/s^2)
    zupt_threshold: float = 0.1    # all |a| below this -> device at rest
    zupt_damping: float = 0.5      # extra velocity factor while at rest
    position_scale: float = 0.5    # attenuation of integrated position
    max_dt: float = 1.0            # larger steps are dropped as stalls (s)


@dataclass
class FramerConfig:
    max_buffer: Optional[int] = None   # chars; None = unbounded


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    source: str = "termux"             # "termux" or "serial"
    sensors: Tuple[str, ...] = (ACCEL_CHANNEL, GYRO_CHANNEL)
    command: str = "termux-sensor"
    serial_port: Optional[str] = None
    baud: int = 115_200
    greeting: Optional[str] = "Connected to Phone"
    framer: FramerConfig = field(default_factory=lambda: FramerConfig(max_buffer=65_536))


@dataclass
class ReceiverConfig:
    host: str = ""
    port: int = 8080
    display_hz: float = 10.0
    status_log_size: int = 20
    csv: bool = False
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
