"""
MAVLink flight controller as orientation hardware.

An ArduPilot board (e.g. Orange Cube) strapped to the camera provides both
inputs the fusion engine understands:

- ATTITUDE / ATTITUDE_QUATERNION: the autopilot's own fused attitude,
  exposed as a platform orientation sensor
- SCALED_IMU + VFR_HUD: raw gyro/accelerometer and compass heading,
  dispatched as motion and heading events for the complementary filter

The link is polled non-blockingly from a periodic timer on the event loop,
so every callback runs on the loop's thread.
"""

import logging
import math
from typing import Dict, List, Optional, Tuple

import serial.tools.list_ports
from pymavlink import mavutil
from scipy.spatial.transform import Rotation

from .config import HardwareConfig
from .events import (
    EventBus,
    EventKind,
    EventLoop,
    HeadingEvent,
    MotionEvent,
    SensorUnavailable,
    Timer,
)

logger = logging.getLogger(__name__)

STANDARD_GRAVITY = 9.80665

# MAV_DATA_STREAM ids
STREAM_RAW_SENSORS = 1
STREAM_EXTRA1 = 10  # attitude
STREAM_EXTRA2 = 11  # VFR_HUD

AUTOPILOT_KEYWORDS = ("ardupilot", "cube", "px4", "pixhawk", "stm32", "fmu")


def find_serial_ports() -> List[Dict]:
    """List serial ports with a flag for likely flight controllers."""
    ports = []
    for port in serial.tools.list_ports.comports():
        description = f"{port.description} {port.manufacturer or ''}".lower()
        ports.append({
            "device": port.device,
            "description": port.description,
            "hwid": port.hwid,
            "likely_autopilot": any(k in description for k in AUTOPILOT_KEYWORDS),
        })
    return ports


def auto_detect_port() -> Optional[str]:
    """Pick the most likely flight controller port, if any."""
    ports = find_serial_ports()
    for port in ports:
        if port["likely_autopilot"]:
            return port["device"]
    return ports[0]["device"] if ports else None


class MavlinkOrientationSensor:
    """Orientation sensor view over a link's ATTITUDE / ATTITUDE_QUATERNION stream."""

    def __init__(self, link: "MavlinkLink", frequency: float):
        self.link = link
        self.frequency = frequency
        self.quaternion: Optional[Tuple[float, float, float, float]] = None  # x, y, z, w
        self.on_reading = None
        self.on_error = None
        self.active = False

    def start(self):
        self.active = True
        self.link.start()

    def stop(self):
        self.active = False
        self.link.detach_sensor(self)

    def handle_attitude(self, msg):
        """ATTITUDE_QUATERNION: q is (w, x, y, z)."""
        w, x, y, z = msg.q
        self._set_quaternion((x, y, z, w))

    def handle_attitude_euler(self, msg):
        """ATTITUDE: roll/pitch/yaw in radians."""
        q = Rotation.from_euler("ZYX", [msg.yaw, msg.pitch, msg.roll]).as_quat()
        self._set_quaternion(tuple(float(v) for v in q))

    def _set_quaternion(self, q: Tuple[float, float, float, float]):
        if not self.active:
            return
        self.quaternion = q
        if self.on_reading is not None:
            self.on_reading()


class MavlinkLink:
    """
    MAVLink connection routed into the event loop.

    Raises ``SensorUnavailable`` from ``connect()`` when no heartbeat
    arrives; callers treat that as "no hardware".
    """

    def __init__(self, loop: EventLoop, bus: EventBus,
                 config: Optional[HardwareConfig] = None):
        self.loop = loop
        self.bus = bus
        self.config = config or HardwareConfig()
        self.connection = None
        self.sensor: Optional[MavlinkOrientationSensor] = None
        self._poll_timer: Optional[Timer] = None
        self.messages_seen = 0

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    def connect(self) -> "MavlinkLink":
        port = self.config.mavlink_port
        if port == "auto":
            port = auto_detect_port()
        if not port:
            raise SensorUnavailable("no MAVLink serial port")

        logger.info(f"Connecting to flight controller on {port} at {self.config.mavlink_baud} baud")
        try:
            connection = mavutil.mavlink_connection(port, baud=self.config.mavlink_baud)
            heartbeat = connection.wait_heartbeat(timeout=self.config.heartbeat_timeout_s)
        except Exception as e:
            raise SensorUnavailable(f"MAVLink connection failed: {e}") from e
        if not heartbeat:
            connection.close()
            raise SensorUnavailable(f"no heartbeat on {port}")

        self.connection = connection
        logger.info(f"Heartbeat from system {connection.target_system}, "
                    f"component {connection.target_component}")
        self._request_streams()
        return self

    def _request_streams(self):
        rate = self.config.stream_rate_hz
        for stream_id in (STREAM_RAW_SENSORS, STREAM_EXTRA1, STREAM_EXTRA2):
            self.connection.mav.request_data_stream_send(
                self.connection.target_system,
                self.connection.target_component,
                stream_id,
                rate,
                1,  # start sending
            )

    def create_orientation_sensor(self, frequency: float) -> MavlinkOrientationSensor:
        """Sensor factory for ``Platform``."""
        if not self.is_connected:
            raise SensorUnavailable("MAVLink link not connected")
        if not self.config.use_autopilot_attitude:
            raise SensorUnavailable("autopilot attitude disabled in configuration")
        self.sensor = MavlinkOrientationSensor(self, frequency)
        return self.sensor

    def detach_sensor(self, sensor: MavlinkOrientationSensor):
        if self.sensor is sensor:
            self.sensor = None

    def start(self):
        """Begin polling the connection from the event loop."""
        if self._poll_timer is None and self.is_connected:
            self._poll_timer = self.loop.call_every(1.0 / (2 * self.config.stream_rate_hz),
                                                    self.poll)

    def poll(self) -> int:
        """Drain pending messages. Returns the number handled."""
        handled = 0
        while self.connection is not None:
            msg = self.connection.recv_match(blocking=False)
            if msg is None:
                break
            self.process_message(msg)
            handled += 1
        self.messages_seen += handled
        return handled

    def process_message(self, msg) -> Optional[str]:
        msg_type = msg.get_type()

        if msg_type == "ATTITUDE_QUATERNION":
            if self.sensor is not None:
                self.sensor.handle_attitude(msg)

        elif msg_type == "ATTITUDE":
            if self.sensor is not None:
                self.sensor.handle_attitude_euler(msg)

        elif msg_type == "SCALED_IMU":
            # mrad/s -> deg/s, mg -> m/s^2; body x forward, y right, z down.
            # The accelerometer reads specific force (z = -1 g when level);
            # the filter wants the gravity vector, so every axis is negated.
            self.bus.dispatch(EventKind.MOTION, MotionEvent(
                rotation_rate=(
                    math.degrees(msg.zgyro / 1000.0),
                    math.degrees(msg.ygyro / 1000.0),
                    math.degrees(msg.xgyro / 1000.0),
                ),
                acceleration_including_gravity=(
                    -msg.xacc / 1000.0 * STANDARD_GRAVITY,
                    -msg.yacc / 1000.0 * STANDARD_GRAVITY,
                    -msg.zacc / 1000.0 * STANDARD_GRAVITY,
                ),
                timestamp=msg.time_boot_ms / 1000.0,
            ))

        elif msg_type == "VFR_HUD":
            self.bus.dispatch(EventKind.ORIENTATION, HeadingEvent(compass_heading=float(msg.heading)))

        return msg_type

    def close(self):
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None
        if self.connection is not None:
            self.connection.close()
            self.connection = None
