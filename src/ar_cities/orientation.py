"""
Orientation fusion engine.

Turns whatever orientation input the platform offers into one push-based
stream of heading/pitch/roll samples:

- a platform orientation sensor (fused quaternion), trusted as-is
- raw device motion + magnetic heading events, fused with a complementary
  filter (gyro integration, gravity tilt correction, slow compass pull)
- pointer drag, when no sensor delivers anything within the grace period

Heading is magnetic-relative; no declination correction is applied.
"""

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .config import FusionConfig
from .events import (
    EventKind,
    HeadingEvent,
    MotionEvent,
    OrientationSensor,
    Platform,
    PointerEvent,
    Timer,
)
from .geo import wrap180, wrap360
from .models import OrientationSample, SourceKind

logger = logging.getLogger(__name__)

SMOOTHING_MAX = 0.3

Listener = Callable[[OrientationSample], None]


def smooth_angle(prev: float, target: float, factor: float) -> float:
    """Exponential smoothing along the shortest arc between two headings."""
    delta = wrap180(target - prev)
    return wrap360(prev + delta * (1 - math.exp(-factor)))


def smooth_linear(prev: float, target: float, factor: float) -> float:
    return prev + (target - prev) * (1 - math.exp(-factor))


def quaternion_to_euler(qx: float, qy: float, qz: float, qw: float) -> Tuple[float, float, float]:
    """
    Convert a quaternion to Z-Y-X Euler angles.

    Returns:
        (yaw, pitch, roll) in degrees
    """
    yaw, pitch, roll = Rotation.from_quat([qx, qy, qz, qw]).as_euler("ZYX", degrees=True)
    return float(yaw), float(pitch), float(roll)


@dataclass
class Attitude:
    """Unsmoothed orientation accumulators shared by all sources."""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0


class ComplementaryFilter:
    """
    Gyro integration with low-gain gravity and compass corrections.

    Gyro rates carry the high-frequency motion. The gravity vector slowly
    pulls pitch/roll back and the magnetic heading slowly pulls yaw back.
    """

    def __init__(self, attitude: Attitude, accel_gain: float = 0.02,
                 yaw_correction_gain: float = 0.01):
        self.attitude = attitude
        self.accel_gain = accel_gain
        self.yaw_correction_gain = yaw_correction_gain

        self.heading_meas: Optional[float] = None
        self.last_gyro_ts: Optional[float] = None

    @property
    def has_data(self) -> bool:
        """True once any motion or heading measurement arrived."""
        return self.last_gyro_ts is not None or self.heading_meas is not None

    def set_heading(self, event: HeadingEvent):
        if event.compass_heading is not None:
            self.heading_meas = wrap360(event.compass_heading)
        elif event.alpha is not None:
            self.heading_meas = wrap360(event.alpha)

    def update(self, event: MotionEvent, now: float):
        """Fold one motion event into the attitude."""
        dt = max(0.0, now - self.last_gyro_ts) if self.last_gyro_ts is not None else 0.0
        self.last_gyro_ts = now
        att = self.attitude

        if event.rotation_rate is not None:
            gz, gx, gy = event.rotation_rate
            att.yaw = wrap360(att.yaw + gz * dt)
            att.pitch += gx * dt
            att.roll += gy * dt

        if event.acceleration_including_gravity is not None:
            ax, ay, az = event.acceleration_including_gravity
            pitch_acc = math.degrees(math.atan2(-ax, math.hypot(ay, az)))
            roll_acc = math.degrees(math.atan2(ay, az))
            g = self.accel_gain
            att.pitch = att.pitch * (1 - g) + pitch_acc * g
            att.roll = att.roll * (1 - g) + roll_acc * g

        if self.heading_meas is not None:
            err = wrap180(self.heading_meas - att.yaw)
            att.yaw = wrap360(att.yaw + err * self.yaw_correction_gain)


class OrientationSource(ABC):
    """One orientation backend writing into the shared attitude."""

    kind: SourceKind

    def __init__(self, platform: Platform, attitude: Attitude, on_sample: Callable[[], None]):
        self.platform = platform
        self.attitude = attitude
        self.on_sample = on_sample

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...


class GenericSensorSource(OrientationSource):
    """Platform orientation sensor; its quaternion is trusted fully."""

    kind = SourceKind.GENERIC_SENSOR

    def __init__(self, platform: Platform, attitude: Attitude,
                 on_sample: Callable[[], None], frequency: float = 60.0):
        super().__init__(platform, attitude, on_sample)
        self.frequency = frequency
        self.sensor: Optional[OrientationSensor] = None

    def start(self):
        # Construction or start failures propagate to the stream
        sensor = self.platform.create_orientation_sensor(self.frequency)
        sensor.on_reading = self._on_reading
        sensor.on_error = self._on_error
        sensor.start()
        self.sensor = sensor

    def _on_reading(self):
        q = self.sensor.quaternion if self.sensor is not None else None
        if q is None or not np.any(q):
            return
        yaw, pitch, roll = quaternion_to_euler(*q)
        self.attitude.yaw = wrap360(yaw)
        self.attitude.pitch = pitch
        self.attitude.roll = roll
        self.on_sample()

    def _on_error(self, error: Exception):
        logger.warning(f"Orientation sensor error: {error}")

    def stop(self):
        if self.sensor is not None:
            self.sensor.on_reading = None
            self.sensor.on_error = None
            self.sensor.stop()
            self.sensor = None


class DeviceFusionSource(OrientationSource):
    """Raw motion + heading events through the complementary filter."""

    kind = SourceKind.DEVICE_FUSION

    def __init__(self, platform: Platform, attitude: Attitude,
                 on_sample: Callable[[], None], config: FusionConfig):
        super().__init__(platform, attitude, on_sample)
        self.filter = ComplementaryFilter(
            attitude,
            accel_gain=config.accel_gain,
            yaw_correction_gain=config.yaw_correction_gain,
        )
        self._removers: List[Callable[[], None]] = []

    def start(self):
        bus = self.platform.bus
        self._removers = [
            bus.add_listener(EventKind.ORIENTATION, self._on_heading),
            bus.add_listener(EventKind.MOTION, self._on_motion),
        ]

    def _on_heading(self, event: HeadingEvent):
        self.filter.set_heading(event)

    def _on_motion(self, event: MotionEvent):
        now = event.timestamp if event.timestamp is not None else self.platform.loop.time()
        self.filter.update(event, now)
        self.on_sample()

    def stop(self):
        for remove in self._removers:
            remove()
        self._removers = []


class VirtualSource(OrientationSource):
    """Pointer drag steers heading (horizontal) and pitch (vertical, inverted)."""

    kind = SourceKind.VIRTUAL

    def __init__(self, platform: Platform, attitude: Attitude,
                 on_sample: Callable[[], None], config: FusionConfig):
        super().__init__(platform, attitude, on_sample)
        self.sensitivity_heading = config.sensitivity_heading
        self.sensitivity_pitch = config.sensitivity_pitch
        self.pitch_limit = config.virtual_pitch_limit_deg

        self.dragging = False
        self._last: Optional[Tuple[float, float]] = None
        self._removers: List[Callable[[], None]] = []

    def start(self):
        bus = self.platform.bus
        self._removers = [
            bus.add_listener(EventKind.POINTER_DOWN, self._on_down),
            bus.add_listener(EventKind.POINTER_MOVE, self._on_move),
            bus.add_listener(EventKind.POINTER_UP, self._on_up),
        ]

    def _on_down(self, event: PointerEvent):
        self.dragging = True
        self._last = (event.x, event.y)

    def _on_up(self, event: PointerEvent):
        self.dragging = False
        self._last = None

    def _on_move(self, event: PointerEvent):
        if not self.dragging or self._last is None:
            return
        dx = event.x - self._last[0]
        dy = event.y - self._last[1]
        self._last = (event.x, event.y)
        self.drag(dx, dy)

    def drag(self, dx: float, dy: float):
        """Apply a drag delta in pixels."""
        att = self.attitude
        att.yaw = wrap360(att.yaw + dx * self.sensitivity_heading)
        limit = self.pitch_limit
        att.pitch = max(-limit, min(limit, att.pitch - dy * self.sensitivity_pitch))
        self.on_sample()

    def stop(self):
        for remove in self._removers:
            remove()
        self._removers = []
        self.dragging = False


class FusionState(Enum):
    """Source selection state."""
    PROBING_GENERIC_SENSOR = "probing-generic-sensor"
    GENERIC_SENSOR_ACTIVE = "generic-sensor-active"
    DEVICE_FUSION_ACTIVE = "device-fusion-active"
    VIRTUAL_FALLBACK = "virtual-fallback"
    STOPPED = "stopped"


class LatestSample:
    """Last-value-wins slot written by the stream and read by the frame loop."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sample: Optional[OrientationSample] = None

    def set(self, sample: OrientationSample):
        with self._lock:
            self._sample = sample

    def get(self) -> Optional[OrientationSample]:
        with self._lock:
            return self._sample


class OrientationStream:
    """
    Handle for a running fusion engine.

    Every emission, whether triggered by a sensor event or by the fixed-rate
    tick, applies the heading offset and output smoothing and then pushes
    the sample to all subscribers in order.
    """

    def __init__(self, platform: Platform, smoothing: float = 0.15,
                 heading_offset_deg: float = 0.0,
                 config: Optional[FusionConfig] = None):
        self.platform = platform
        self.config = config or FusionConfig()

        self._smoothing = 0.0
        self.set_smoothing(smoothing)
        self._heading_offset_deg = heading_offset_deg

        self.attitude = Attitude()
        self.latest = LatestSample()
        self._listeners: List[Listener] = []

        self.state = FusionState.PROBING_GENERIC_SENSOR
        self.source: Optional[OrientationSource] = None
        self._source_kind = SourceKind.DEVICE_FUSION
        self._last_emit = OrientationSample(
            heading_deg=0.0, pitch_deg=0.0, roll_deg=0.0,
            source=self._source_kind, timestamp=platform.loop.time(),
        )

        self._tick_timer: Optional[Timer] = None
        self._grace_timer: Optional[Timer] = None

    def start(self) -> "OrientationStream":
        self._probe_generic_sensor()
        self._tick_timer = self.platform.loop.call_every(1.0 / self.config.tick_hz, self._emit)
        return self

    # -- state machine ---------------------------------------------------

    def _probe_generic_sensor(self):
        source = GenericSensorSource(
            self.platform, self.attitude, self._emit,
            frequency=self.config.sensor_frequency_hz,
        )
        try:
            source.start()
        except Exception as e:
            logger.warning(f"Generic orientation sensor unavailable ({e}); using device fusion")
            self._enter_device_fusion()
            return

        self._activate(source, FusionState.GENERIC_SENSOR_ACTIVE)

    def _enter_device_fusion(self):
        source = DeviceFusionSource(self.platform, self.attitude, self._emit, self.config)
        source.start()
        self._activate(source, FusionState.DEVICE_FUSION_ACTIVE)
        self._grace_timer = self.platform.loop.call_later(
            self.config.grace_period_s, self._on_grace_expired
        )

    def _on_grace_expired(self):
        self._grace_timer = None
        if self.state is not FusionState.DEVICE_FUSION_ACTIVE:
            return
        if self.source.filter.has_data:
            return
        logger.info(
            f"No motion or heading events within {self.config.grace_period_s:.1f}s; "
            "switching to pointer-driven orientation"
        )
        self.source.stop()
        source = VirtualSource(self.platform, self.attitude, self._emit, self.config)
        source.start()
        self._activate(source, FusionState.VIRTUAL_FALLBACK)

    def _activate(self, source: OrientationSource, state: FusionState):
        self.source = source
        self.state = state
        self._source_kind = source.kind
        logger.info(f"Orientation source: {source.kind.value}")

    # -- output ----------------------------------------------------------

    def _emit(self):
        if self.state is FusionState.STOPPED:
            return

        att = self.attitude
        target_heading = wrap360(att.yaw + self._heading_offset_deg)
        prev = self._last_emit
        factor = self._smoothing

        sample = OrientationSample(
            heading_deg=smooth_angle(prev.heading_deg, target_heading, factor),
            pitch_deg=smooth_linear(prev.pitch_deg, att.pitch, factor),
            roll_deg=smooth_linear(prev.roll_deg, att.roll, factor),
            source=self._source_kind,
            timestamp=max(prev.timestamp, self.platform.loop.time()),
        )
        self._last_emit = sample
        self.latest.set(sample)

        for listener in list(self._listeners):
            try:
                listener(sample)
            except Exception:
                logger.exception("Orientation listener failed")

    # -- public API --------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns the matching unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_smoothing(self, value: float):
        self._smoothing = max(0.0, min(SMOOTHING_MAX, value))

    @property
    def smoothing(self) -> float:
        return self._smoothing

    def set_heading_offset(self, deg: float):
        self._heading_offset_deg = deg

    def get_source(self) -> SourceKind:
        return self._source_kind

    def stop(self):
        """Unregister every listener and timer; nothing fires afterwards."""
        if self._tick_timer is not None:
            self._tick_timer.cancel()
            self._tick_timer = None
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None
        if self.source is not None:
            self.source.stop()
        self._listeners.clear()
        self.state = FusionState.STOPPED


def start_orientation(platform: Platform, smoothing: float = 0.15,
                      heading_offset_deg: float = 0.0,
                      config: Optional[FusionConfig] = None) -> OrientationStream:
    """Probe the best available source and start emitting samples."""
    return OrientationStream(platform, smoothing, heading_offset_deg, config).start()
