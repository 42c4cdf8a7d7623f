"""
Single-threaded event loop and platform event bus.

Sensor callbacks, the fixed-rate redraw tick and the grace-period timer all
run on one ``EventLoop``. Nothing here spawns threads: hardware backends are
polled from periodic timers, so fusion state is only ever touched from the
loop's own call stack.

The loop runs either against ``time.monotonic`` (``realtime=True``) or
against a virtual clock moved forward with ``advance()``, which is how the
tests drive the 2 s sensor grace period deterministically.
"""

import heapq
import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class SensorUnavailable(RuntimeError):
    """Raised when a platform orientation sensor cannot be constructed."""


class Timer:
    """Handle for a scheduled callback."""

    def __init__(self, deadline: float, callback: Callable[[], None],
                 interval: Optional[float] = None):
        self.deadline = deadline
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class EventLoop:
    """
    Cooperative timer loop.

    Callbacks run one at a time in deadline order; a periodic timer is
    rescheduled after each firing unless it was cancelled meanwhile.
    """

    def __init__(self, realtime: bool = True):
        self.realtime = realtime
        self._virtual_now = 0.0
        self._timers: List[Tuple[float, int, Timer]] = []
        self._seq = itertools.count()
        self._running = False

    def time(self) -> float:
        """Current loop time in seconds."""
        if self.realtime:
            return time.monotonic()
        return self._virtual_now

    def call_later(self, delay: float, callback: Callable[[], None]) -> Timer:
        timer = Timer(self.time() + max(0.0, delay), callback)
        self._push(timer)
        return timer

    def call_every(self, interval: float, callback: Callable[[], None]) -> Timer:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        timer = Timer(self.time() + interval, callback, interval=interval)
        self._push(timer)
        return timer

    def _push(self, timer: Timer):
        heapq.heappush(self._timers, (timer.deadline, next(self._seq), timer))

    def _fire_due(self, now: float) -> int:
        fired = 0
        while self._timers and self._timers[0][0] <= now:
            _, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            if not self.realtime:
                self._virtual_now = timer.deadline
            timer.callback()
            fired += 1
            if timer.interval is not None and not timer.cancelled:
                timer.deadline += timer.interval
                if self.realtime and timer.deadline <= now:
                    # Skip missed ticks instead of bursting to catch up
                    timer.deadline = now + timer.interval
                self._push(timer)
        return fired

    def run_pending(self) -> int:
        """Fire every timer that is due now. Returns the number fired."""
        return self._fire_due(self.time())

    def advance(self, seconds: float) -> int:
        """Move the virtual clock forward, firing timers in deadline order."""
        if self.realtime:
            raise RuntimeError("advance() requires a virtual-clock loop")
        target = self._virtual_now + seconds
        fired = self._fire_due(target)
        self._virtual_now = target
        return fired

    def next_deadline(self) -> Optional[float]:
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)
        return self._timers[0][0] if self._timers else None

    def run(self, duration: Optional[float] = None):
        """Run in real time until stop() or until duration elapses."""
        self._running = True
        end = None if duration is None else self.time() + duration
        while self._running:
            now = self.time()
            if end is not None and now >= end:
                break
            self._fire_due(now)
            deadline = self.next_deadline()
            wake = deadline if deadline is not None else now + 0.01
            if end is not None:
                wake = min(wake, end)
            sleep_for = wake - self.time()
            if sleep_for > 0:
                time.sleep(sleep_for)
        self._running = False

    def stop(self):
        self._running = False


class EventKind(Enum):
    """Platform event channels."""
    MOTION = "devicemotion"
    ORIENTATION = "deviceorientation"
    POINTER_DOWN = "pointerdown"
    POINTER_MOVE = "pointermove"
    POINTER_UP = "pointerup"


@dataclass(frozen=True)
class MotionEvent:
    """Gyro rate and gravity vector from the device IMU."""
    rotation_rate: Optional[Tuple[float, float, float]] = None  # alpha, beta, gamma in deg/s
    acceleration_including_gravity: Optional[Tuple[float, float, float]] = None  # m/s^2
    timestamp: Optional[float] = None  # seconds; loop time when omitted


@dataclass(frozen=True)
class HeadingEvent:
    """Magnetic heading measurement."""
    alpha: Optional[float] = None
    compass_heading: Optional[float] = None  # preferred when present


@dataclass(frozen=True)
class PointerEvent:
    x: float
    y: float


class EventBus:
    """Push-based listener registry keyed by ``EventKind``."""

    def __init__(self):
        self._listeners: Dict[EventKind, List[Callable]] = {kind: [] for kind in EventKind}

    def add_listener(self, kind: EventKind, callback: Callable) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners[kind].append(callback)

        def remove():
            if callback in self._listeners[kind]:
                self._listeners[kind].remove(callback)

        return remove

    def listener_count(self, kind: Optional[EventKind] = None) -> int:
        if kind is not None:
            return len(self._listeners[kind])
        return sum(len(v) for v in self._listeners.values())

    def dispatch(self, kind: EventKind, event) -> None:
        for callback in list(self._listeners[kind]):
            callback(event)


class OrientationSensor(Protocol):
    """Platform orientation sensor yielding a fused quaternion."""

    quaternion: Optional[Tuple[float, float, float, float]]  # x, y, z, w
    on_reading: Optional[Callable[[], None]]
    on_error: Optional[Callable[[Exception], None]]

    def start(self) -> None: ...

    def stop(self) -> None: ...


SensorFactory = Callable[[float], OrientationSensor]


class Platform:
    """Everything the fusion engine needs from its host."""

    def __init__(self, loop: EventLoop, bus: Optional[EventBus] = None,
                 sensor_factory: Optional[SensorFactory] = None):
        self.loop = loop
        self.bus = bus or EventBus()
        self.sensor_factory = sensor_factory

    def create_orientation_sensor(self, frequency: float) -> OrientationSensor:
        if self.sensor_factory is None:
            raise SensorUnavailable("no platform orientation sensor")
        return self.sensor_factory(frequency)
