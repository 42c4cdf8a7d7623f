"""
AR city overlay application.

Camera feed with city labels placed at their true bearing, using an
orientation stream from a MAVLink flight controller when one is attached
and mouse drag otherwise.

Press 'H' in the window for keyboard shortcuts.
"""

import dataclasses
import logging
import time
from typing import List, Optional

import cv2
import numpy as np

from .catalog import load_cities
from .config import Config
from .events import EventKind, EventLoop, Platform, PointerEvent, SensorUnavailable
from .hardware import MavlinkLink
from .layout import FrameInput, LayoutState, draw_frame, layout_frame
from .models import City
from .orientation import OrientationStream, start_orientation
from .surface import OpenCVSurface

logger = logging.getLogger(__name__)

HFOV_RANGE = (20.0, 120.0)
DISTANCE_RANGE_KM = (10.0, 20000.0)
SMOOTHING_STEP = 0.05

COLOR_STATUS = (200, 200, 200, 1.0)
COLOR_HELP_PANEL = (40, 40, 40, 0.8)
COLOR_HELP_TITLE = (255, 255, 0, 1.0)
COLOR_HELP_KEY = (0, 255, 0, 1.0)
COLOR_HELP_TEXT = (255, 255, 255, 1.0)

SHORTCUTS = [
    ("U", "Toggle km / mi"),
    ("O", "Toggle off-screen indicators"),
    ("[ / ]", "Narrow / widen HFOV (5 deg)"),
    (", / .", "Heading offset -/+ 1 deg"),
    ("- / +", "Shrink / grow max distance"),
    ("A / S", "Less / more smoothing"),
    ("Drag", "Steer heading and pitch (no sensor)"),
    ("H", "Show/Hide this help"),
    ("Q/ESC", "Quit"),
]


class CityAR:
    """
    Main AR application.

    Owns the event loop, the orientation stream and the layout state. The
    settings snapshot is replaced (never mutated) between frames.
    """

    def __init__(self, config: Config, cities: Optional[List[City]] = None):
        self.config = config
        self.settings = config.settings

        self.loop = EventLoop(realtime=True)
        self.platform = Platform(self.loop)
        self.link: Optional[MavlinkLink] = None
        self.stream: Optional[OrientationStream] = None

        self.layout_state = LayoutState(config.layout)
        self.surface = OpenCVSurface(
            config.camera.width / config.display.device_pixel_ratio,
            config.camera.height / config.display.device_pixel_ratio,
            device_pixel_ratio=config.display.device_pixel_ratio,
        )
        self.camera: Optional[cv2.VideoCapture] = None
        self.cities = cities

        self.running = False
        self.show_help = False
        self.fps = 0

    # -- setup -------------------------------------------------------------

    def setup_hardware(self) -> bool:
        """Connect the flight controller, if one is configured."""
        if self.config.hardware.mavlink_port is None:
            return False

        link = MavlinkLink(self.loop, self.platform.bus, self.config.hardware)
        try:
            link.connect()
        except SensorUnavailable as e:
            logger.warning(f"Flight controller not available: {e}")
            return False

        link.start()
        self.link = link
        self.platform.sensor_factory = link.create_orientation_sensor
        return True

    def setup_orientation(self):
        self.setup_hardware()
        self.stream = start_orientation(
            self.platform,
            smoothing=self.settings.smoothing,
            heading_offset_deg=self.settings.heading_offset_deg,
            config=self.config.fusion,
        )

    def setup_camera(self) -> bool:
        """Open the camera; without one the overlay runs on a dark background."""
        cam_cfg = self.config.camera
        logger.info(f"Opening camera {cam_cfg.index}...")
        camera = cv2.VideoCapture(cam_cfg.index)
        if not camera.isOpened():
            logger.warning("Failed to open camera, drawing on a blank background")
            return False

        camera.set(cv2.CAP_PROP_FRAME_WIDTH, cam_cfg.width)
        camera.set(cv2.CAP_PROP_FRAME_HEIGHT, cam_cfg.height)
        actual_w = int(camera.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(camera.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Camera resolution: {actual_w}x{actual_h}")
        self.camera = camera
        return True

    def setup_cities(self):
        if self.cities is None:
            self.cities = load_cities(self.config.cities_path)

    # -- settings ----------------------------------------------------------

    def update_settings(self, **changes):
        """Swap in a new settings snapshot and forward the fusion knobs."""
        self.settings = dataclasses.replace(self.settings, **changes)
        if self.stream is not None:
            self.stream.set_smoothing(self.settings.smoothing)
            self.stream.set_heading_offset(self.settings.heading_offset_deg)

    def handle_key(self, key: int) -> bool:
        """
        Handle keyboard input.

        Args:
            key: Key code from cv2.waitKey

        Returns:
            False if should quit, True otherwise
        """
        if key == -1:
            return True

        key = key & 0xFF
        s = self.settings

        if key == ord('q') or key == 27:  # Q or ESC
            return False

        if key == ord('h'):
            self.show_help = not self.show_help
        elif key == ord('u'):
            self.update_settings(units="mi" if s.units == "km" else "km")
        elif key == ord('o'):
            self.update_settings(show_offscreen_indicators=not s.show_offscreen_indicators)
        elif key in (ord('['), ord(']')):
            step = -5.0 if key == ord('[') else 5.0
            lo, hi = HFOV_RANGE
            self.update_settings(hfov_deg=max(lo, min(hi, s.hfov_deg + step)))
        elif key in (ord(','), ord('.')):
            step = -1.0 if key == ord(',') else 1.0
            self.update_settings(heading_offset_deg=s.heading_offset_deg + step)
        elif key in (ord('-'), ord('_'), ord('+'), ord('=')):
            factor = 1 / 1.25 if key in (ord('-'), ord('_')) else 1.25
            lo, hi = DISTANCE_RANGE_KM
            self.update_settings(max_distance_km=max(lo, min(hi, s.max_distance_km * factor)))
        elif key in (ord('a'), ord('s')):
            step = -SMOOTHING_STEP if key == ord('a') else SMOOTHING_STEP
            self.update_settings(smoothing=round(max(0.0, min(0.3, s.smoothing + step)), 3))

        return True

    def handle_mouse(self, event, x, y, flags, param):
        """Translate window mouse events into pointer events."""
        dpr = self.surface.device_pixel_ratio
        pointer = PointerEvent(x / dpr, y / dpr)
        kinds = {
            cv2.EVENT_LBUTTONDOWN: EventKind.POINTER_DOWN,
            cv2.EVENT_MOUSEMOVE: EventKind.POINTER_MOVE,
            cv2.EVENT_LBUTTONUP: EventKind.POINTER_UP,
        }
        if event in kinds:
            self.platform.bus.dispatch(kinds[event], pointer)

    # -- rendering ---------------------------------------------------------

    def render(self, frame: Optional[np.ndarray], now: float) -> np.ndarray:
        """Composite the overlay for one frame and return the image."""
        surface = self.surface
        if frame is not None:
            surface.set_background(frame)
        else:
            surface.clear()

        if self.show_help:
            self.render_help()
            return surface.image

        frame_input = FrameInput(
            width=surface.width,
            height=surface.height,
            settings=self.settings,
            user=self.config.observer,
            cities=self.cities or [],
            orientation=self.stream.latest.get() if self.stream is not None else None,
        )
        layout = layout_frame(self.layout_state, frame_input, now, surface.measure_text)
        try:
            draw_frame(surface, layout, self.layout_state.config)
        except Exception:
            logger.exception("Overlay drawing failed for this frame")
        self.render_status(frame_input)
        return surface.image

    def render_status(self, frame_input: FrameInput):
        sample = frame_input.orientation
        source = self.stream.get_source().value if self.stream is not None else "none"
        heading = sample.heading_deg if sample is not None else 0.0
        pitch = sample.pitch_deg if sample is not None else 0.0
        s = self.settings
        text = (f"{source}  hdg {heading:5.1f}  pitch {pitch:+5.1f}  "
                f"hfov {s.hfov_deg:.0f}  range {s.max_distance_km:.0f} km  FPS {self.fps}")
        self.surface.global_alpha = 1.0
        self.surface.fill_text(text, 10, self.surface.height - 10, COLOR_STATUS)

    def render_help(self):
        """Render help overlay with keyboard shortcuts."""
        surface = self.surface
        surface.global_alpha = 1.0
        surface.fill_round_rect(40, 40, surface.width - 80, surface.height - 80, 12,
                                COLOR_HELP_PANEL)
        y = 80
        surface.fill_text("AR Cities - Keyboard Shortcuts", 70, y, COLOR_HELP_TITLE)
        y += 40
        for key, desc in SHORTCUTS:
            surface.fill_text(f"[{key}]", 70, y, COLOR_HELP_KEY)
            surface.fill_text(desc, 170, y, COLOR_HELP_TEXT)
            y += 28

    # -- main loop ---------------------------------------------------------

    def run(self):
        """Main application loop."""
        self.setup_cities()
        self.setup_orientation()
        self.setup_camera()

        window = self.config.display.window_name
        cv2.namedWindow(window, cv2.WINDOW_NORMAL)
        if self.config.display.fullscreen:
            cv2.setWindowProperty(window, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
        cv2.setMouseCallback(window, self.handle_mouse)

        logger.info("Press 'H' for help, 'Q' to quit")

        self.running = True
        frame_count = 0
        last_fps_time = time.time()

        try:
            while self.running:
                self.loop.run_pending()

                frame = None
                if self.camera is not None:
                    ok, frame = self.camera.read()
                    if not ok:
                        frame = None

                output = self.render(frame, self.loop.time())

                frame_count += 1
                if time.time() - last_fps_time >= 1.0:
                    self.fps = frame_count
                    frame_count = 0
                    last_fps_time = time.time()

                cv2.imshow(window, output)
                if not self.handle_key(cv2.waitKey(1)):
                    break

        except KeyboardInterrupt:
            logger.info("Stopping...")

        finally:
            self.cleanup()

    def cleanup(self):
        """Clean up resources."""
        self.running = False

        if self.stream is not None:
            self.stream.stop()
        if self.link is not None:
            self.link.close()
        if self.camera is not None:
            self.camera.release()

        cv2.destroyAllWindows()
        logger.info("Cleanup complete")
