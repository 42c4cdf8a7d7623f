"""
AR Cities
=========

Overlay cities on a live camera view at their true bearing, using
orientation sensor fusion and a decluttered screen-space label layout.

Main components:
- geo: great-circle distance, initial bearing, angle wrapping
- projection: linear azimuth/pitch to pixel mapping
- orientation: source selection, complementary filter and output smoothing
- fade: per-label fade alpha tracking
- layout: per-frame label placement, collision avoidance and drawing
- surface: immediate-mode drawing surfaces (OpenCV backend)
- hardware: MAVLink flight controller as orientation hardware
- app / cli: camera application and command-line interface
"""

__version__ = "0.1.0"

from .config import Config, Settings
from .models import (
    Candidate,
    City,
    LatLon,
    OrientationSample,
    PlacementRect,
    SourceKind,
)
from .events import EventBus, EventKind, EventLoop, Platform, SensorUnavailable
from .orientation import FusionState, OrientationStream, start_orientation
from .fade import FadeTracker
from .layout import FrameInput, FrameLayout, LayoutState, draw_frame, layout_frame, render_frame
from .surface import DrawSurface, OpenCVSurface
from .catalog import CatalogError, load_cities

__all__ = [
    "Config",
    "Settings",
    "Candidate",
    "City",
    "LatLon",
    "OrientationSample",
    "PlacementRect",
    "SourceKind",
    "EventBus",
    "EventKind",
    "EventLoop",
    "Platform",
    "SensorUnavailable",
    "FusionState",
    "OrientationStream",
    "start_orientation",
    "FadeTracker",
    "FrameInput",
    "FrameLayout",
    "LayoutState",
    "draw_frame",
    "layout_frame",
    "render_frame",
    "DrawSurface",
    "OpenCVSurface",
    "CatalogError",
    "load_cities",
    "__version__",
]
