"""
Screen-space label layout and declutter.

Each frame the catalog is reduced to the cities within range, ordered by
population, and placed greedily: a city inside the horizontal field of
view gets a label card centred on its azimuth just above the horizon;
one outside it gets an edge indicator on the side it lies on. Collisions
are resolved by sliding a label vertically in row-sized steps, alternating
up and down, within a fixed step budget. Labels that find no slot are
skipped for this frame only.

Fade targeting is keyed on range/FOV membership, not on successful
placement: a label that lost its slot keeps fading in and shows up at
full strength as soon as it finds room.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .config import LayoutConfig, Settings
from .fade import FadeTracker
from .geo import KM_TO_MI, haversine_distance_km, initial_bearing_deg, wrap180
from .models import Candidate, City, LatLon, OrientationSample, PlacementRect
from .projection import (
    azimuth_to_screen_x,
    edge_side,
    estimate_vfov_deg,
    is_within_fov,
    pitch_to_screen_y,
)
from .surface import DrawSurface

logger = logging.getLogger(__name__)

MeasureText = Callable[[str], Tuple[float, float]]

# RGBA, alpha in 0..1
COLOR_HORIZON = (180, 200, 220, 0.25)
COLOR_CARD_FILL = (0, 0, 0, 0.45)
COLOR_CARD_STROKE = (255, 255, 255, 0.2)
COLOR_LABEL_TEXT = (255, 255, 255, 1.0)
COLOR_CHEVRON = (255, 255, 255, 0.6)
COLOR_EDGE_TEXT = (255, 255, 255, 0.9)

CHEVRON_LENGTH_PX = 10
CHEVRON_SPREAD_PX = 6
EDGE_TEXT_OFFSET_PX = 16
TEXT_INSET_PX = 6


@dataclass(frozen=True)
class FrameInput:
    """Immutable per-frame snapshot handed to the layout engine."""
    width: float
    height: float
    settings: Settings
    user: LatLon
    cities: Sequence[City]
    orientation: Optional[OrientationSample] = None


@dataclass
class Placement:
    """A placed label or edge indicator."""
    key: str
    text: str
    rect: PlacementRect
    alpha: float
    anchor_x: float
    side: Optional[str] = None  # "left"/"right" for edge indicators


@dataclass
class FrameLayout:
    """Result of one layout pass."""
    width: float
    height: float
    horizon_y: float
    dt: float
    labels: List[Placement] = field(default_factory=list)
    left_edge: List[Placement] = field(default_factory=list)
    right_edge: List[Placement] = field(default_factory=list)
    visible_keys: Set[str] = field(default_factory=set)
    dropped_keys: List[str] = field(default_factory=list)

    @property
    def edges(self) -> List[Placement]:
        return self.left_edge + self.right_edge


class LayoutState:
    """State carried between frames: fade alphas and the previous frame time."""

    def __init__(self, config: Optional[LayoutConfig] = None):
        self.config = config or LayoutConfig()
        self.fade = FadeTracker(
            fade_in_per_s=self.config.fade_in_per_s,
            fade_out_per_s=self.config.fade_out_per_s,
            max_dt=self.config.max_frame_dt_s,
        )
        self.last_frame_time: Optional[float] = None

    def frame_dt(self, now: float) -> float:
        """Seconds since the previous frame, clamped; 0 on the first frame."""
        if self.last_frame_time is None:
            dt = 0.0
        else:
            dt = max(0.0, min(self.config.max_frame_dt_s, now - self.last_frame_time))
        self.last_frame_time = now
        return dt


def build_candidates(cities: Sequence[City], user: LatLon,
                     max_distance_km: float) -> List[Candidate]:
    """Range and bearing for every city within ``max_distance_km``, in input order."""
    if not cities:
        return []

    lats = np.array([c.lat for c in cities], dtype=float)
    lons = np.array([c.lon for c in cities], dtype=float)
    dist = haversine_distance_km(user.lat, user.lon, lats, lons)
    bearing = initial_bearing_deg(user.lat, user.lon, lats, lons)

    in_range = np.flatnonzero(dist <= max_distance_km)
    return [
        Candidate(city=cities[i], distance_km=float(dist[i]), bearing_deg=float(bearing[i]))
        for i in in_range
    ]


def format_label(city: City, distance_km: float, units: str) -> str:
    """Compose '<name>, <country> - <distance> <units> - Pop ~<population>'."""
    dist = distance_km if units == "km" else distance_km * KM_TO_MI
    dist_str = f"{dist:.0f}" if dist >= 100 else f"{dist:.1f}"
    pop = city.population
    if pop >= 1_000_000:
        pop_str = f"~{pop / 1_000_000:.1f}M"
    else:
        pop_str = f"~{round(pop / 1000)}k"
    return f"{city.name}, {city.country} - {dist_str} {units} - Pop {pop_str}"


def find_free_y(rect: PlacementRect, placed: Sequence[PlacementRect], height: float,
                config: Optional[LayoutConfig] = None) -> Optional[float]:
    """
    Search for a vertical position where ``rect`` overlaps nothing in ``placed``.

    Probes the starting y, then alternately one step up and one step down,
    each probe clamped into [0, height - rect.h]. Returns None when the step
    budget runs out.
    """
    config = config or LayoutConfig()
    step = max(config.min_step_px, rect.h + config.step_gap_px)
    max_steps = math.ceil(height / step) + 2

    offsets = [0.0]
    for i in range(1, max_steps + 1):
        offsets.extend((-i * step, i * step))

    tried = set()
    for offset in offsets:
        y = max(0.0, min(height - rect.h, rect.y + offset))
        if y in tried:
            continue
        tried.add(y)
        probe = rect.moved_to(y)
        if not any(p.overlaps(probe) for p in placed):
            return y
    return None


def layout_frame(state: LayoutState, frame: FrameInput, now: float,
                 measure_text: MeasureText) -> FrameLayout:
    """
    Place labels and edge indicators for one frame and advance the fades.

    ``state.fade`` is mutated exactly once, after placement. Placement
    alphas are the values from before this frame's fade step.
    """
    cfg = state.config
    settings = frame.settings
    width, height = float(frame.width), float(frame.height)

    heading = frame.orientation.heading_deg if frame.orientation is not None else 0.0
    pitch = frame.orientation.pitch_deg if frame.orientation is not None else 0.0

    vfov = estimate_vfov_deg(settings.hfov_deg, width, height)
    horizon_y = pitch_to_screen_y(pitch, vfov, height)
    layout = FrameLayout(width=width, height=height, horizon_y=horizon_y,
                         dt=state.frame_dt(now))

    candidates = build_candidates(frame.cities, frame.user, settings.max_distance_km)
    candidates.sort(key=lambda c: c.city.population, reverse=True)

    line_h = min(cfg.line_height_px, height)
    label_base_y = max(0.0, min(height - line_h, horizon_y - cfg.horizon_gap_px))

    for cand in candidates:
        key = cand.city.key
        layout.visible_keys.add(key)

        delta_az = wrap180(cand.bearing_deg - heading)
        text = format_label(cand.city, cand.distance_km, settings.units)
        text_w, _ = measure_text(text)
        alpha = state.fade.alpha(key)

        if is_within_fov(delta_az, settings.hfov_deg):
            w = min(text_w + cfg.padding_px, width)
            anchor_x = azimuth_to_screen_x(delta_az, settings.hfov_deg, width)
            m = cfg.label_margin_px
            x = max(0.0, min(width - w - m, max(m, anchor_x - w / 2)))
            rect = PlacementRect(x, label_base_y - line_h, w, line_h)

            y = find_free_y(rect, [p.rect for p in layout.labels], height, cfg)
            if y is None:
                layout.dropped_keys.append(key)
                continue
            layout.labels.append(Placement(key, text, rect.moved_to(y), alpha, anchor_x))

        elif settings.show_offscreen_indicators:
            side = edge_side(delta_az)
            w = min(text_w + cfg.padding_px + CHEVRON_LENGTH_PX, width)
            mg = cfg.edge_margin_px
            x = mg if side == "left" else width - mg - w
            x = max(0.0, min(width - w, x))
            y0 = max(0.0, min(height - line_h, horizon_y - line_h / 2))
            rect = PlacementRect(x, y0, w, line_h)

            pool = layout.left_edge if side == "left" else layout.right_edge
            y = find_free_y(rect, [p.rect for p in pool], height, cfg)
            if y is None:
                layout.dropped_keys.append(key)
                continue
            anchor_x = mg if side == "left" else width - mg
            pool.append(Placement(key, text, rect.moved_to(y), alpha, anchor_x, side=side))

    state.fade.update(layout.visible_keys, layout.dt)

    logger.debug(
        f"Layout: {len(candidates)} in range, {len(layout.labels)} labels, "
        f"{len(layout.left_edge)}/{len(layout.right_edge)} edge, "
        f"{len(layout.dropped_keys)} dropped"
    )
    return layout


def draw_frame(surface: DrawSurface, layout: FrameLayout,
               config: Optional[LayoutConfig] = None) -> int:
    """
    Issue draw instructions for a layout.

    Returns:
        Number of labels and indicators drawn
    """
    cfg = config or LayoutConfig()
    threshold = cfg.draw_alpha_threshold
    drawn = 0

    surface.global_alpha = 1.0
    surface.stroke_path([(0, layout.horizon_y), (layout.width, layout.horizon_y)],
                        COLOR_HORIZON, 2)

    for p in layout.labels:
        if p.alpha <= threshold:
            continue
        r = p.rect
        surface.global_alpha = p.alpha
        surface.fill_round_rect(r.x, r.y, r.w, r.h, cfg.corner_radius_px, COLOR_CARD_FILL)
        surface.stroke_round_rect(r.x, r.y, r.w, r.h, cfg.corner_radius_px, COLOR_CARD_STROKE, 1)
        surface.fill_text(p.text, r.x + TEXT_INSET_PX, r.y + r.h - TEXT_INSET_PX,
                          COLOR_LABEL_TEXT)
        drawn += 1

    for p in layout.edges:
        if p.alpha <= threshold:
            continue
        r = p.rect
        cy = r.y + r.h / 2
        text_y = r.y + r.h - TEXT_INSET_PX
        tip = p.anchor_x
        back = tip + CHEVRON_LENGTH_PX if p.side == "left" else tip - CHEVRON_LENGTH_PX

        surface.global_alpha = p.alpha
        surface.stroke_path(
            [(back, cy - CHEVRON_SPREAD_PX), (tip, cy), (back, cy + CHEVRON_SPREAD_PX)],
            COLOR_CHEVRON, 2,
        )
        if p.side == "left":
            surface.fill_text(p.text, tip + EDGE_TEXT_OFFSET_PX, text_y, COLOR_EDGE_TEXT,
                              align="left")
        else:
            surface.fill_text(p.text, tip - EDGE_TEXT_OFFSET_PX, text_y, COLOR_EDGE_TEXT,
                              align="right")
        drawn += 1

    surface.global_alpha = 1.0
    return drawn


def render_frame(surface: DrawSurface, state: LayoutState, frame: FrameInput,
                 now: float) -> FrameLayout:
    """Layout and draw one frame on ``surface``."""
    surface.resize(frame.width, frame.height)
    surface.clear()
    layout = layout_frame(state, frame, now, surface.measure_text)
    draw_frame(surface, layout, state.config)
    return layout
