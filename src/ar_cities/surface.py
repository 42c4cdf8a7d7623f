"""
Immediate-mode 2D drawing surfaces.

The layout engine only talks to ``DrawSurface``. ``OpenCVSurface`` renders
onto a BGR numpy frame, so overlays can be composited straight onto camera
images and shown with ``cv2.imshow``.

Coordinates are CSS-style pixels; the surface scales them by its device
pixel ratio. Colours are RGBA tuples with alpha in 0..1, multiplied by
``global_alpha`` at draw time.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence, Tuple

import cv2
import numpy as np

Color = Tuple[int, int, int, float]
Point = Tuple[float, float]


class DrawSurface(ABC):
    """Abstract drawing target."""

    global_alpha: float = 1.0

    @abstractmethod
    def resize(self, width: float, height: float,
               device_pixel_ratio: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def fill_round_rect(self, x: float, y: float, w: float, h: float, radius: float,
                        color: Color) -> None:
        ...

    @abstractmethod
    def stroke_round_rect(self, x: float, y: float, w: float, h: float, radius: float,
                          color: Color, line_width: float = 1) -> None:
        ...

    @abstractmethod
    def fill_path(self, points: Sequence[Point], color: Color) -> None:
        ...

    @abstractmethod
    def stroke_path(self, points: Sequence[Point], color: Color,
                    line_width: float = 1) -> None:
        ...

    @abstractmethod
    def measure_text(self, text: str) -> Tuple[float, float]:
        """Return (width, height) of ``text`` in CSS pixels."""

    @abstractmethod
    def fill_text(self, text: str, x: float, y: float, color: Color,
                  align: str = "left") -> None:
        """Draw ``text`` with its baseline at ``y``."""


class OpenCVSurface(DrawSurface):
    """
    Drawing surface backed by an OpenCV BGR image.

    Translucency is done per primitive: the primitive is drawn onto a copy
    of its bounding region, which is then blended back with
    ``cv2.addWeighted``.
    """

    FONT = cv2.FONT_HERSHEY_SIMPLEX

    def __init__(self, width: float = 1280, height: float = 720,
                 device_pixel_ratio: float = 1.0, font_scale: float = 0.5,
                 font_thickness: int = 1):
        self.font_scale = font_scale
        self.font_thickness = font_thickness
        self.global_alpha = 1.0
        self.width = 0.0
        self.height = 0.0
        self.device_pixel_ratio = max(1.0, device_pixel_ratio)
        self.image = np.zeros((1, 1, 3), dtype=np.uint8)
        self.resize(width, height)

    # -- sizing ------------------------------------------------------------

    def resize(self, width, height, device_pixel_ratio=None):
        if device_pixel_ratio is not None:
            self.device_pixel_ratio = max(1.0, device_pixel_ratio)
        self.width = float(width)
        self.height = float(height)
        px_w = int(np.floor(width * self.device_pixel_ratio))
        px_h = int(np.floor(height * self.device_pixel_ratio))
        if self.image.shape[:2] != (px_h, px_w):
            self.image = np.zeros((max(1, px_h), max(1, px_w), 3), dtype=np.uint8)

    def clear(self):
        self.image[:] = 0

    def set_background(self, frame: np.ndarray):
        """Copy a camera frame in as the backdrop, scaled to the surface."""
        h, w = self.image.shape[:2]
        if frame.shape[:2] != (h, w):
            frame = cv2.resize(frame, (w, h), interpolation=cv2.INTER_LINEAR)
        self.image[:] = frame

    # -- helpers -----------------------------------------------------------

    def _px(self, v: float) -> int:
        return int(round(v * self.device_pixel_ratio))

    @staticmethod
    def _bgr(color: Color) -> Tuple[int, int, int]:
        r, g, b = color[:3]
        return (int(b), int(g), int(r))

    def _blend(self, bbox: Tuple[int, int, int, int], color: Color,
               draw: Callable[[np.ndarray, int, int], None]):
        """Run ``draw(canvas, ox, oy)`` on the bbox region at the effective opacity."""
        alpha = self.global_alpha * (color[3] if len(color) > 3 else 1.0)
        if alpha <= 0:
            return

        img_h, img_w = self.image.shape[:2]
        x0, y0, x1, y1 = bbox
        x0, y0 = max(0, x0), max(0, y0)
        x1, y1 = min(img_w, x1), min(img_h, y1)
        if x1 <= x0 or y1 <= y0:
            return

        roi = self.image[y0:y1, x0:x1]
        if alpha >= 1.0:
            draw(roi, x0, y0)
            return
        overlay = roi.copy()
        draw(overlay, x0, y0)
        cv2.addWeighted(overlay, alpha, roi, 1 - alpha, 0, roi)

    def _rect_px(self, x, y, w, h, radius):
        px, py = self._px(x), self._px(y)
        pw, ph = max(1, self._px(w)), max(1, self._px(h))
        r = max(0, min(self._px(radius), pw // 2, ph // 2))
        return px, py, pw, ph, r

    # -- primitives --------------------------------------------------------

    def fill_round_rect(self, x, y, w, h, radius, color):
        px, py, pw, ph, r = self._rect_px(x, y, w, h, radius)
        bgr = self._bgr(color)

        def draw(canvas, ox, oy):
            lx, ty = px - ox, py - oy
            rx, by = lx + pw - 1, ty + ph - 1
            cv2.rectangle(canvas, (lx + r, ty), (rx - r, by), bgr, -1)
            cv2.rectangle(canvas, (lx, ty + r), (rx, by - r), bgr, -1)
            if r > 0:
                for cx, cy in ((lx + r, ty + r), (rx - r, ty + r),
                               (rx - r, by - r), (lx + r, by - r)):
                    cv2.circle(canvas, (cx, cy), r, bgr, -1, cv2.LINE_AA)

        self._blend((px - 1, py - 1, px + pw + 1, py + ph + 1), color, draw)

    def stroke_round_rect(self, x, y, w, h, radius, color, line_width=1):
        px, py, pw, ph, r = self._rect_px(x, y, w, h, radius)
        bgr = self._bgr(color)
        t = max(1, self._px(line_width))

        def draw(canvas, ox, oy):
            lx, ty = px - ox, py - oy
            rx, by = lx + pw - 1, ty + ph - 1
            cv2.line(canvas, (lx + r, ty), (rx - r, ty), bgr, t, cv2.LINE_AA)
            cv2.line(canvas, (lx + r, by), (rx - r, by), bgr, t, cv2.LINE_AA)
            cv2.line(canvas, (lx, ty + r), (lx, by - r), bgr, t, cv2.LINE_AA)
            cv2.line(canvas, (rx, ty + r), (rx, by - r), bgr, t, cv2.LINE_AA)
            if r > 0:
                corners = (
                    ((lx + r, ty + r), 180), ((rx - r, ty + r), 270),
                    ((rx - r, by - r), 0), ((lx + r, by - r), 90),
                )
                for center, start in corners:
                    cv2.ellipse(canvas, center, (r, r), 0, start, start + 90, bgr, t,
                                cv2.LINE_AA)

        self._blend((px - t, py - t, px + pw + t, py + ph + t), color, draw)

    def _points_px(self, points):
        return np.array([[self._px(x), self._px(y)] for x, y in points], dtype=np.int32)

    def _points_bbox(self, pts: np.ndarray, pad: int):
        x0, y0 = pts.min(axis=0)
        x1, y1 = pts.max(axis=0)
        return (int(x0) - pad, int(y0) - pad, int(x1) + pad + 1, int(y1) + pad + 1)

    def fill_path(self, points, color):
        if len(points) < 3:
            return
        pts = self._points_px(points)
        bgr = self._bgr(color)

        def draw(canvas, ox, oy):
            cv2.fillPoly(canvas, [(pts - (ox, oy)).astype(np.int32)], bgr, cv2.LINE_AA)

        self._blend(self._points_bbox(pts, 1), color, draw)

    def stroke_path(self, points, color, line_width=1):
        if len(points) < 2:
            return
        pts = self._points_px(points)
        bgr = self._bgr(color)
        t = max(1, self._px(line_width))

        def draw(canvas, ox, oy):
            cv2.polylines(canvas, [(pts - (ox, oy)).astype(np.int32)], False, bgr, t, cv2.LINE_AA)

        self._blend(self._points_bbox(pts, t), color, draw)

    def _text_size_px(self, text: str):
        scale = self.font_scale * self.device_pixel_ratio
        (tw, th), baseline = cv2.getTextSize(text, self.FONT, scale, self.font_thickness)
        return tw, th, baseline

    def measure_text(self, text):
        tw, th, baseline = self._text_size_px(text)
        return tw / self.device_pixel_ratio, (th + baseline) / self.device_pixel_ratio

    def fill_text(self, text, x, y, color, align="left"):
        tw, th, baseline = self._text_size_px(text)
        px, py = self._px(x), self._px(y)
        if align == "right":
            px -= tw
        elif align == "center":
            px -= tw // 2
        bgr = self._bgr(color)
        scale = self.font_scale * self.device_pixel_ratio

        def draw(canvas, ox, oy):
            cv2.putText(canvas, text, (px - ox, py - oy), self.FONT, scale, bgr,
                        self.font_thickness, cv2.LINE_AA)

        self._blend((px - 1, py - th - 1, px + tw + 1, py + baseline + 1), color, draw)
