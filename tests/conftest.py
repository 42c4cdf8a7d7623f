import pytest

from ar_cities.events import EventLoop, Platform
from ar_cities.surface import DrawSurface


class RecordingSurface(DrawSurface):
    """Draw surface that records every call instead of rasterising."""

    CHAR_WIDTH = 7.0

    def __init__(self, fail_on=None):
        self.calls = []
        self.global_alpha = 1.0
        self.size = None
        self.fail_on = fail_on

    def _record(self, name, *args):
        if name == self.fail_on:
            raise RuntimeError(f"{name} failed")
        self.calls.append((name, self.global_alpha) + args)

    def resize(self, width, height, device_pixel_ratio=None):
        self.size = (width, height)

    def clear(self):
        self._record("clear")

    def fill_round_rect(self, x, y, w, h, radius, color):
        self._record("fill_round_rect", x, y, w, h)

    def stroke_round_rect(self, x, y, w, h, radius, color, line_width=1):
        self._record("stroke_round_rect", x, y, w, h)

    def fill_path(self, points, color):
        self._record("fill_path", tuple(points))

    def stroke_path(self, points, color, line_width=1):
        self._record("stroke_path", tuple(points))

    def measure_text(self, text):
        return len(text) * self.CHAR_WIDTH, 14.0

    def fill_text(self, text, x, y, color, align="left"):
        self._record("fill_text", text, x, y, align)

    def named(self, name):
        return [c for c in self.calls if c[0] == name]


def fixed_width_measure(text):
    return len(text) * RecordingSurface.CHAR_WIDTH, 14.0


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def loop():
    return EventLoop(realtime=False)


@pytest.fixture
def platform(loop):
    return Platform(loop)
