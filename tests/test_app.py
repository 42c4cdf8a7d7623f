import cv2
import pytest

from ar_cities import app as app_module
from ar_cities.app import CityAR
from ar_cities.config import Config
from ar_cities.events import EventLoop, Platform
from ar_cities.models import City, SourceKind
from ar_cities.orientation import FusionState

NYC = City("New York", "US", 40.7128, -74.0060, 8_000_000)


@pytest.fixture
def app():
    config = Config()
    config.camera.width, config.camera.height = 320, 240
    city_ar = CityAR(config, cities=[NYC])
    city_ar.loop = EventLoop(realtime=False)
    city_ar.platform = Platform(city_ar.loop)
    city_ar.setup_orientation()
    return city_ar


def test_starts_without_hardware(app):
    assert app.link is None
    assert app.stream.state is FusionState.DEVICE_FUSION_ACTIVE


def test_render_without_camera(app):
    image = app.render(None, 0.0)
    assert image.shape == (240, 320, 3)
    assert image.any()  # horizon and status line


def test_keys_replace_settings_snapshot(app):
    before = app.settings
    assert app.handle_key(ord("u"))
    assert app.settings.units == "mi"
    assert before.units == "km"

    app.handle_key(ord("s"))
    assert app.settings.smoothing == pytest.approx(0.2)
    assert app.stream.smoothing == pytest.approx(0.2)

    app.handle_key(ord("."))
    assert app.settings.heading_offset_deg == 1.0

    for _ in range(30):
        app.handle_key(ord("["))
    assert app.settings.hfov_deg == 20.0

    app.handle_key(ord("-"))
    assert app.settings.max_distance_km == pytest.approx(800.0)

    app.handle_key(ord("o"))
    assert app.settings.show_offscreen_indicators


def test_quit_keys(app):
    assert app.handle_key(-1)
    assert not app.handle_key(ord("q"))
    assert not app.handle_key(27)


def test_mouse_drag_steers_virtual_heading(app):
    app.loop.advance(2.1)
    assert app.stream.get_source() is SourceKind.VIRTUAL

    app.handle_mouse(cv2.EVENT_LBUTTONDOWN, 100, 100, 0, None)
    app.handle_mouse(cv2.EVENT_MOUSEMOVE, 150, 100, 0, None)
    app.handle_mouse(cv2.EVENT_LBUTTONUP, 150, 100, 0, None)
    assert app.stream.attitude.yaw == pytest.approx(5.0)


def test_draw_failure_is_confined_to_frame(app, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise RuntimeError("surface lost")

    monkeypatch.setattr(app_module, "draw_frame", broken)
    image = app.render(None, 0.0)
    assert image.shape == (240, 320, 3)
    assert "Overlay drawing failed" in caplog.text


def test_help_overlay(app):
    app.handle_key(ord("h"))
    assert app.show_help
    image = app.render(None, 0.0)
    assert image[60, 60].any()
