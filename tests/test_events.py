import pytest

from ar_cities.events import (
    EventBus,
    EventKind,
    EventLoop,
    Platform,
    PointerEvent,
    SensorUnavailable,
)


def test_timers_fire_in_deadline_order(loop):
    fired = []
    loop.call_later(0.3, lambda: fired.append("b"))
    loop.call_later(0.1, lambda: fired.append("a"))
    loop.call_later(0.5, lambda: fired.append("c"))

    loop.advance(0.4)
    assert fired == ["a", "b"]
    loop.advance(0.2)
    assert fired == ["a", "b", "c"]


def test_virtual_clock_reports_timer_deadline_inside_callback(loop):
    seen = []
    loop.call_later(0.25, lambda: seen.append(loop.time()))
    loop.advance(1.0)
    assert seen == [pytest.approx(0.25)]
    assert loop.time() == pytest.approx(1.0)


def test_cancelled_timer_does_not_fire(loop):
    fired = []
    timer = loop.call_later(0.1, lambda: fired.append(1))
    timer.cancel()
    loop.advance(1.0)
    assert fired == []


def test_periodic_timer_repeats_until_cancelled(loop):
    fired = []
    timer = loop.call_every(0.1, lambda: fired.append(loop.time()))
    loop.advance(0.55)
    assert len(fired) == 5
    timer.cancel()
    loop.advance(1.0)
    assert len(fired) == 5


def test_periodic_timer_can_cancel_itself(loop):
    fired = []

    def tick():
        fired.append(1)
        timer.cancel()

    timer = loop.call_every(0.1, tick)
    loop.advance(1.0)
    assert fired == [1]


def test_call_every_rejects_non_positive_interval(loop):
    with pytest.raises(ValueError):
        loop.call_every(0, lambda: None)


def test_advance_requires_virtual_clock():
    with pytest.raises(RuntimeError):
        EventLoop(realtime=True).advance(1.0)


def test_bus_dispatch_and_remove():
    bus = EventBus()
    got = []
    remove = bus.add_listener(EventKind.POINTER_MOVE, got.append)
    bus.dispatch(EventKind.POINTER_MOVE, PointerEvent(1, 2))
    bus.dispatch(EventKind.POINTER_DOWN, PointerEvent(3, 4))
    assert got == [PointerEvent(1, 2)]

    remove()
    remove()  # idempotent
    bus.dispatch(EventKind.POINTER_MOVE, PointerEvent(5, 6))
    assert len(got) == 1
    assert bus.listener_count() == 0


def test_platform_without_factory_has_no_sensor(loop):
    with pytest.raises(SensorUnavailable):
        Platform(loop).create_orientation_sensor(60)
