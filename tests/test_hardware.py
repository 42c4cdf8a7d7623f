import math
from types import SimpleNamespace

import pytest

from ar_cities import hardware
from ar_cities.config import HardwareConfig
from ar_cities.events import EventKind, SensorUnavailable
from ar_cities.hardware import MavlinkLink
from ar_cities.models import SourceKind
from ar_cities.orientation import FusionState, start_orientation


class FakeMessage(SimpleNamespace):
    def __init__(self, msg_type, **fields):
        super().__init__(**fields)
        self._type = msg_type

    def get_type(self):
        return self._type


class FakeConnection:
    def __init__(self, heartbeat=True):
        self.heartbeat = heartbeat
        self.target_system = 1
        self.target_component = 1
        self.queue = []
        self.requested = []
        self.closed = False
        self.mav = SimpleNamespace(request_data_stream_send=self._request)

    def _request(self, system, component, stream_id, rate, start):
        self.requested.append((stream_id, rate, start))

    def wait_heartbeat(self, timeout=None):
        return FakeMessage("HEARTBEAT") if self.heartbeat else None

    def recv_match(self, blocking=False):
        return self.queue.pop(0) if self.queue else None

    def close(self):
        self.closed = True


@pytest.fixture
def connection(monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(hardware.mavutil, "mavlink_connection", lambda port, baud: conn)
    return conn


@pytest.fixture
def link(platform, loop, connection):
    link = MavlinkLink(loop, platform.bus, HardwareConfig(mavlink_port="/dev/ttyACM0"))
    return link.connect()


def attitude(yaw_deg):
    half = math.radians(yaw_deg) / 2
    return FakeMessage("ATTITUDE_QUATERNION", q=[math.cos(half), 0.0, 0.0, math.sin(half)])


def test_connect_requests_streams(link, connection):
    assert link.is_connected
    assert [r[0] for r in connection.requested] == [1, 10, 11]
    assert all(r[1] == 50 and r[2] == 1 for r in connection.requested)


def test_missing_heartbeat_is_unavailable(platform, loop, monkeypatch):
    conn = FakeConnection(heartbeat=False)
    monkeypatch.setattr(hardware.mavutil, "mavlink_connection", lambda port, baud: conn)
    link = MavlinkLink(loop, platform.bus, HardwareConfig(mavlink_port="/dev/ttyACM0"))
    with pytest.raises(SensorUnavailable):
        link.connect()
    assert conn.closed
    assert not link.is_connected


def test_connection_error_is_unavailable(platform, loop, monkeypatch):
    def refuse(port, baud):
        raise OSError("could not open port")

    monkeypatch.setattr(hardware.mavutil, "mavlink_connection", refuse)
    link = MavlinkLink(loop, platform.bus, HardwareConfig(mavlink_port="/dev/ttyACM0"))
    with pytest.raises(SensorUnavailable, match="could not open port"):
        link.connect()


def test_auto_port_without_devices(platform, loop, monkeypatch):
    monkeypatch.setattr(hardware, "find_serial_ports", lambda: [])
    link = MavlinkLink(loop, platform.bus, HardwareConfig(mavlink_port="auto"))
    with pytest.raises(SensorUnavailable):
        link.connect()


def test_auto_detect_prefers_autopilot(monkeypatch):
    ports = [
        {"device": "/dev/ttyS0", "likely_autopilot": False},
        {"device": "/dev/ttyACM0", "likely_autopilot": True},
    ]
    monkeypatch.setattr(hardware, "find_serial_ports", lambda: ports)
    assert hardware.auto_detect_port() == "/dev/ttyACM0"


def scaled_imu(time_boot_ms, xacc=0, yacc=0, zacc=-1000, xgyro=0, ygyro=0, zgyro=0):
    """Body-frame specific force in mg (z = -1000 when level), rates in mrad/s."""
    return FakeMessage(
        "SCALED_IMU", time_boot_ms=time_boot_ms,
        xacc=xacc, yacc=yacc, zacc=zacc,
        xgyro=xgyro, ygyro=ygyro, zgyro=zgyro,
    )


@pytest.fixture
def raw_imu_stream(platform, loop, monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(hardware.mavutil, "mavlink_connection", lambda port, baud: conn)
    link = MavlinkLink(loop, platform.bus, HardwareConfig(
        mavlink_port="/dev/ttyACM0", use_autopilot_attitude=False)).connect()
    platform.sensor_factory = link.create_orientation_sensor
    stream = start_orientation(platform)
    assert stream.state is FusionState.DEVICE_FUSION_ACTIVE
    return link, stream


def test_scaled_imu_becomes_motion_event(link, platform):
    events = []
    platform.bus.add_listener(EventKind.MOTION, events.append)
    link.process_message(scaled_imu(1500, zgyro=1000))

    (event,) = events
    assert event.rotation_rate[0] == pytest.approx(math.degrees(1.0))
    # level board: gravity reads +1 g on z, as the filter expects
    assert event.acceleration_including_gravity == pytest.approx((0.0, 0.0, 9.80665))
    assert event.timestamp == pytest.approx(1.5)


def test_level_board_keeps_tilt_at_zero(raw_imu_stream):
    link, stream = raw_imu_stream
    stream.attitude.pitch, stream.attitude.roll = 5.0, -5.0
    for i in range(500):
        link.process_message(scaled_imu(i * 10))
    assert stream.attitude.pitch == pytest.approx(0.0, abs=0.01)
    assert stream.attitude.roll == pytest.approx(0.0, abs=0.01)


def test_nose_up_tilt_and_gyro_agree(raw_imu_stream):
    link, stream = raw_imu_stream
    # 30 degrees nose up, at rest
    for i in range(2000):
        link.process_message(scaled_imu(i * 10, xacc=500, zacc=-866))
    at_rest = stream.attitude.pitch
    assert at_rest == pytest.approx(30.0, abs=0.1)
    assert stream.attitude.roll == pytest.approx(0.0, abs=0.01)

    # pitching further nose up
    link.process_message(scaled_imu(20000, xacc=500, zacc=-866, ygyro=1000))
    link.process_message(scaled_imu(20010, xacc=500, zacc=-866, ygyro=1000))
    assert stream.attitude.pitch > at_rest
    assert stream.attitude.roll == pytest.approx(0.0, abs=0.01)


def test_right_wing_down_tilt_and_gyro_agree(raw_imu_stream):
    link, stream = raw_imu_stream
    # 20 degrees right wing down, at rest
    for i in range(2000):
        link.process_message(scaled_imu(i * 10, yacc=-342, zacc=-940))
    at_rest = stream.attitude.roll
    assert at_rest == pytest.approx(20.0, abs=0.1)
    assert stream.attitude.pitch == pytest.approx(0.0, abs=0.01)

    link.process_message(scaled_imu(20000, yacc=-342, zacc=-940, xgyro=1000))
    link.process_message(scaled_imu(20010, yacc=-342, zacc=-940, xgyro=1000))
    assert stream.attitude.roll > at_rest


def test_vfr_hud_becomes_heading_event(link, platform):
    events = []
    platform.bus.add_listener(EventKind.ORIENTATION, events.append)
    link.process_message(FakeMessage("VFR_HUD", heading=270))
    assert events[0].compass_heading == 270.0


def test_sensor_factory_requires_quaternion_trust(platform, loop, connection):
    link = MavlinkLink(loop, platform.bus, HardwareConfig(
        mavlink_port="/dev/ttyACM0", use_autopilot_attitude=False))
    link.connect()
    with pytest.raises(SensorUnavailable):
        link.create_orientation_sensor(60)


def test_attitude_quaternion_drives_generic_sensor(link, connection, platform, loop):
    platform.sensor_factory = link.create_orientation_sensor
    stream = start_orientation(platform, smoothing=0.3)
    assert stream.state is FusionState.GENERIC_SENSOR_ACTIVE

    connection.queue.append(attitude(45.0))
    loop.advance(0.05)
    assert link.messages_seen == 1
    assert stream.attitude.yaw == pytest.approx(45.0)

    loop.advance(5.0)
    assert stream.latest.get().heading_deg == pytest.approx(45.0, abs=1e-6)
    assert stream.get_source() is SourceKind.GENERIC_SENSOR

    stream.stop()
    assert link.sensor is None


def test_attitude_euler_drives_generic_sensor(link, connection, platform, loop):
    platform.sensor_factory = link.create_orientation_sensor
    stream = start_orientation(platform, smoothing=0.3)

    connection.queue.append(FakeMessage(
        "ATTITUDE", time_boot_ms=1000,
        roll=math.radians(-5.0), pitch=math.radians(10.0), yaw=math.radians(60.0),
        rollspeed=0.0, pitchspeed=0.0, yawspeed=0.0,
    ))
    loop.advance(0.05)

    assert stream.state is FusionState.GENERIC_SENSOR_ACTIVE
    assert stream.attitude.yaw == pytest.approx(60.0)
    assert stream.attitude.pitch == pytest.approx(10.0)
    assert stream.attitude.roll == pytest.approx(-5.0)
    assert link.sensor.quaternion is not None


def test_attitude_without_sensor_is_ignored(link):
    msg = FakeMessage("ATTITUDE", roll=0.0, pitch=0.0, yaw=1.0)
    assert link.process_message(msg) == "ATTITUDE"


def test_raw_imu_keeps_device_fusion_alive(platform, loop, monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(hardware.mavutil, "mavlink_connection", lambda port, baud: conn)
    link = MavlinkLink(loop, platform.bus, HardwareConfig(
        mavlink_port="/dev/ttyACM0", use_autopilot_attitude=False)).connect()
    link.start()
    platform.sensor_factory = link.create_orientation_sensor

    stream = start_orientation(platform)
    assert stream.state is FusionState.DEVICE_FUSION_ACTIVE

    conn.queue.append(FakeMessage("VFR_HUD", heading=90))
    loop.advance(3.0)
    assert stream.state is FusionState.DEVICE_FUSION_ACTIVE


def test_close_stops_polling(link, connection, loop):
    link.start()
    link.close()
    assert connection.closed
    assert not link.is_connected
    assert loop.next_deadline() is None
