"""
Tests for the pyzk-backed terminal transport
"""
import threading
from datetime import datetime
from types import SimpleNamespace

import pytest
from zk.exception import ZKErrorResponse, ZKNetworkError

from app.services import device_transport
from app.services.device_transport import (
    AUTH_REJECTED,
    TIMEOUT,
    UNREACHABLE,
    DeviceConnectParams,
    TransportError,
    ZKDeviceTransport,
)


class FakeConnection:
    def __init__(self, behaviour):
        self.behaviour = behaviour
        self.disconnected = False
        self.events = []

    def get_firmware_version(self):
        self.behaviour.get("on_call", lambda: None)()
        return "Ver 6.60"

    def disable_device(self):
        self.events.append("disable")

    def enable_device(self):
        self.events.append("enable")

    def get_attendance(self):
        return self.behaviour.get("attendance", [])

    def get_users(self):
        return self.behaviour.get("users", [])

    def cancel_capture(self):
        self.events.append("cancel_capture")

    def enroll_user(self, uid=0, temp_id=0, user_id=""):
        self.events.append(("enroll_user", uid, temp_id, user_id))
        self.behaviour.get("on_call", lambda: None)()
        return self.behaviour.get("enrolled", True)

    def disconnect(self):
        self.disconnected = True


class FakeZK:
    """Stands in for zk.ZK; records constructor args and the connection it hands out"""
    instances = []

    def __init__(self, host, port=4370, timeout=60, password=0, force_udp=False, ommit_ping=False, **kwargs):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.password = password
        self.conn = FakeConnection(FakeZK.behaviour)
        FakeZK.instances.append(self)

    def connect(self):
        error = FakeZK.behaviour.get("connect_error")
        if error is not None:
            raise error
        return self.conn


@pytest.fixture
def fake_zk(monkeypatch):
    FakeZK.instances = []
    FakeZK.behaviour = {}
    monkeypatch.setattr(device_transport, "ZK", FakeZK)
    return FakeZK


def _params(**overrides):
    data = {"host": "192.168.1.201", "port": 4370, "timeout_ms": 2000, "comm_key": "123456"}
    data.update(overrides)
    return DeviceConnectParams(**data)


def test_health_check_passes_connection_settings(fake_zk):
    ZKDeviceTransport().health_check(_params(timeout_ms=2500))

    zk = fake_zk.instances[0]
    assert zk.host == "192.168.1.201"
    assert zk.password == 123456
    assert zk.timeout == 3
    assert zk.conn.disconnected is True


def test_non_numeric_comm_key_rejected_before_connecting(fake_zk):
    with pytest.raises(TransportError) as exc_info:
        ZKDeviceTransport().health_check(_params(comm_key="abc"))

    assert exc_info.value.kind == AUTH_REJECTED
    assert fake_zk.instances == []


def test_blank_comm_key_uses_no_password(fake_zk):
    ZKDeviceTransport().health_check(_params(comm_key=None))
    assert fake_zk.instances[0].password == 0


def test_network_error_is_unreachable(fake_zk):
    fake_zk.behaviour["connect_error"] = ZKNetworkError("can't reach device (ping 192.168.1.201)")

    with pytest.raises(TransportError) as exc_info:
        ZKDeviceTransport().health_check(_params())

    assert exc_info.value.kind == UNREACHABLE


def test_unauthenticated_is_auth_rejected(fake_zk):
    fake_zk.behaviour["connect_error"] = ZKErrorResponse("Unauthenticated")

    with pytest.raises(TransportError) as exc_info:
        ZKDeviceTransport().health_check(_params())

    assert exc_info.value.kind == AUTH_REJECTED


def test_socket_timeout_is_timeout(fake_zk):
    fake_zk.behaviour["connect_error"] = ZKNetworkError("timed out")

    with pytest.raises(TransportError) as exc_info:
        ZKDeviceTransport().health_check(_params())

    assert exc_info.value.kind == TIMEOUT


def test_slow_terminal_hits_deadline(fake_zk):
    release = threading.Event()
    fake_zk.behaviour["on_call"] = lambda: release.wait(5)

    try:
        with pytest.raises(TransportError) as exc_info:
            ZKDeviceTransport().health_check(_params(timeout_ms=200))
    finally:
        release.set()

    assert exc_info.value.kind == TIMEOUT
    assert "200 ms" in exc_info.value.message


def test_fetch_attendance_maps_records_and_reenables(fake_zk):
    fake_zk.behaviour["attendance"] = [
        SimpleNamespace(user_id="1001", uid=1, timestamp=datetime(2024, 1, 2, 8, 0), punch=0, status=1),
    ]

    rows = ZKDeviceTransport().fetch_attendance(_params())

    assert rows == [{
        "user_id": "1001",
        "uid": 1,
        "timestamp": datetime(2024, 1, 2, 8, 0),
        "punch": 0,
        "verify_status": 1,
    }]
    conn = fake_zk.instances[0].conn
    assert conn.events == ["disable", "enable"]
    assert conn.disconnected is True


def test_fetch_users(fake_zk):
    fake_zk.behaviour["users"] = [
        SimpleNamespace(uid=1, user_id="1001", name="Ana"),
        SimpleNamespace(uid=2, user_id="1002", name=""),
    ]

    users = ZKDeviceTransport().fetch_users(_params())

    assert [(u.uid, u.user_id, u.name) for u in users] == [(1, "1001", "Ana"), (2, "1002", None)]


def test_cancel_capture(fake_zk):
    ZKDeviceTransport().cancel_capture(_params())
    assert fake_zk.instances[0].conn.events == ["cancel_capture"]


def test_start_enroll_sends_user_and_finger(fake_zk):
    enrolled = ZKDeviceTransport().start_enroll(_params(), uid=7, user_id="1001", finger_index=3)

    assert enrolled is True
    conn = fake_zk.instances[0].conn
    assert conn.events == [("enroll_user", 7, 3, "1001")]
    assert conn.disconnected is True


def test_start_enroll_reports_failed_capture(fake_zk):
    fake_zk.behaviour["enrolled"] = False

    assert ZKDeviceTransport().start_enroll(_params(), uid=7, user_id="1001") is False


def test_start_enroll_waits_past_the_read_timeout(fake_zk):
    """The scan wait is bounded by its own deadline, not the per-call timeout"""
    fake_zk.behaviour["on_call"] = lambda: threading.Event().wait(0.4)

    enrolled = ZKDeviceTransport().start_enroll(_params(timeout_ms=200), uid=7, user_id="1001", deadline_ms=3000)

    assert enrolled is True


def test_start_enroll_deadline(fake_zk):
    release = threading.Event()
    fake_zk.behaviour["on_call"] = lambda: release.wait(5)

    try:
        with pytest.raises(TransportError) as exc_info:
            ZKDeviceTransport().start_enroll(_params(), uid=7, user_id="1001", deadline_ms=300)
    finally:
        release.set()

    assert exc_info.value.kind == TIMEOUT
    assert "300 ms" in exc_info.value.message
