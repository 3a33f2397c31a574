"""
Device transport - thin adapter over the ZK terminal protocol

Opens one connection per call, issues a single primitive (health check,
attendance read, user list read, remote enroll, cancel capture) and always
disconnects.
No business logic lives here: rows come back exactly as the terminal
reported them and failures are reduced to one of three kinds.
"""
import logging
import math
import socket
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from zk import ZK
from zk.exception import ZKErrorConnection, ZKErrorResponse, ZKNetworkError

_log = logging.getLogger(__name__)

UNREACHABLE = "UNREACHABLE"
AUTH_REJECTED = "AUTH_REJECTED"
TIMEOUT = "TIMEOUT"


class TransportError(Exception):
    """Terminal call failed; ``kind`` is UNREACHABLE, AUTH_REJECTED or TIMEOUT"""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class DeviceConnectParams(BaseModel):
    """Everything needed to open a session with one terminal"""
    host: str
    port: int = 4370
    timeout_ms: int = 15000
    inport: Optional[int] = None
    comm_key: Optional[str] = Field(default=None, repr=False)


class DeviceUser(BaseModel):
    """One enrolled user as listed by the terminal"""
    uid: Optional[int] = None
    user_id: Optional[str] = None
    name: Optional[str] = None


class DeviceTransport:
    """
    Primitive terminal operations.

    Every call is synchronous, single attempt and bounded by
    ``params.timeout_ms``; implementations raise TransportError on failure.
    """

    def health_check(self, params: DeviceConnectParams) -> None:
        raise NotImplementedError

    def fetch_attendance(
        self,
        params: DeviceConnectParams,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def fetch_users(self, params: DeviceConnectParams) -> List[DeviceUser]:
        raise NotImplementedError

    def start_enroll(
        self,
        params: DeviceConnectParams,
        uid: int,
        user_id: str,
        finger_index: int = 0,
        deadline_ms: Optional[int] = None,
    ) -> bool:
        """Put the terminal into enroll mode for an existing user; True once a template was stored"""
        raise NotImplementedError

    def cancel_capture(self, params: DeviceConnectParams) -> None:
        raise NotImplementedError


def _comm_key_to_password(comm_key: Optional[str]) -> int:
    if comm_key is None or comm_key.strip() == "":
        return 0
    value = comm_key.strip()
    if not value.isdigit():
        raise TransportError(AUTH_REJECTED, "Device comm key must be numeric for this terminal protocol.")
    return int(value)


def _classify(exc: Exception) -> TransportError:
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if isinstance(exc, socket.timeout) or "timed out" in lowered or "timeout" in lowered:
        return TransportError(TIMEOUT, f"Device did not respond in time: {message}")
    if "unauth" in lowered or "password" in lowered or "comm key" in lowered:
        return TransportError(AUTH_REJECTED, f"Device rejected the comm key: {message}")
    return TransportError(UNREACHABLE, f"Device is unreachable: {message}")


class ZKDeviceTransport(DeviceTransport):
    """DeviceTransport backed by pyzk"""

    def __init__(self, force_udp: bool = False, ommit_ping: bool = True):
        self.force_udp = force_udp
        self.ommit_ping = ommit_ping

    def _run(
        self,
        params: DeviceConnectParams,
        action: str,
        fn: Callable[[Any], Any],
        deadline_ms: Optional[int] = None,
    ) -> Any:
        """
        Connect, run ``fn(conn)``, disconnect, all within the device deadline.

        pyzk's own socket timeout bounds each read; the executor bounds the
        whole conversation so a terminal that trickles data cannot hold the
        request past ``timeout_ms`` (or ``deadline_ms`` for calls that wait
        on a person at the terminal).
        """
        password = _comm_key_to_password(params.comm_key)
        socket_timeout = max(1, math.ceil(params.timeout_ms / 1000))
        deadline_ms = deadline_ms or params.timeout_ms

        def conversation():
            zk = ZK(
                params.host,
                port=params.port,
                timeout=socket_timeout,
                password=password,
                force_udp=self.force_udp,
                ommit_ping=self.ommit_ping,
            )
            conn = None
            try:
                conn = zk.connect()
                return fn(conn)
            finally:
                if conn is not None:
                    try:
                        conn.disconnect()
                    except (ZKErrorConnection, ZKErrorResponse, ZKNetworkError, OSError) as e:
                        _log.warning("Device disconnect failed: host=%s error=%s", params.host, e)

        _log.info("Device %s: host=%s port=%s deadline_ms=%s", action, params.host, params.port, deadline_ms)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="zk-transport")
        try:
            future = executor.submit(conversation)
            return future.result(timeout=deadline_ms / 1000)
        except FutureTimeoutError:
            _log.warning("Device %s exceeded deadline: host=%s deadline_ms=%s", action, params.host, deadline_ms)
            raise TransportError(TIMEOUT, f"Device did not respond within {deadline_ms} ms.")
        except TransportError:
            raise
        except (ZKErrorConnection, ZKErrorResponse, ZKNetworkError, OSError) as e:
            error = _classify(e)
            _log.warning("Device %s failed: host=%s kind=%s error=%s", action, params.host, error.kind, e)
            raise error
        finally:
            executor.shutdown(wait=False)

    def health_check(self, params: DeviceConnectParams) -> None:
        self._run(params, "health_check", lambda conn: conn.get_firmware_version())

    def fetch_attendance(
        self,
        params: DeviceConnectParams,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        # The protocol has no server-side window; the caller partitions by date
        def read(conn):
            conn.disable_device()
            try:
                records = conn.get_attendance() or []
            finally:
                conn.enable_device()
            return [
                {
                    "user_id": record.user_id,
                    "uid": record.uid,
                    "timestamp": record.timestamp,
                    "punch": record.punch,
                    "verify_status": record.status,
                }
                for record in records
            ]

        rows = self._run(params, "fetch_attendance", read)
        _log.info("Device returned %s attendance rows: host=%s", len(rows), params.host)
        return rows

    def fetch_users(self, params: DeviceConnectParams) -> List[DeviceUser]:
        def read(conn):
            return [
                DeviceUser(
                    uid=user.uid,
                    user_id=str(user.user_id) if user.user_id is not None else None,
                    name=user.name or None,
                )
                for user in (conn.get_users() or [])
            ]

        return self._run(params, "fetch_users", read)

    def start_enroll(
        self,
        params: DeviceConnectParams,
        uid: int,
        user_id: str,
        finger_index: int = 0,
        deadline_ms: Optional[int] = None,
    ) -> bool:
        # enroll_user blocks until the person has scanned three times or the terminal gives up
        def enroll(conn):
            return bool(conn.enroll_user(uid=uid, temp_id=finger_index, user_id=user_id))

        enrolled = self._run(params, "start_enroll", enroll, deadline_ms=deadline_ms)
        _log.info("Device enroll finished: host=%s uid=%s finger=%s enrolled=%s", params.host, uid, finger_index, enrolled)
        return enrolled

    def cancel_capture(self, params: DeviceConnectParams) -> None:
        self._run(params, "cancel_capture", lambda conn: conn.cancel_capture())
