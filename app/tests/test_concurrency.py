"""
Concurrency tests: exactly-once apply, one live enrollment per device, and
connect racing an apply.

Each worker thread gets its own Session on a file-backed SQLite database so
the database's own write locking is in play.
"""
import threading
import time
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import AlreadyAppliedError
from app.core.security import encrypt_device_secret
from app.db.base import Base
from app.models import BiometricDevice, DailyTimeRecord, Employee, EnrollmentSession, StagedSyncBatch
from app.models.enrollment_session import EnrollmentEndReason, EnrollmentStatus
from app.models.sync_batch import SyncBatchStatus
from app.services.attendance_writer import SqlAttendanceWriter
from app.services.device_registry import connect_device
from app.services.employee_directory import SqlEmployeeDirectory
from app.services.enrollment_service import start_session
from app.services.log_sync_service import apply_batch, pull_logs

COMPANY_ID = 1
ACTOR_ID = 10


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'sync.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    """One terminal and two employees; returns their ids"""
    db = session_factory()
    try:
        device = BiometricDevice(
            company_id=COMPANY_ID,
            code="MAIN-01",
            name="Main Entrance",
            device_model="ZK-F18",
            ip_address="192.168.1.201",
            port=4370,
            timeout_ms=5000,
            secret_encrypted=encrypt_device_secret("123456"),
            is_active=True,
            is_online=False,
        )
        people = [
            Employee(company_id=COMPANY_ID, employee_number="1001", first_name="Ana", last_name="Cruz", active=True),
            Employee(company_id=COMPANY_ID, employee_number="1002", first_name="Ben", last_name="Reyes", active=True),
        ]
        db.add(device)
        db.add_all(people)
        db.commit()
        return {"device_id": device.id, "employee_ids": [p.id for p in people]}
    finally:
        db.close()


def _stage_batch(session_factory, transport, device_id):
    transport.rows = [
        {"user_id": "1001", "timestamp": "2024-01-02 08:00", "punch": 0},
        {"user_id": "1001", "timestamp": "2024-01-02 17:00", "punch": 1},
        {"user_id": "1002", "timestamp": "2024-01-02 08:30", "punch": 0},
        {"user_id": "1002", "timestamp": "2024-01-02 17:30", "punch": 1},
    ]
    db = session_factory()
    try:
        batch = pull_logs(
            db,
            transport,
            SqlEmployeeDirectory(db),
            company_id=COMPANY_ID,
            device_id=device_id,
            date_from=date(2024, 1, 1),
            date_to=date(2024, 1, 7),
            actor_id=ACTOR_ID,
        )
        return batch.id
    finally:
        db.close()


def _apply_in_thread(session_factory, batch_id, results, errors, barrier=None):
    db = session_factory()
    try:
        if barrier is not None:
            barrier.wait(timeout=5)
        apply_batch(db, SqlAttendanceWriter(db), company_id=COMPANY_ID, batch_id=batch_id, actor_id=ACTOR_ID)
        results.append("applied")
    except AlreadyAppliedError:
        results.append("already")
    except Exception as e:
        errors.append(e)
    finally:
        db.close()


def _run(threads):
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert not any(thread.is_alive() for thread in threads)


def test_concurrent_applies_write_once(session_factory, seeded, transport):
    batch_id = _stage_batch(session_factory, transport, seeded["device_id"])
    barrier = threading.Barrier(2)
    results, errors = [], []

    _run([
        threading.Thread(target=_apply_in_thread, args=(session_factory, batch_id, results, errors, barrier))
        for _ in range(2)
    ])

    assert errors == []
    assert sorted(results) == ["already", "applied"]

    db = session_factory()
    try:
        batch = db.query(StagedSyncBatch).filter(StagedSyncBatch.id == batch_id).one()
        assert batch.status == SyncBatchStatus.APPLIED
        assert (batch.records_created, batch.records_updated, batch.records_skipped) == (2, 0, 0)
        assert db.query(DailyTimeRecord).count() == 2
    finally:
        db.close()


def test_concurrent_starts_leave_one_live_session(session_factory, seeded, transport, make_users):
    transport.users = make_users("1001")
    barrier = threading.Barrier(2)
    errors = []

    def start(employee_id):
        db = session_factory()
        try:
            barrier.wait(timeout=5)
            start_session(
                db,
                transport,
                SqlEmployeeDirectory(db),
                company_id=COMPANY_ID,
                device_id=seeded["device_id"],
                employee_id=employee_id,
                actor_id=ACTOR_ID,
            )
        except Exception as e:
            errors.append(e)
        finally:
            db.close()

    _run([threading.Thread(target=start, args=(employee_id,)) for employee_id in seeded["employee_ids"]])

    assert errors == []
    db = session_factory()
    try:
        sessions = db.query(EnrollmentSession).filter(EnrollmentSession.device_id == seeded["device_id"]).all()
        assert len(sessions) == 2
        live = [s for s in sessions if s.status == EnrollmentStatus.STARTED]
        assert len(live) == 1
        closed = [s for s in sessions if s.status == EnrollmentStatus.EXPIRED]
        assert [s.end_reason for s in closed] == [EnrollmentEndReason.SUPERSEDED]
    finally:
        db.close()


def test_connect_during_apply_does_not_lock_the_database(session_factory, seeded, transport):
    """A slow health check must not hold anything an apply waits on"""
    device_id = seeded["device_id"]
    batch_id = _stage_batch(session_factory, transport, device_id)
    checking = threading.Event()

    def slow_health_check(params):
        checking.set()
        time.sleep(1)

    transport.health_check = slow_health_check
    results, errors = [], []

    def connect():
        db = session_factory()
        try:
            connect_device(db, transport, company_id=COMPANY_ID, device_id=device_id, actor_id=ACTOR_ID)
            results.append("connected")
        except Exception as e:
            errors.append(e)
        finally:
            db.close()

    def apply_while_checking():
        checking.wait(timeout=5)
        time.sleep(0.2)
        _apply_in_thread(session_factory, batch_id, results, errors)

    _run([threading.Thread(target=connect), threading.Thread(target=apply_while_checking)])

    assert errors == []
    assert sorted(results) == ["applied", "connected"]

    db = session_factory()
    try:
        device = db.query(BiometricDevice).filter(BiometricDevice.id == device_id).one()
        assert device.is_online is True
        assert device.last_online_at is not None
        assert device.last_sync_at is not None
        assert device.last_sync_status == "SUCCESS"
    finally:
        db.close()
