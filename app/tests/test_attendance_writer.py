"""
Tests for the daily time record writer
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from app.models.daily_time_record import DailyTimeRecord
from app.services.attendance_writer import SqlAttendanceWriter, WriteOutcome

UTC = timezone.utc
DAY = date(2024, 1, 2)
TIME_IN = datetime(2024, 1, 2, 0, 0, tzinfo=UTC)
TIME_OUT = datetime(2024, 1, 2, 8, 30, tzinfo=UTC)


@pytest.fixture
def writer(db):
    return SqlAttendanceWriter(db)


def test_creates_record(db, writer, employees):
    result = writer.upsert_daily_record(employees[0].id, DAY, TIME_IN, TIME_OUT)
    db.commit()

    assert result.outcome == WriteOutcome.CREATED
    record = db.query(DailyTimeRecord).one()
    assert record.hours_worked == Decimal("8.50")
    assert record.time_in_source == "BIOMETRIC"
    assert record.is_locked is False


def test_identical_times_skipped(db, writer, employees):
    writer.upsert_daily_record(employees[0].id, DAY, TIME_IN, TIME_OUT)
    db.commit()

    # Naive values are read as UTC
    result = writer.upsert_daily_record(employees[0].id, DAY, TIME_IN.replace(tzinfo=None), TIME_OUT)

    assert result.outcome == WriteOutcome.SKIPPED
    assert result.reason == "Daily record already up to date."
    assert db.query(DailyTimeRecord).count() == 1


def test_changed_times_updated(db, writer, employees):
    writer.upsert_daily_record(employees[0].id, DAY, TIME_IN, TIME_OUT)
    db.commit()

    later_out = datetime(2024, 1, 2, 10, 0, tzinfo=UTC)
    result = writer.upsert_daily_record(employees[0].id, DAY, TIME_IN, later_out)
    db.commit()

    assert result.outcome == WriteOutcome.UPDATED
    record = db.query(DailyTimeRecord).one()
    assert record.hours_worked == Decimal("10.00")


def test_locked_record_never_overwritten(db, writer, employees):
    db.add(DailyTimeRecord(
        employee_id=employees[0].id,
        attendance_date=DAY,
        actual_time_in=datetime(2024, 1, 2, 1, 0, tzinfo=UTC),
        actual_time_out=datetime(2024, 1, 2, 9, 0, tzinfo=UTC),
        time_in_source="MANUAL",
        time_out_source="MANUAL",
        is_locked=True,
    ))
    db.commit()

    result = writer.upsert_daily_record(employees[0].id, DAY, TIME_IN, TIME_OUT)
    db.commit()

    assert result.outcome == WriteOutcome.SKIPPED
    assert result.reason == "Daily record is locked."
    record = db.query(DailyTimeRecord).one()
    assert record.time_in_source == "MANUAL"


def test_records_are_per_employee_and_date(db, writer, employees):
    writer.upsert_daily_record(employees[0].id, DAY, TIME_IN, TIME_OUT)
    writer.upsert_daily_record(employees[1].id, DAY, TIME_IN, TIME_OUT)
    writer.upsert_daily_record(employees[0].id, date(2024, 1, 3), TIME_IN, TIME_OUT)
    db.commit()

    assert db.query(DailyTimeRecord).count() == 3
