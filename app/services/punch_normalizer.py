"""
Punch normalization - raw terminal rows to normalized punches

Terminals and their export tools disagree on field names, date formats and
IN/OUT markers. Everything here is a pure function: rows in, normalized
punches (or a PunchParseError with a reason) out.
"""
import enum
import json
import re
from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from app.utils.datetime_utils import device_local_date, ensure_utc, from_device_local
from app.utils.json_serializer import sanitize_for_json


class PunchType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


EMPLOYEE_KEYS = (
    "employeeNumber", "employee_number", "employeeNo", "empNo", "acNo", "acno",
    "enrollNo", "enrollNumber", "pin", "userId", "userid", "user_id",
    "deviceUserId", "uid", "id", "userSN", "userSn",
)
TIMESTAMP_KEYS = (
    "timestamp", "dateTime", "datetime", "punchAt", "punchTime", "recordTime",
    "recordDateTime", "authDateTime", "attTime",
)
DATE_KEYS = ("date", "attendanceDate", "logDate", "day", "recordDate")
TIME_KEYS = ("time", "clockTime", "logTime", "hhmm", "recordTime")
TYPE_KEYS = (
    "type", "punch", "punchType", "punch_type", "punch_state", "punchState",
    "direction", "inOut", "io", "state", "status",
)

IN_TOKENS = {"0", "IN", "I", "CLOCK_IN", "TIME_IN", "CHECK_IN", "CIN", "INBOUND"}
OUT_TOKENS = {"1", "OUT", "O", "CLOCK_OUT", "TIME_OUT", "CHECK_OUT", "COUT", "OUTBOUND"}

_TIMESTAMP_RE = re.compile(r"^(\d{4})[/-](\d{2})[/-](\d{2})[ T](\d{2}):(\d{2})(?::(\d{2}))?")
_DATE_RE = re.compile(r"^(\d{4})[/-](\d{2})[/-](\d{2})$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_HHMM_RE = re.compile(r"^(\d{2}):?(\d{2})$")


class PunchParseError(ValueError):
    """A raw row could not be turned into a punch"""


class NormalizedPunch(BaseModel):
    employee_number: str
    attendance_date: date
    punch_type: Optional[PunchType] = None  # None: terminal sent no marker at all
    timestamp: datetime  # UTC


class DayPairing(BaseModel):
    """Reduction of one employee/day's punches"""
    time_in: Optional[datetime] = None
    time_out: Optional[datetime] = None
    used_count: int = 0
    excluded_untyped: int = 0
    error: Optional[str] = None


INCOMPLETE_PAIR = "Both IN and OUT punches are required."
OUT_BEFORE_IN = "Time out must be later than time in."
UNTYPED_ON_TYPED_DAY = "Punch has no IN/OUT marker on a day with marked punches."

LINE_FORMAT_INVALID = "Invalid format. Expected employee/date/time/type."
LINE_DATE_INVALID = "Invalid date format."
LINE_TIME_INVALID = "Invalid time format."
LINE_TYPE_INVALID = "Unknown type code. Use 0 for IN and 1 for OUT."


def normalize_identifier(value: Any) -> Optional[str]:
    """
    Canonical form of an employee number / terminal user id.

    Trimmed and upper-cased; purely numeric ids lose leading zeros so that
    "00042" on the terminal matches "42" in the directory.
    """
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text:
        return None
    if text.isdigit():
        return text.lstrip("0") or "0"
    return text


def build_device_user_key(user_id: Any, uid: Any) -> Optional[str]:
    """Stable key for one terminal user, combining the visible id and the internal uid"""
    normalized_user = normalize_identifier(user_id)
    normalized_uid = normalize_identifier(uid)
    if normalized_user and normalized_uid:
        return f"{normalized_user}::{normalized_uid}"
    return normalized_user or normalized_uid


def raw_line(row: Any) -> str:
    """Verbatim text form of a raw row for error reports"""
    if isinstance(row, str):
        return row
    return json.dumps(sanitize_for_json(row), ensure_ascii=False)


def _first_present(row: Dict[str, Any], keys: Iterable[str]) -> Tuple[Optional[str], Any]:
    for key in keys:
        if key in row:
            value = row[key]
            if value is None:
                continue
            if isinstance(value, str) and value.strip() == "":
                continue
            return key, value
    return None, None


def _parse_timestamp_value(value: Any) -> datetime:
    if isinstance(value, datetime):
        return from_device_local(value) if value.tzinfo is None else ensure_utc(value)
    if not isinstance(value, str):
        raise PunchParseError(f"Unsupported timestamp value: {value!r}")

    text = value.strip()
    match = _TIMESTAMP_RE.match(text)
    if match:
        year, month, day, hour, minute, second = match.groups()
        try:
            naive = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second or 0))
        except ValueError:
            raise PunchParseError(f"Invalid timestamp: {text}")
        return from_device_local(naive)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise PunchParseError(f"Invalid timestamp: {text}")
    return from_device_local(parsed) if parsed.tzinfo is None else ensure_utc(parsed)


def _parse_date_time(date_value: Any, time_value: Any) -> datetime:
    if isinstance(date_value, datetime):
        day = date_value.date()
    elif isinstance(date_value, date):
        day = date_value
    else:
        match = _DATE_RE.match(str(date_value).strip())
        if not match:
            raise PunchParseError(f"Invalid date: {date_value}")
        try:
            day = date(*(int(part) for part in match.groups()))
        except ValueError:
            raise PunchParseError(f"Invalid date: {date_value}")

    if isinstance(time_value, time):
        clock = time_value
    else:
        match = _TIME_RE.match(str(time_value).strip())
        if not match:
            raise PunchParseError(f"Invalid time: {time_value}")
        hour, minute, second = match.groups()
        try:
            clock = time(int(hour), int(minute), int(second or 0))
        except ValueError:
            raise PunchParseError(f"Invalid time: {time_value}")

    return from_device_local(datetime.combine(day, clock))


def parse_punch_type(value: Any) -> PunchType:
    token = re.sub(r"[\s\-]+", "_", str(value).strip().upper())
    if token in IN_TOKENS:
        return PunchType.IN
    if token in OUT_TOKENS:
        return PunchType.OUT
    raise PunchParseError(f"Unrecognized punch marker: {value}")


def parse_punch_line(line: str) -> NormalizedPunch:
    """
    Parse one line of an exported attendance file.

    Format: ``<employee number> <yyyy-mm-dd> <hhmm> <0|1>``, whitespace
    separated. Dates may use ``/``; times may be written ``hh:mm``. Extra
    trailing columns are ignored.
    """
    parts = line.split()
    if len(parts) < 4:
        raise PunchParseError(LINE_FORMAT_INVALID)
    employee_value, date_text, time_text, type_code = parts[:4]

    match = _DATE_RE.match(date_text)
    if not match:
        raise PunchParseError(LINE_DATE_INVALID)
    try:
        day = date(*(int(part) for part in match.groups()))
    except ValueError:
        raise PunchParseError(LINE_DATE_INVALID)

    match = _HHMM_RE.match(time_text)
    if not match:
        raise PunchParseError(LINE_TIME_INVALID)
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise PunchParseError(LINE_TIME_INVALID)

    if type_code not in ("0", "1"):
        raise PunchParseError(LINE_TYPE_INVALID)

    timestamp = from_device_local(datetime.combine(day, time(hour, minute)))
    return NormalizedPunch(
        employee_number=normalize_identifier(employee_value),
        attendance_date=device_local_date(timestamp),
        punch_type=PunchType.IN if type_code == "0" else PunchType.OUT,
        timestamp=timestamp,
    )


def parse_raw_punch(row: Any) -> NormalizedPunch:
    """
    Turn one terminal row (key/value record or exported text line) into a
    NormalizedPunch.

    Raises:
        PunchParseError: missing employee id, missing/malformed timestamp,
            or a punch marker that is present but not recognized
    """
    if isinstance(row, str):
        return parse_punch_line(row)
    if not isinstance(row, dict):
        raise PunchParseError("Record is not a key/value row")

    _, employee_value = _first_present(row, EMPLOYEE_KEYS)
    employee_number = normalize_identifier(employee_value)
    if not employee_number:
        raise PunchParseError("Missing employee identifier")

    _, stamp_value = _first_present(row, TIMESTAMP_KEYS)
    _, date_value = _first_present(row, DATE_KEYS)
    # recordTime is a full timestamp on some exports and a bare clock time on others
    if isinstance(stamp_value, str) and date_value is not None and _TIME_RE.match(stamp_value.strip()):
        stamp_value = None

    if stamp_value is not None:
        timestamp = _parse_timestamp_value(stamp_value)
    else:
        _, time_value = _first_present(row, TIME_KEYS)
        if date_value is None or time_value is None:
            raise PunchParseError("Missing timestamp")
        timestamp = _parse_date_time(date_value, time_value)

    _, type_value = _first_present(row, TYPE_KEYS)
    punch_type = parse_punch_type(type_value) if type_value is not None else None

    return NormalizedPunch(
        employee_number=employee_number,
        attendance_date=device_local_date(timestamp),
        punch_type=punch_type,
        timestamp=timestamp,
    )


def pair_day_punches(punches: List[NormalizedPunch]) -> DayPairing:
    """
    Reduce one employee/day's punches to a time-in/time-out pair.

    Time-in is the earliest IN, time-out the latest OUT. Unmarked punches are
    paired (earliest as IN, latest as OUT) only when the day has no marked
    punches; otherwise they are excluded and counted in ``excluded_untyped``.
    """
    typed = [p for p in punches if p.punch_type is not None]
    untyped = [p for p in punches if p.punch_type is None]

    if typed:
        ins = [p.timestamp for p in typed if p.punch_type == PunchType.IN]
        outs = [p.timestamp for p in typed if p.punch_type == PunchType.OUT]
        used = typed
        excluded = len(untyped)
    else:
        ordered = sorted(p.timestamp for p in untyped)
        ins = ordered[:1]
        outs = ordered[-1:] if len(ordered) > 1 else []
        used = untyped
        excluded = 0

    pairing = DayPairing(used_count=len(used), excluded_untyped=excluded)
    if not ins or not outs:
        pairing.error = INCOMPLETE_PAIR
        return pairing

    pairing.time_in = min(ins)
    pairing.time_out = max(outs)
    if pairing.time_out <= pairing.time_in:
        pairing.error = OUT_BEFORE_IN
    return pairing
