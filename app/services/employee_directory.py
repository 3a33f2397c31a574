"""
Employee directory - how the sync engine resolves people

The engine only needs three questions answered, so it talks to this small
interface. SqlEmployeeDirectory answers them from the local employees table.
"""
import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.models.employee import Employee
from app.services.punch_normalizer import normalize_identifier

_log = logging.getLogger(__name__)


class EmployeeRef(BaseModel):
    id: int
    employee_number: str
    name: str
    biometric_id: Optional[str] = None


class EmployeeDirectory:
    def find_employee_by_number(self, company_id: int, employee_number: str) -> Optional[EmployeeRef]:
        raise NotImplementedError

    def get_employee(self, company_id: int, employee_id: int) -> Optional[EmployeeRef]:
        raise NotImplementedError

    def assign_biometric_id(self, employee_id: int, biometric_id: str) -> None:
        raise NotImplementedError


def _to_ref(employee: Employee) -> EmployeeRef:
    return EmployeeRef(
        id=employee.id,
        employee_number=employee.employee_number,
        name=employee.full_name,
        biometric_id=employee.biometric_id,
    )


class SqlEmployeeDirectory(EmployeeDirectory):
    """
    Directory over the employees table.

    Lookups by number compare normalized identifiers, and fall back to the
    linked biometric id so punches keyed by terminal user id still resolve.
    """

    def __init__(self, db: Session):
        self.db = db
        self._cache = {}

    def find_employee_by_number(self, company_id: int, employee_number: str) -> Optional[EmployeeRef]:
        wanted = normalize_identifier(employee_number)
        if not wanted:
            return None

        if company_id not in self._cache:
            by_number = {}
            by_biometric = {}
            employees = self.db.query(Employee).filter(
                Employee.company_id == company_id,
                Employee.active == True  # noqa: E712
            ).all()
            for employee in employees:
                key = normalize_identifier(employee.employee_number)
                if key:
                    by_number[key] = employee
                bio_key = normalize_identifier(employee.biometric_id)
                if bio_key:
                    by_biometric.setdefault(bio_key, employee)
            self._cache[company_id] = (by_number, by_biometric)

        by_number, by_biometric = self._cache[company_id]
        employee = by_number.get(wanted) or by_biometric.get(wanted)
        return _to_ref(employee) if employee else None

    def get_employee(self, company_id: int, employee_id: int) -> Optional[EmployeeRef]:
        employee = self.db.query(Employee).filter(
            Employee.id == employee_id,
            Employee.company_id == company_id
        ).first()
        return _to_ref(employee) if employee else None

    def assign_biometric_id(self, employee_id: int, biometric_id: str) -> None:
        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if employee is None:
            raise LookupError(f"Employee {employee_id} not found")
        employee.biometric_id = biometric_id
        self.db.flush()
        self._cache.clear()
        _log.info("Biometric id linked: employee_id=%s biometric_id=%s", employee_id, biometric_id)
