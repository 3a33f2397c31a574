"""Add biometric device, sync batch and enrollment session tables

Revision ID: 001_biometric_sync
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001_biometric_sync"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    is_sqlite = bind.dialect.name == "sqlite"
    ts_default = sa.text("CURRENT_TIMESTAMP") if is_sqlite else sa.text("now()")

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("employee_number", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("biometric_id", sa.String(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "employee_number", name="uq_employees_company_employee_number"),
    )
    op.create_index(op.f("ix_employees_id"), "employees", ["id"], unique=False)
    op.create_index(op.f("ix_employees_company_id"), "employees", ["company_id"], unique=False)
    op.create_index(op.f("ix_employees_employee_number"), "employees", ["employee_number"], unique=False)
    op.create_index(op.f("ix_employees_biometric_id"), "employees", ["biometric_id"], unique=False)

    op.create_table(
        "daily_time_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("actual_time_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_time_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hours_worked", sa.Numeric(6, 2), nullable=True),
        sa.Column("time_in_source", sa.String(), nullable=True),
        sa.Column("time_out_source", sa.String(), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "attendance_date", name="uq_daily_time_records_employee_date"),
    )
    op.create_index(op.f("ix_daily_time_records_id"), "daily_time_records", ["id"], unique=False)
    op.create_index(op.f("ix_daily_time_records_employee_id"), "daily_time_records", ["employee_id"], unique=False)
    op.create_index(op.f("ix_daily_time_records_attendance_date"), "daily_time_records", ["attendance_date"], unique=False)

    op.create_table(
        "biometric_devices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=30), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("device_model", sa.String(length=80), nullable=False),
        sa.Column("location_name", sa.String(length=120), nullable=True),
        sa.Column("ip_address", sa.String(length=120), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False, server_default="4370"),
        sa.Column("inport", sa.Integer(), nullable=True),
        sa.Column("timeout_ms", sa.Integer(), nullable=False, server_default="15000"),
        sa.Column("secret_encrypted", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_online_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_status", sa.String(), nullable=True),
        sa.Column("last_sync_record_count", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "code", name="uq_biometric_devices_company_code"),
    )
    op.create_index(op.f("ix_biometric_devices_id"), "biometric_devices", ["id"], unique=False)
    op.create_index(op.f("ix_biometric_devices_company_id"), "biometric_devices", ["company_id"], unique=False)

    op.create_table(
        "staged_sync_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("date_from", sa.Date(), nullable=False),
        sa.Column("date_to", sa.Date(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="STAGED"),
        sa.Column("source", sa.String(), nullable=False, server_default="DEVICE"),
        sa.Column("pulled_logs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("in_range_logs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("out_of_range_logs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("invalid_logs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("prepared_logs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_logs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lines_prepared", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("device_date_from", sa.Date(), nullable=True),
        sa.Column("device_date_to", sa.Date(), nullable=True),
        sa.Column("parse_errors", sa.JSON(), nullable=False),
        sa.Column("validation_errors", sa.JSON(), nullable=False),
        sa.Column("prepared_lines", sa.JSON(), nullable=False),
        sa.Column("preview_lines", sa.JSON(), nullable=False),
        sa.Column("preview_truncated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("records_created", sa.Integer(), nullable=True),
        sa.Column("records_updated", sa.Integer(), nullable=True),
        sa.Column("records_skipped", sa.Integer(), nullable=True),
        sa.Column("write_errors", sa.JSON(), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_by", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.ForeignKeyConstraint(["device_id"], ["biometric_devices.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_staged_sync_batches_id"), "staged_sync_batches", ["id"], unique=False)
    op.create_index(op.f("ix_staged_sync_batches_device_id"), "staged_sync_batches", ["device_id"], unique=False)
    op.create_index(op.f("ix_staged_sync_batches_company_id"), "staged_sync_batches", ["company_id"], unique=False)
    op.create_index(op.f("ix_staged_sync_batches_status"), "staged_sync_batches", ["status"], unique=False)

    op.create_table(
        "enrollment_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="STARTED"),
        sa.Column("end_reason", sa.String(), nullable=True),
        sa.Column("baseline_keys", sa.JSON(), nullable=False),
        sa.Column("baseline_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("poll_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("biometric_id", sa.String(), nullable=True),
        sa.Column("device_user_id", sa.String(), nullable=True),
        sa.Column("device_uid", sa.Integer(), nullable=True),
        sa.Column("device_user_name", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.ForeignKeyConstraint(["device_id"], ["biometric_devices.id"]),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_enrollment_sessions_id"), "enrollment_sessions", ["id"], unique=False)
    op.create_index(op.f("ix_enrollment_sessions_device_id"), "enrollment_sessions", ["device_id"], unique=False)
    op.create_index(op.f("ix_enrollment_sessions_company_id"), "enrollment_sessions", ["company_id"], unique=False)
    op.create_index(op.f("ix_enrollment_sessions_employee_id"), "enrollment_sessions", ["employee_id"], unique=False)
    # One STARTED session per device
    op.create_index(
        "uq_enrollment_sessions_device_started",
        "enrollment_sessions",
        ["device_id"],
        unique=True,
        sqlite_where=sa.text("status = 'STARTED'"),
        postgresql_where=sa.text("status = 'STARTED'"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("meta_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_logs_id"), "audit_logs", ["id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_audit_logs_id"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("uq_enrollment_sessions_device_started", table_name="enrollment_sessions")
    op.drop_index(op.f("ix_enrollment_sessions_employee_id"), table_name="enrollment_sessions")
    op.drop_index(op.f("ix_enrollment_sessions_company_id"), table_name="enrollment_sessions")
    op.drop_index(op.f("ix_enrollment_sessions_device_id"), table_name="enrollment_sessions")
    op.drop_index(op.f("ix_enrollment_sessions_id"), table_name="enrollment_sessions")
    op.drop_table("enrollment_sessions")
    op.drop_index(op.f("ix_staged_sync_batches_status"), table_name="staged_sync_batches")
    op.drop_index(op.f("ix_staged_sync_batches_company_id"), table_name="staged_sync_batches")
    op.drop_index(op.f("ix_staged_sync_batches_device_id"), table_name="staged_sync_batches")
    op.drop_index(op.f("ix_staged_sync_batches_id"), table_name="staged_sync_batches")
    op.drop_table("staged_sync_batches")
    op.drop_index(op.f("ix_biometric_devices_company_id"), table_name="biometric_devices")
    op.drop_index(op.f("ix_biometric_devices_id"), table_name="biometric_devices")
    op.drop_table("biometric_devices")
    op.drop_index(op.f("ix_daily_time_records_attendance_date"), table_name="daily_time_records")
    op.drop_index(op.f("ix_daily_time_records_employee_id"), table_name="daily_time_records")
    op.drop_index(op.f("ix_daily_time_records_id"), table_name="daily_time_records")
    op.drop_table("daily_time_records")
    op.drop_index(op.f("ix_employees_biometric_id"), table_name="employees")
    op.drop_index(op.f("ix_employees_employee_number"), table_name="employees")
    op.drop_index(op.f("ix_employees_company_id"), table_name="employees")
    op.drop_index(op.f("ix_employees_id"), table_name="employees")
    op.drop_table("employees")
