from __future__ import annotations

import logging

from sqlalchemy import inspect, text

from app.db.base import Base
from app.db.session import engine
import app.models  # noqa: F401

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "email", "role"},
    "bookings": {
        "id",
        "client_request_id",
        "shoot_date",
        "start_time",
        "end_time",
        "rental_type",
        "status",
        "approval_status",
        "conflict_details",
        "version",
        "deleted_at",
    },
    "conflict_records": {"id", "booking_id", "proposed_data", "forced_pending", "status", "base_version"},
}


def _ensure_bookings_version_column() -> None:
    # Databases created before optimistic edits lack the version counter.
    with engine.begin() as connection:
        inspector = inspect(connection)
        if "bookings" not in set(inspector.get_table_names()):
            return
        column_names = {item["name"] for item in inspector.get_columns("bookings")}
        if "version" in column_names:
            return
        connection.execute(text("ALTER TABLE bookings ADD COLUMN version INTEGER NOT NULL DEFAULT 1"))


def _assert_required_columns() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables = [name for name in REQUIRED_COLUMNS if name not in table_names]
        if missing_tables:
            raise RuntimeError(f"Missing required tables: {', '.join(sorted(missing_tables))}")

        missing_columns: list[str] = []
        for table_name, required in REQUIRED_COLUMNS.items():
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            for column_name in sorted(required - existing):
                missing_columns.append(f"{table_name}.{column_name}")
        if missing_columns:
            raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_runtime_schema_compatibility() -> None:
    try:
        # Ensure missing tables are present before additive compatibility patches.
        Base.metadata.create_all(bind=engine)
        _ensure_bookings_version_column()
        _assert_required_columns()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc
