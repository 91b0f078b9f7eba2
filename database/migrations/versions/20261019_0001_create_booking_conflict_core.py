"""create users, bookings, conflict records and activity logs

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


user_role = sa.Enum("reception", "admin", "manager", name="user_role")
rental_type = sa.Enum("full", "zone", name="rental_type")
booking_status = sa.Enum("inquiry", "confirmed", "cancelled", name="booking_status")
approval_status = sa.Enum("pending", "approved", "rejected", name="approval_status")
conflict_status = sa.Enum("pending", "queued", "accepted", "rejected", name="conflict_status")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("client_request_id", sa.String(length=64), nullable=True, unique=True),
        sa.Column("client_name", sa.String(length=200), nullable=False),
        sa.Column("client_phone", sa.String(length=40), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False, server_default="general"),
        sa.Column("shoot_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("rental_type", rental_type, nullable=False, server_default="zone"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="IQD"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", booking_status, nullable=False, server_default="confirmed"),
        sa.Column("approval_status", approval_status, nullable=True),
        sa.Column("conflict_details", sa.Text(), nullable=True),
        sa.Column("decided_by_name", sa.String(length=200), nullable=True),
        sa.Column("decided_by_rank", sa.String(length=50), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by_id", sa.String(length=36), nullable=True),
        sa.Column("updated_by_name", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bookings_shoot_date", "bookings", ["shoot_date"])

    op.create_table(
        "conflict_records",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("proposed_data", sa.JSON(), nullable=False),
        sa.Column("proposed_by_name", sa.String(length=200), nullable=False),
        sa.Column("proposed_by_rank", sa.String(length=50), nullable=False, server_default="reception"),
        sa.Column("base_version", sa.Integer(), nullable=False),
        sa.Column("server_version", sa.Integer(), nullable=True),
        sa.Column("forced_pending", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", conflict_status, nullable=False, server_default="pending"),
        sa.Column("resolved_by_name", sa.String(length=200), nullable=True),
        sa.Column("resolved_by_rank", sa.String(length=50), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_conflict_records_booking_id", "conflict_records", ["booking_id"])
    op.create_index("ix_conflict_records_status", "conflict_records", ["status"])
    op.create_index("ix_conflict_records_created_at", "conflict_records", ["created_at"])
    op.create_index(
        "uq_conflict_records_pending_booking",
        "conflict_records",
        ["booking_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("actor_name", sa.String(length=200), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_entity_id", table_name="activity_logs")
    op.drop_index("ix_activity_logs_action", table_name="activity_logs")
    op.drop_table("activity_logs")

    op.drop_index("uq_conflict_records_pending_booking", table_name="conflict_records")
    op.drop_index("ix_conflict_records_created_at", table_name="conflict_records")
    op.drop_index("ix_conflict_records_status", table_name="conflict_records")
    op.drop_index("ix_conflict_records_booking_id", table_name="conflict_records")
    op.drop_table("conflict_records")

    op.drop_index("ix_bookings_shoot_date", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (conflict_status, approval_status, booking_status, rental_type, user_role):
        enum.drop(bind, checkfirst=True)
