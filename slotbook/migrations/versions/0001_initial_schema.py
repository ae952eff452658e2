"""Initial database schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_ROLE = ("CLIENT", "BARBER", "OWNER")
_STATUS = ("BOOKED", "CONFIRMED", "COMPLETED", "NO_SHOW", "CANCELED")
_KIND = ("STANDARD", "TRIAL_FREE", "DISCOUNT_SECOND")
_PAYMENT = ("PENDING", "PAID", "REFUNDED", "WAIVED")


def upgrade() -> None:
    bind = op.get_bind()
    is_pg = bind.dialect.name == "postgresql"

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("role", sa.Enum(*_ROLE, name="user_role"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "weekly_availability",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_local", sa.String(length=5), nullable=False),
        sa.Column("end_local", sa.String(length=5), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("provider_id", "day_of_week", name="uq_weekly_availability_provider_day"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_weekly_availability_day_of_week"),
        sa.CheckConstraint("start_local < end_local", name="ck_weekly_availability_range"),
    )
    op.create_index("ix_weekly_availability_provider_id", "weekly_availability", ["provider_id"])

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Enum(*_STATUS, name="appointment_status"), nullable=False),
        sa.Column("kind", sa.Enum(*_KIND, name="appointment_kind"), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.Enum(*_PAYMENT, name="payment_status"), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"]),
        sa.UniqueConstraint("idempotency_key"),
        sa.CheckConstraint("starts_at < ends_at", name="ck_appointments_interval"),
    )
    op.create_index("ix_appointments_provider_starts_at", "appointments", ["provider_id", "starts_at"])
    op.create_index("ix_appointments_client_starts_at", "appointments", ["client_id", "starts_at"])
    # At most one live appointment per (provider, start)
    op.create_index(
        "ux_appointments_provider_start_active",
        "appointments",
        ["provider_id", "starts_at"],
        unique=True,
        postgresql_where=sa.text("status <> 'CANCELED'"),
        sqlite_where=sa.text("status <> 'CANCELED'"),
    )
    if is_pg:
        # Overlapping live intervals of one provider are rejected by the store itself.
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE appointments
            ADD CONSTRAINT ex_appointments_provider_no_overlap
            EXCLUDE USING gist (
                provider_id WITH =,
                tstzrange(starts_at, ends_at, '[)') WITH &&
            ) WHERE (status <> 'CANCELED')
            """
        )

    op.create_table(
        "points_ledger",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("ref_type", sa.String(length=32), nullable=True),
        sa.Column("ref_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
    )
    op.create_index("ix_points_ledger_user_id", "points_ledger", ["user_id"])
    op.create_index("ix_points_ledger_ref", "points_ledger", ["ref_type", "ref_id"])


def downgrade() -> None:
    bind = op.get_bind()
    op.drop_index("ix_points_ledger_ref", table_name="points_ledger")
    op.drop_index("ix_points_ledger_user_id", table_name="points_ledger")
    op.drop_table("points_ledger")
    if bind.dialect.name == "postgresql":
        op.execute("ALTER TABLE appointments DROP CONSTRAINT IF EXISTS ex_appointments_provider_no_overlap")
    op.drop_index("ux_appointments_provider_start_active", table_name="appointments")
    op.drop_index("ix_appointments_client_starts_at", table_name="appointments")
    op.drop_index("ix_appointments_provider_starts_at", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_weekly_availability_provider_id", table_name="weekly_availability")
    op.drop_table("weekly_availability")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    if bind.dialect.name == "postgresql":
        for enum_name in ("payment_status", "appointment_kind", "appointment_status", "user_role"):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
