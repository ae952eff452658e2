from datetime import UTC, datetime
from enum import Enum as _Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class (explicit for mypy)."""

    pass


class UserRole(_Enum):
    CLIENT = "CLIENT"
    BARBER = "BARBER"
    OWNER = "OWNER"


class AppointmentStatus(_Enum):  # Values match DB labels (Postgres enum)
    BOOKED = "BOOKED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELED = "CANCELED"


class AppointmentKind(_Enum):
    STANDARD = "STANDARD"
    TRIAL_FREE = "TRIAL_FREE"
    DISCOUNT_SECOND = "DISCOUNT_SECOND"


class PaymentStatus(_Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    WAIVED = "WAIVED"


def normalize_appointment_status(value: str | AppointmentStatus | None) -> AppointmentStatus | None:
    """Return an AppointmentStatus enum when possible (accepts strings/enum values)."""
    if isinstance(value, AppointmentStatus):
        return value
    if isinstance(value, str):
        cleaned = value.strip().upper().replace("-", "_")
        if cleaned == "CANCELLED":
            cleaned = "CANCELED"
        try:
            return AppointmentStatus(cleaned)
        except ValueError:
            return None
    return None


def normalize_appointment_kind(value: str | AppointmentKind | None) -> AppointmentKind | None:
    if isinstance(value, AppointmentKind):
        return value
    if isinstance(value, str):
        cleaned = value.strip().upper().replace("-", "_")
        # plan names used by booking forms
        aliases = {"TRIAL": "TRIAL_FREE", "FREE": "TRIAL_FREE", "SECOND_CUT": "DISCOUNT_SECOND"}
        cleaned = aliases.get(cleaned, cleaned)
        try:
            return AppointmentKind(cleaned)
        except ValueError:
            return None
    return None


ACTIVE_STATUSES = frozenset(
    {
        AppointmentStatus.BOOKED,
        AppointmentStatus.CONFIRMED,
    }
)

# Every status except CANCELED keeps the provider's time occupied.
BLOCKING_STATUSES = frozenset(set(AppointmentStatus) - {AppointmentStatus.CANCELED})

FREE_KINDS = frozenset({AppointmentKind.TRIAL_FREE})


def _enum_column(enum_cls: type[_Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],  # persist uppercase labels
        native_enum=True,
    )


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole, "user_role"), default=UserRole.CLIENT)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class WeeklyAvailability(Base):
    __tablename__ = "weekly_availability"
    __table_args__ = (
        UniqueConstraint("provider_id", "day_of_week", name="uq_weekly_availability_provider_day"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_weekly_availability_day_of_week"),
        CheckConstraint("start_local < end_local", name="ck_weekly_availability_range"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    # Day of week: Sunday=0 .. Saturday=6
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    # Zero-padded "HH:MM" in business local time, so string order is time order
    start_local: Mapped[str] = mapped_column(String(5), nullable=False)
    end_local: Mapped[str] = mapped_column(String(5), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Structural guard against duplicate active bookings of the same start.
        Index(
            "ux_appointments_provider_start_active",
            "provider_id",
            "starts_at",
            unique=True,
            postgresql_where=text("status <> 'CANCELED'"),
            sqlite_where=text("status <> 'CANCELED'"),
        ),
        Index("ix_appointments_provider_starts_at", "provider_id", "starts_at"),
        Index("ix_appointments_client_starts_at", "client_id", "starts_at"),
        CheckConstraint("starts_at < ends_at", name="ck_appointments_interval"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    provider_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[AppointmentStatus] = mapped_column(
        _enum_column(AppointmentStatus, "appointment_status"),
        default=AppointmentStatus.BOOKED,
    )
    kind: Mapped[AppointmentKind] = mapped_column(
        _enum_column(AppointmentKind, "appointment_kind"),
        default=AppointmentKind.STANDARD,
    )
    price_cents: Mapped[int] = mapped_column(Integer, default=0)
    payment_status: Mapped[PaymentStatus | None] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"), nullable=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PointsLedgerEntry(Base):
    __tablename__ = "points_ledger"
    __table_args__ = (
        Index("ix_points_ledger_ref", "ref_type", "ref_id"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    # ref_id is a plain string: hard-deleted appointments keep their audit trail
    ref_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


__all__ = [
    "Base",
    "User",
    "UserRole",
    "WeeklyAvailability",
    "Appointment",
    "AppointmentStatus",
    "AppointmentKind",
    "PaymentStatus",
    "PointsLedgerEntry",
    "normalize_appointment_status",
    "normalize_appointment_kind",
    "ACTIVE_STATUSES",
    "BLOCKING_STATUSES",
    "FREE_KINDS",
]
