# boxoffice/infrastructure/db/models.py

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    Enum,
    Index,
    Numeric,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from boxoffice.infrastructure.db.session import Base
from boxoffice.domain.state_machine import (
    BookingMethod,
    BookingStatus,
    PerformanceStatus,
)


def _uuid() -> str:
    return str(uuid4())


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Venue(Base):
    __tablename__ = "venues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Seat(Base):
    """
    Physical seat of a venue, independent of any performance.
    Read-only to the reservation engine.
    """

    __tablename__ = "seats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    venue_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("venues.id"),
        nullable=False,
        index=True,
    )
    section_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    row_label: Mapped[str] = mapped_column(String(8), nullable=False)
    seat_number: Mapped[str] = mapped_column(String(8), nullable=False)
    is_wheelchair_accessible: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    is_companion_seat: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_restricted_view: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "venue_id",
            "row_label",
            "seat_number",
            name="uq_seat_position",
        ),
    )


class Play(Base):
    __tablename__ = "plays"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=120)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Performance(Base):
    __tablename__ = "performances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    play_id: Mapped[str] = mapped_column(String(36), ForeignKey("plays.id"), nullable=False)
    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[PerformanceStatus] = mapped_column(
        Enum(
            PerformanceStatus,
            name="performance_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PerformanceStatus.SCHEDULED,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    play: Mapped[Play] = relationship()
    venue: Mapped[Venue] = relationship()

    __table_args__ = (
        CheckConstraint("base_price >= 0", name="ck_performance_price_nonnegative"),
    )


class SeatHold(Base):
    """
    Short-lived claim on a seat for one performance.

    One row per (performance_id, seat_id). A row whose expires_at is in
    the past is treated as absent and gets overwritten by the next grant.
    """

    __tablename__ = "seat_holds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    performance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("performances.id"),
        nullable=False,
    )
    seat_id: Mapped[str] = mapped_column(String(36), ForeignKey("seats.id"), nullable=False)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "performance_id",
            "seat_id",
            name="uq_seat_hold_performance_seat",
        ),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    reference: Mapped[str] = mapped_column(String(32), nullable=False)
    performance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("performances.id"),
        nullable=False,
        index=True,
    )
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    booked_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )
    booking_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    method: Mapped[BookingMethod] = mapped_column(
        Enum(BookingMethod, name="booking_method", values_callable=_enum_values),
        nullable=False,
        default=BookingMethod.ONLINE,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    notification_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending"
    )
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    seats: Mapped[list["BookingSeat"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingSeat.created_at",
    )
    tickets: Mapped[list["Ticket"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="Ticket.created_at",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
    )
    performance: Mapped[Performance] = relationship()

    __table_args__ = (
        UniqueConstraint("reference", name="uq_booking_reference"),
        CheckConstraint("total_seats > 0", name="ck_booking_total_seats_positive"),
    )


class BookingSeat(Base):
    """
    A seat sold under a booking. The partial unique index below is the
    last line of defense against overbooking: at most one non-released
    row may exist per (performance_id, seat_id).
    """

    __tablename__ = "booking_seats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    performance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("performances.id"),
        nullable=False,
    )
    seat_id: Mapped[str] = mapped_column(String(36), ForeignKey("seats.id"), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    booking: Mapped[Booking] = relationship(back_populates="seats")
    seat: Mapped[Seat] = relationship()
    ticket: Mapped["Ticket"] = relationship(back_populates="booking_seat", uselist=False)

    __table_args__ = (
        Index(
            "uq_booking_seat_active",
            "performance_id",
            "seat_id",
            unique=True,
            postgresql_where=text("NOT released"),
            sqlite_where=text("NOT released"),
        ),
        CheckConstraint("price >= 0", name="ck_booking_seat_price_nonnegative"),
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    booking_seat_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("booking_seats.id"),
        nullable=False,
    )
    seat_id: Mapped[str] = mapped_column(String(36), ForeignKey("seats.id"), nullable=False)
    ticket_code: Mapped[str] = mapped_column(String(32), nullable=False)
    barcode_data: Mapped[str] = mapped_column(String(128), nullable=False)
    is_checked_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_in_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    checked_in_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    booking: Mapped[Booking] = relationship(back_populates="tickets")
    booking_seat: Mapped[BookingSeat] = relationship(back_populates="ticket")

    __table_args__ = (
        UniqueConstraint("ticket_code", name="uq_ticket_code"),
        UniqueConstraint("booking_seat_id", name="uq_ticket_booking_seat"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_gateway: Mapped[str | None] = mapped_column(String(32), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    booking: Mapped[Booking] = relationship(back_populates="payments")


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
