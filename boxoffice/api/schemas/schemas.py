from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class HoldRequest(BaseModel):
    seat_id: str
    session_id: str = Field(min_length=1, max_length=128)
    user_id: str | None = None


class HoldResponse(BaseModel):
    performance_id: str
    seat_id: str
    session_id: str
    expires_at: datetime
    renewed: bool


class HoldReleaseResponse(BaseModel):
    released: int


class SeatStatusResponse(BaseModel):
    seat_id: str
    row_label: str
    seat_number: str
    section_name: str | None = None
    is_wheelchair_accessible: bool
    is_companion_seat: bool
    is_restricted_view: bool
    status: str


class AvailabilityResponse(BaseModel):
    performance_id: str
    performance_status: str
    seats: dict[str, str]
    summary: dict[str, int]


class BuyerInfoRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = Field(default=None, max_length=64)


class CommitRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=128)
    seat_ids: list[str] = Field(min_length=1)
    buyer: BuyerInfoRequest
    user_id: str | None = None


class BoxOfficeSaleRequest(BaseModel):
    seat_ids: list[str] = Field(min_length=1)
    buyer: BuyerInfoRequest
    agent_id: str | None = None


class CheckInRequest(BaseModel):
    agent_id: str | None = None


class TicketResponse(BaseModel):
    ticket_code: str
    seat_id: str
    barcode_data: str
    is_checked_in: bool
    checked_in_at: datetime | None = None
    checked_in_by: str | None = None


class BookingSeatResponse(BaseModel):
    seat_id: str
    row_label: str | None = None
    seat_number: str | None = None
    price: Decimal


class BookingResponse(BaseModel):
    booking_id: str
    reference: str
    performance_id: str
    status: str
    method: str
    customer_name: str
    customer_email: str
    customer_phone: str | None = None
    total_seats: int
    subtotal: Decimal
    discount_amount: Decimal
    booking_fee: Decimal
    total_amount: Decimal
    payment_status: str
    notification_status: str
    seats: list[BookingSeatResponse]
    tickets: list[TicketResponse]
    warnings: list[str] = []


class CheckInResponse(BaseModel):
    already_checked_in: bool
    booking: BookingResponse


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    last_error: str | None = None
    created_at: str
