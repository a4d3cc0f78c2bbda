from functools import lru_cache
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker

from boxoffice.application.availability_service import AvailabilityService
from boxoffice.application.booking_service import BookingService, BuyerInfo
from boxoffice.application.hold_service import HoldService
from boxoffice.application.notification_service import NotificationDispatcher
from boxoffice.application.payment_service import PaymentRecorder
from boxoffice.api.schemas.schemas import (
    AvailabilityResponse,
    BoxOfficeSaleRequest,
    BookingResponse,
    BookingSeatResponse,
    CheckInRequest,
    CheckInResponse,
    CommitRequest,
    HoldReleaseResponse,
    HoldRequest,
    HoldResponse,
    OutboxEventResponse,
    SeatStatusResponse,
    TicketResponse,
)
from boxoffice.config import Settings, get_settings
from boxoffice.domain.clock import Clock, ensure_utc, utc_now
from boxoffice.domain.exceptions import (
    BookingNotFound,
    BoxOfficeError,
    CodeGenerationFailed,
    CommitFailed,
    InvalidSeatSelection,
    InvalidStateTransitionError,
    PartySizeExceeded,
    PerformanceNotBookable,
    PerformanceNotFound,
    SeatAlreadyBooked,
    SeatHeldByOther,
    SeatNotHeld,
    SeatUnavailable,
)
from boxoffice.domain.state_machine import BookingMethod
from boxoffice.infrastructure.db.models import Booking, OutboxEvent
from boxoffice.infrastructure.db.session import SessionLocal
from boxoffice.infrastructure.notifications.gateways import (
    NotificationGateway,
    build_gateway,
)
from boxoffice.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[BoxOfficeError], int] = {
    PerformanceNotFound: status.HTTP_404_NOT_FOUND,
    BookingNotFound: status.HTTP_404_NOT_FOUND,
    PerformanceNotBookable: status.HTTP_409_CONFLICT,
    SeatUnavailable: status.HTTP_409_CONFLICT,
    SeatHeldByOther: status.HTTP_409_CONFLICT,
    SeatAlreadyBooked: status.HTTP_409_CONFLICT,
    SeatNotHeld: status.HTTP_409_CONFLICT,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    InvalidSeatSelection: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PartySizeExceeded: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CodeGenerationFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    CommitFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(factory: sessionmaker = Depends(get_session_factory)):
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_clock() -> Clock:
    return utc_now


@lru_cache
def get_notification_gateway() -> NotificationGateway:
    return build_gateway(get_settings())


def _http_error(exc: BoxOfficeError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            status_code = mapped
            break
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def _booking_response(booking: Booking, warnings: list[str] | None = None) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        reference=booking.reference,
        performance_id=booking.performance_id,
        status=booking.status.value,
        method=booking.method.value,
        customer_name=booking.customer_name,
        customer_email=booking.customer_email,
        customer_phone=booking.customer_phone,
        total_seats=booking.total_seats,
        subtotal=booking.subtotal,
        discount_amount=booking.discount_amount,
        booking_fee=booking.booking_fee,
        total_amount=booking.total_amount,
        payment_status=booking.payment_status,
        notification_status=booking.notification_status,
        seats=[
            BookingSeatResponse(
                seat_id=booking_seat.seat_id,
                row_label=booking_seat.seat.row_label if booking_seat.seat else None,
                seat_number=booking_seat.seat.seat_number if booking_seat.seat else None,
                price=booking_seat.price,
            )
            for booking_seat in booking.seats
        ],
        tickets=[
            TicketResponse(
                ticket_code=ticket.ticket_code,
                seat_id=ticket.seat_id,
                barcode_data=ticket.barcode_data,
                is_checked_in=ticket.is_checked_in,
                checked_in_at=(
                    ensure_utc(ticket.checked_in_at) if ticket.checked_in_at else None
                ),
                checked_in_by=ticket.checked_in_by,
            )
            for ticket in booking.tickets
        ],
        warnings=warnings or [],
    )


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        last_error=item.last_error,
        created_at=item.created_at.isoformat(),
    )


def _dispatch_confirmation(
    factory: sessionmaker,
    gateway: NotificationGateway,
    clock: Clock,
    booking_id: str,
) -> None:
    # Runs after the response; its failure never reaches the buyer.
    db: Session = factory()
    try:
        NotificationDispatcher(db, gateway, clock=clock).dispatch_for_booking(booking_id)
    except Exception:
        db.rollback()
        logger.exception("Notification dispatch crashed. booking_id=%s", booking_id)
    finally:
        db.close()


def _commit_and_settle(
    db: Session,
    service: BookingService,
    background_tasks: BackgroundTasks,
    factory: sessionmaker,
    gateway: NotificationGateway,
    clock: Clock,
    **commit_kwargs,
) -> BookingResponse:
    try:
        booking = service.commit(**commit_kwargs)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc

    warnings = []
    if PaymentRecorder(db, clock=clock).record(booking) is None:
        warnings.append("payment_not_recorded")

    background_tasks.add_task(_dispatch_confirmation, factory, gateway, clock, booking.id)
    return _booking_response(booking, warnings)


@router.get("/health")
def health():
    return {"message": "Box office reservation engine is running"}


@router.get(
    "/performances/{performance_id}/availability",
    response_model=AvailabilityResponse,
)
def get_availability(
    performance_id: str,
    session_id: str | None = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    service = AvailabilityService(db, clock=clock)
    try:
        statuses = service.compute_status(performance_id, session_id)
        performance = service.seat_repository.get_performance(performance_id)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc

    return AvailabilityResponse(
        performance_id=performance_id,
        performance_status=performance.status.value,
        seats={seat_id: seat_status.value for seat_id, seat_status in statuses.items()},
        summary=service.summarize(statuses),
    )


@router.get(
    "/performances/{performance_id}/seats",
    response_model=list[SeatStatusResponse],
)
def get_seat_map(
    performance_id: str,
    session_id: str | None = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        views = AvailabilityService(db, clock=clock).seat_map(performance_id, session_id)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc

    return [
        SeatStatusResponse(
            seat_id=view.seat_id,
            row_label=view.row_label,
            seat_number=view.seat_number,
            section_name=view.section_name,
            is_wheelchair_accessible=view.is_wheelchair_accessible,
            is_companion_seat=view.is_companion_seat,
            is_restricted_view=view.is_restricted_view,
            status=view.status.value,
        )
        for view in views
    ]


@router.post("/performances/{performance_id}/holds", response_model=HoldResponse)
def acquire_hold(
    performance_id: str,
    request: HoldRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    service = HoldService(db, settings=settings, clock=clock)
    try:
        result = service.acquire(
            performance_id=performance_id,
            seat_id=request.seat_id,
            session_id=request.session_id,
            user_id=request.user_id,
        )
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc

    return HoldResponse(
        performance_id=result.performance_id,
        seat_id=result.seat_id,
        session_id=result.session_id,
        expires_at=result.expires_at,
        renewed=result.renewed,
    )


@router.delete(
    "/performances/{performance_id}/holds/{seat_id}",
    response_model=HoldReleaseResponse,
)
def release_hold(
    performance_id: str,
    seat_id: str,
    session_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    service = HoldService(db, settings=settings, clock=clock)
    released = service.release(performance_id, seat_id, session_id)
    return HoldReleaseResponse(released=int(released))


@router.delete(
    "/performances/{performance_id}/holds",
    response_model=HoldReleaseResponse,
)
def release_session_holds(
    performance_id: str,
    session_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    service = HoldService(db, settings=settings, clock=clock)
    released = service.release_session(performance_id, session_id)
    return HoldReleaseResponse(released=released)


@router.post(
    "/performances/{performance_id}/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def commit_booking(
    performance_id: str,
    request: CommitRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    factory: sessionmaker = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    gateway: NotificationGateway = Depends(get_notification_gateway),
):
    service = BookingService(db, settings=settings, clock=clock)
    return _commit_and_settle(
        db,
        service,
        background_tasks,
        factory,
        gateway,
        clock,
        performance_id=performance_id,
        session_id=request.session_id,
        seat_ids=request.seat_ids,
        buyer=BuyerInfo(
            name=request.buyer.name,
            email=request.buyer.email,
            phone=request.buyer.phone,
        ),
        method=BookingMethod.ONLINE,
        user_id=request.user_id,
    )


@router.post(
    "/box-office/performances/{performance_id}/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def box_office_sale(
    performance_id: str,
    request: BoxOfficeSaleRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    factory: sessionmaker = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    gateway: NotificationGateway = Depends(get_notification_gateway),
):
    service = BookingService(db, settings=settings, clock=clock)
    return _commit_and_settle(
        db,
        service,
        background_tasks,
        factory,
        gateway,
        clock,
        performance_id=performance_id,
        session_id=None,
        seat_ids=request.seat_ids,
        buyer=BuyerInfo(
            name=request.buyer.name,
            email=request.buyer.email,
            phone=request.buyer.phone,
        ),
        method=BookingMethod.BOX_OFFICE,
        booked_by_user_id=request.agent_id,
    )


@router.get(
    "/box-office/performances/{performance_id}/bookings",
    response_model=list[BookingResponse],
)
def list_box_office_sales(
    performance_id: str,
    limit: int = 50,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    safe_limit = max(1, min(limit, 200))
    try:
        bookings = BookingService(db, settings=settings, clock=clock).list_for_performance(
            performance_id,
            method=BookingMethod.BOX_OFFICE,
            limit=safe_limit,
        )
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return [_booking_response(booking) for booking in bookings]


@router.get("/users/{user_id}/bookings", response_model=list[BookingResponse])
def list_user_bookings(
    user_id: str,
    limit: int = 50,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    safe_limit = max(1, min(limit, 200))
    bookings = BookingService(db, settings=settings, clock=clock).list_for_user(
        user_id,
        limit=safe_limit,
    )
    return [_booking_response(booking) for booking in bookings]


@router.get("/bookings/{reference}", response_model=BookingResponse)
def get_booking(
    reference: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    try:
        service = BookingService(db, settings=settings, clock=clock)
        booking = service.get_by_reference(reference)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.post("/bookings/{reference}/check-in", response_model=CheckInResponse)
def check_in_booking(
    reference: str,
    request: CheckInRequest | None = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    agent_id = request.agent_id if request else None
    try:
        service = BookingService(db, settings=settings, clock=clock)
        booking, already_checked_in = service.check_in(
            reference,
            agent_id=agent_id,
        )
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc

    return CheckInResponse(
        already_checked_in=already_checked_in,
        booking=_booking_response(booking),
    )


@router.post("/bookings/{reference}/cancel", response_model=BookingResponse)
def cancel_booking(
    reference: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    try:
        booking = BookingService(db, settings=settings, clock=clock).cancel(reference)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.post("/bookings/{reference}/refund", response_model=BookingResponse)
def refund_booking(
    reference: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    try:
        booking = BookingService(db, settings=settings, clock=clock).refund(reference)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [_outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/retry", response_model=OutboxEventResponse)
def retry_outbox_event(
    event_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    gateway: NotificationGateway = Depends(get_notification_gateway),
):
    item = NotificationDispatcher(db, gateway, clock=clock).dispatch_event(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )
    return _outbox_response(item)
