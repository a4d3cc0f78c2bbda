import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["HOLD_CLEANUP_INTERVAL_SECONDS"] = "0"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from boxoffice.api.routes.routes import (
    get_clock,
    get_notification_gateway,
    get_session_factory,
)
from boxoffice.application.booking_service import BookingService, BuyerInfo
from boxoffice.application.hold_service import HoldService
from boxoffice.config import Settings, get_settings
from boxoffice.domain.codes import CodeGenerator
from boxoffice.domain.state_machine import PerformanceStatus
from boxoffice.infrastructure.db.models import Base, Performance, Play, Seat, Venue
from boxoffice.infrastructure.db.session import build_engine
from boxoffice.infrastructure.notifications.gateways import LoggingNotificationGateway


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    return Settings(hold_cleanup_interval_seconds=0)


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'boxoffice.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog(session_factory):
    """One venue with rows A and B of five seats; B5 is out of service."""
    session = session_factory()
    venue = Venue(name="Grand Theatre", address="1 Playhouse Square", capacity=10)
    session.add(venue)
    session.flush()

    seats = {}
    for row in "AB":
        for number in range(1, 6):
            seat = Seat(
                venue_id=venue.id,
                row_label=row,
                seat_number=str(number),
                section_name="Stalls",
                is_available=not (row == "B" and number == 5),
            )
            session.add(seat)
            seats[f"{row}{number}"] = seat

    play = Play(title="Hamlet", subtitle="Prince of Denmark")
    session.add(play)
    session.flush()

    performance = Performance(
        play_id=play.id,
        venue_id=venue.id,
        starts_at=datetime(2026, 11, 1, 19, 30, tzinfo=timezone.utc),
        base_price=Decimal("45.00"),
        status=PerformanceStatus.SCHEDULED,
    )
    session.add(performance)
    session.commit()

    data = {
        "venue_id": venue.id,
        "performance_id": performance.id,
        "seats": {label: seat.id for label, seat in seats.items()},
    }
    session.close()
    return data


@pytest.fixture
def buyer() -> BuyerInfo:
    return BuyerInfo(name="Ada Buyer", email="ada@example.com", phone="555-0100")


@pytest.fixture
def make_holds(session_factory, settings, clock):
    def _make():
        return HoldService(session_factory(), settings=settings, clock=clock)

    return _make


@pytest.fixture
def make_bookings(session_factory, settings, clock):
    def _make(codes: CodeGenerator | None = None):
        return BookingService(
            session_factory(),
            settings=settings,
            clock=clock,
            codes=codes,
        )

    return _make


@pytest.fixture
def gateway() -> LoggingNotificationGateway:
    return LoggingNotificationGateway()


@pytest.fixture
def client(session_factory, clock, settings, gateway):
    from boxoffice.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_notification_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
