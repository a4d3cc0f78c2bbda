# tests/integration/test_availability.py

from boxoffice.application.availability_service import AvailabilityService
from boxoffice.domain.state_machine import BookingMethod, PerformanceStatus, SeatStatus
from boxoffice.infrastructure.db.models import Performance, Seat


def test_fresh_performance_is_all_available_except_disabled(catalog, db, clock):
    statuses = AvailabilityService(db, clock=clock).compute_status(
        catalog["performance_id"], "buyer-1"
    )

    assert len(statuses) == 10
    assert statuses[catalog["seats"]["B5"]] == SeatStatus.UNAVAILABLE
    assert all(
        status == SeatStatus.AVAILABLE
        for seat_id, status in statuses.items()
        if seat_id != catalog["seats"]["B5"]
    )


def test_statuses_per_viewer(catalog, make_holds, make_bookings, buyer, db, clock):
    perf = catalog["performance_id"]
    seats = catalog["seats"]

    make_holds().acquire(perf, seats["A1"], "buyer-1")
    make_holds().acquire(perf, seats["A2"], "buyer-2")
    make_holds().acquire(perf, seats["A3"], "buyer-2")
    make_bookings().commit(perf, "buyer-2", [seats["A3"]], buyer)

    service = AvailabilityService(db, clock=clock)
    mine = service.compute_status(perf, "buyer-1")
    theirs = service.compute_status(perf, "buyer-2")
    anonymous = service.compute_status(perf)

    assert mine[seats["A1"]] == SeatStatus.HELD_BY_ME
    assert mine[seats["A2"]] == SeatStatus.HELD_BY_OTHER
    assert mine[seats["A3"]] == SeatStatus.BOOKED
    assert theirs[seats["A1"]] == SeatStatus.HELD_BY_OTHER
    assert theirs[seats["A2"]] == SeatStatus.HELD_BY_ME
    assert anonymous[seats["A1"]] == SeatStatus.HELD_BY_OTHER

    summary = service.summarize(mine)
    assert summary["booked"] == 1
    assert summary["held_by_me"] == 1
    assert summary["held_by_other"] == 1
    assert summary["unavailable"] == 1
    assert summary["available"] == 6
    assert summary["total"] == 10


def test_expired_hold_reads_as_available(catalog, make_holds, db, clock):
    perf = catalog["performance_id"]
    seat = catalog["seats"]["A1"]
    make_holds().acquire(perf, seat, "buyer-1")

    clock.advance(minutes=10, seconds=1)

    statuses = AvailabilityService(db, clock=clock).compute_status(perf, "buyer-2")
    assert statuses[seat] == SeatStatus.AVAILABLE


def test_booked_wins_over_disabled(catalog, make_bookings, buyer, db, clock):
    perf = catalog["performance_id"]
    seat_id = catalog["seats"]["A1"]
    make_bookings().commit(perf, None, [seat_id], buyer, method=BookingMethod.BOX_OFFICE)

    seat = db.get(Seat, seat_id)
    seat.is_available = False
    db.commit()

    statuses = AvailabilityService(db, clock=clock).compute_status(perf)
    assert statuses[seat_id] == SeatStatus.BOOKED


def test_seat_map_is_sorted_numerically(catalog, db, clock):
    seat = Seat(
        venue_id=catalog["venue_id"],
        row_label="A",
        seat_number="10",
        section_name="Stalls",
    )
    db.add(seat)
    db.commit()

    views = AvailabilityService(db, clock=clock).seat_map(catalog["performance_id"])
    row_a = [view.seat_number for view in views if view.row_label == "A"]

    assert row_a == ["1", "2", "3", "4", "5", "10"]
    assert views[0].section_name == "Stalls"


def test_sold_out_flips_and_reopens(catalog, make_bookings, buyer, db, clock):
    perf = catalog["performance_id"]
    in_service = [
        seat_id for label, seat_id in catalog["seats"].items() if label != "B5"
    ]

    bookings = make_bookings()
    booking = bookings.commit(perf, None, in_service[:5], buyer, method=BookingMethod.BOX_OFFICE)
    bookings.commit(perf, None, in_service[5:], buyer, method=BookingMethod.BOX_OFFICE)

    assert db.get(Performance, perf).status == PerformanceStatus.SOLD_OUT

    make_bookings().cancel(booking.reference)
    db.expire_all()
    assert db.get(Performance, perf).status == PerformanceStatus.SCHEDULED
