from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from boxoffice.domain.state_machine import PerformanceStatus
from boxoffice.infrastructure.db.models import Base, Performance, Play, Seat, Venue
from boxoffice.infrastructure.db.session import engine, get_db_session

ROWS = "ABCDEFGH"
SEATS_PER_ROW = 12


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_venue(db) -> Venue:
    venue = db.execute(
        select(Venue).where(Venue.name == "Grand Theatre")
    ).scalar_one_or_none()
    if venue:
        return venue

    venue = Venue(
        name="Grand Theatre",
        address="1 Playhouse Square",
        capacity=len(ROWS) * SEATS_PER_ROW,
    )
    db.add(venue)
    db.flush()

    for row in ROWS:
        for number in range(1, SEATS_PER_ROW + 1):
            db.add(
                Seat(
                    venue_id=venue.id,
                    section_name="Stalls" if row in "ABCD" else "Circle",
                    row_label=row,
                    seat_number=str(number),
                    is_wheelchair_accessible=row == "A" and number in (1, SEATS_PER_ROW),
                    is_companion_seat=row == "A" and number in (2, SEATS_PER_ROW - 1),
                    is_restricted_view=row == "H" and number in (1, 2),
                )
            )
    return venue


def seed_performances(db, venue: Venue) -> None:
    play_defs = [
        {"title": "Hamlet", "subtitle": "Prince of Denmark", "price": "45.00", "days": 7},
        {"title": "The Seagull", "subtitle": None, "price": "38.50", "days": 14},
    ]

    for item in play_defs:
        play = db.execute(
            select(Play).where(Play.title == item["title"])
        ).scalar_one_or_none()
        if not play:
            play = Play(title=item["title"], subtitle=item["subtitle"])
            db.add(play)
            db.flush()

        for offset in (0, 1):
            starts_at = _dt(days_from_now=item["days"] + offset, hour=19, minute=30)
            existing = db.execute(
                select(Performance)
                .where(Performance.play_id == play.id)
                .where(Performance.starts_at == starts_at)
            ).scalar_one_or_none()
            if existing:
                continue
            db.add(
                Performance(
                    play_id=play.id,
                    venue_id=venue.id,
                    starts_at=starts_at,
                    base_price=Decimal(item["price"]),
                    status=PerformanceStatus.SCHEDULED,
                )
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        venue = seed_venue(db)
        seed_performances(db, venue)
    print("Seed complete: Grand Theatre, plays and performances inserted/updated.")


if __name__ == "__main__":
    main()
