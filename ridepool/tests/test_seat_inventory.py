"""
Seat Inventory Tests.

Validates compare-and-swap reservations stay within [0, seats_total] and
that lost races are retried rather than overwritten.
"""

import pytest
from sqlalchemy import update

from ridepool.app.core.exceptions import ConflictError, SeatsUnavailableError, ValidationFailedError, ResourceNotFoundError
from ridepool.app.domain.inventory.seat_inventory import reserve_seats, release_seats
from ridepool.app.models.trip import Trip


async def reload(db, trip):
    return await db.get(Trip, trip.id, populate_existing=True)


@pytest.mark.asyncio
async def test_reserve_and_release(db_session, driver, make_trip):
    trip = await make_trip(driver, seats=4)

    assert await reserve_seats(db_session, trip.id, 3) == 1
    await db_session.commit()

    trip = await reload(db_session, trip)
    assert trip.seats_available == 1
    assert trip.version == 1

    assert await release_seats(db_session, trip.id, 3) == 4
    await db_session.commit()
    trip = await reload(db_session, trip)
    assert trip.seats_available == 4
    assert trip.version == 2


@pytest.mark.asyncio
async def test_reserve_more_than_available_fails_without_writing(db_session, driver, make_trip):
    trip = await make_trip(driver, seats=2)

    with pytest.raises(SeatsUnavailableError) as exc:
        await reserve_seats(db_session, trip.id, 3)

    assert exc.value.details["seats_available"] == 2
    assert exc.value.details["seats_requested"] == 3
    trip = await reload(db_session, trip)
    assert trip.seats_available == 2
    assert trip.version == 0


@pytest.mark.asyncio
async def test_release_is_clamped_to_total(db_session, driver, make_trip):
    trip = await make_trip(driver, seats=4)
    await reserve_seats(db_session, trip.id, 1)

    assert await release_seats(db_session, trip.id, 3) == 4
    await db_session.commit()
    assert (await reload(db_session, trip)).seats_available == 4


@pytest.mark.asyncio
async def test_invalid_seat_counts(db_session, driver, make_trip):
    trip = await make_trip(driver, seats=4)

    with pytest.raises(ValidationFailedError):
        await reserve_seats(db_session, trip.id, 0)
    with pytest.raises(ValidationFailedError):
        await release_seats(db_session, trip.id, -1)
    with pytest.raises(ResourceNotFoundError):
        await reserve_seats(db_session, 9999, 1)


def _race_on_trip_reads(db_session, trip_id, times):
    """Make a competing writer take one seat right after each of the next `times` trip reads."""
    original_execute = db_session.execute
    state = {"remaining": times}

    async def racing_execute(statement, *args, **kwargs):
        result = await original_execute(statement, *args, **kwargs)
        if state["remaining"] and getattr(statement, "is_select", False) and "trips" in str(statement):
            state["remaining"] -= 1
            await original_execute(
                update(Trip)
                .where(Trip.id == trip_id)
                .values(seats_available=Trip.seats_available - 1, version=Trip.version + 1)
                .execution_options(synchronize_session=False)
            )
        return result

    return racing_execute


@pytest.mark.asyncio
async def test_lost_race_is_retried_not_overwritten(db_session, driver, make_trip, monkeypatch):
    """A concurrent reservation between read and write must not be lost."""
    trip = await make_trip(driver, seats=4)
    monkeypatch.setattr(db_session, "execute", _race_on_trip_reads(db_session, trip.id, times=1))

    remaining = await reserve_seats(db_session, trip.id, 2)
    await db_session.commit()
    monkeypatch.undo()

    # 4 - 1 (competitor) - 2 (ours)
    assert remaining == 1
    trip = await reload(db_session, trip)
    assert trip.seats_available == 1
    assert trip.version == 2


@pytest.mark.asyncio
async def test_retries_are_bounded(db_session, driver, make_trip, monkeypatch):
    trip = await make_trip(driver, seats=10)
    monkeypatch.setattr(db_session, "execute", _race_on_trip_reads(db_session, trip.id, times=100))

    with pytest.raises(ConflictError) as exc:
        await reserve_seats(db_session, trip.id, 1, max_retries=3)

    assert exc.value.details["attempts"] == 3


@pytest.mark.asyncio
async def test_competitor_taking_last_seats_surfaces_as_unavailable(db_session, driver, make_trip, monkeypatch):
    trip = await make_trip(driver, seats=2)
    # Competitor takes one seat; our retry then sees only 1 left
    monkeypatch.setattr(db_session, "execute", _race_on_trip_reads(db_session, trip.id, times=1))

    with pytest.raises(SeatsUnavailableError):
        await reserve_seats(db_session, trip.id, 2)
