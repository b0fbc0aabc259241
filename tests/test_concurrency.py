"""
Concurrency tests against a file-backed SQLite database.

Each competing request gets its own session (and so its own connection),
the way two API requests would. SQLite serializes the writers; the guarded
UPDATEs decide which of them wins.

These tests verify:
  - Two debits racing for a balance that covers only one of them: exactly
    one succeeds and the balance never goes negative
  - Two riders racing for the same bike: exactly one ride starts
  - One rider starting on two bikes at once: one ride, the other bike stays free
  - The cached wallet amounts still match the ledger afterwards
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bikeshare.database import Base, engine_options
from bikeshare.exceptions import (
    BikeShareError,
    BikeUnavailableError,
    ConcurrencyConflictError,
    InsufficientFundsError,
    SessionAlreadyActiveError,
)
from bikeshare.models.bike import Bike, BikeStatus
from bikeshare.models.ride import PaymentStatus, Ride, RideStatus
from bikeshare.models.transaction import Ledger, PaymentMethod, RidePayment, TransactionStatus
from bikeshare.services import auth_service, ride_service, wallet_service


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}"
    engine = create_async_engine(url, **engine_options(url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def _run_request(factory, operation):
    """Run ``operation(session)`` with the request commit policy."""
    async with factory() as session:
        try:
            result = await operation(session)
            await session.commit()
            return result
        except ConcurrencyConflictError:
            await session.rollback()
            raise
        except BikeShareError:
            await session.commit()
            raise


async def _signup(session, email):
    user, _ = await auth_service.signup(
        session, email=email, password="RacePass123!", first_name="Race", last_name="Rider"
    )
    return user


class TestConcurrentDebits:
    async def test_only_one_of_two_debits_succeeds(self, file_engine):
        """Balance 100, two debits of 80 at once: one pays, the other is refused."""
        factory = session_factory(file_engine)
        ended = datetime.now(timezone.utc)

        async with factory() as session:
            user = await _signup(session, "racer@example.com")
            await wallet_service.credit_deposit(
                session, user.id, 100, PaymentMethod.CARD, ledger=Ledger.BALANCE
            )
            bikes = [Bike(code=f"BK-{i}", model="City") for i in range(2)]
            session.add_all(bikes)
            await session.flush()
            rides = [
                Ride(
                    user_id=user.id,
                    bike_id=bike.id,
                    start_time=ended - timedelta(minutes=30),
                    end_time=ended,
                    status=RideStatus.COMPLETED,
                    payment_status=PaymentStatus.PENDING,
                    cost=80,
                )
                for bike in bikes
            ]
            session.add_all(rides)
            await session.commit()
            user_id = user.id
            ride_ids = [ride.id for ride in rides]

        results = await asyncio.gather(
            *(
                _run_request(
                    factory,
                    lambda s, ride_id=ride_id: wallet_service.debit_for_session(s, user_id, 80, ride_id),
                )
                for ride_id in ride_ids
            ),
            return_exceptions=True,
        )

        paid = [r for r in results if isinstance(r, RidePayment)]
        refused = [r for r in results if isinstance(r, (InsufficientFundsError, ConcurrencyConflictError))]
        assert len(paid) == 1
        assert len(refused) == 1

        async with factory() as session:
            balance = await wallet_service.get_balance(session, user_id)
            assert balance["balance"] == 20
            assert balance["ledger_balance"] == 20
            assert balance["match"] is True

            completed = await session.execute(
                select(func.count(RidePayment.id)).where(
                    RidePayment.status == TransactionStatus.COMPLETED
                )
            )
            assert completed.scalar_one() == 1

    async def test_many_small_debits_never_overdraw(self, file_engine):
        factory = session_factory(file_engine)
        async with factory() as session:
            user = await _signup(session, "many@example.com")
            await wallet_service.credit_deposit(
                session, user.id, 500, PaymentMethod.CARD, ledger=Ledger.BALANCE
            )
            await session.commit()
            user_id = user.id

        results = await asyncio.gather(
            *(
                _run_request(factory, lambda s: wallet_service.withdraw(s, user_id, 100))
                for _ in range(8)
            ),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        assert len(succeeded) <= 5
        assert all(
            isinstance(r, (InsufficientFundsError, ConcurrencyConflictError))
            for r in results
            if isinstance(r, Exception)
        )

        async with factory() as session:
            balance = await wallet_service.get_balance(session, user_id)
            assert balance["balance"] == 500 - 100 * len(succeeded)
            assert balance["balance"] >= 0
            assert balance["match"] is True


class TestConcurrentRideStarts:
    async def test_two_riders_one_bike(self, file_engine):
        factory = session_factory(file_engine)
        async with factory() as session:
            first = await _signup(session, "first@example.com")
            second = await _signup(session, "second@example.com")
            bike = Bike(code="BK-RACE", model="City")
            session.add(bike)
            await session.commit()
            user_ids = [first.id, second.id]
            bike_id = bike.id

        results = await asyncio.gather(
            *(
                _run_request(
                    factory,
                    lambda s, user_id=user_id: ride_service.start_ride(s, user_id, bike_id),
                )
                for user_id in user_ids
            ),
            return_exceptions=True,
        )

        started = [r for r in results if isinstance(r, Ride)]
        assert len(started) == 1
        assert all(
            isinstance(r, (BikeUnavailableError, SessionAlreadyActiveError, ConcurrencyConflictError))
            for r in results
            if not isinstance(r, Ride)
        )

        async with factory() as session:
            active = await session.execute(
                select(func.count(Ride.id)).where(Ride.status == RideStatus.IN_PROGRESS)
            )
            assert active.scalar_one() == 1

    async def test_one_rider_two_bikes(self, file_engine):
        """A double-tap from one rider on two bikes starts one ride and frees the other bike."""
        factory = session_factory(file_engine)
        async with factory() as session:
            rider = await _signup(session, "doubletap@example.com")
            bikes = [Bike(code=f"BK-TAP-{i}", model="City") for i in range(2)]
            session.add_all(bikes)
            await session.commit()
            user_id = rider.id
            bike_ids = [bike.id for bike in bikes]

        results = await asyncio.gather(
            *(
                _run_request(
                    factory,
                    lambda s, bike_id=bike_id: ride_service.start_ride(s, user_id, bike_id),
                )
                for bike_id in bike_ids
            ),
            return_exceptions=True,
        )

        started = [r for r in results if isinstance(r, Ride)]
        assert len(started) == 1
        assert all(
            isinstance(r, (SessionAlreadyActiveError, ConcurrencyConflictError))
            for r in results
            if not isinstance(r, Ride)
        )

        async with factory() as session:
            active = await session.execute(
                select(Ride.bike_id).where(
                    Ride.user_id == user_id, Ride.status == RideStatus.IN_PROGRESS
                )
            )
            [riding_bike_id] = active.scalars().all()
            assert riding_bike_id == started[0].bike_id

            statuses = await session.execute(select(Bike.id, Bike.status).where(Bike.id.in_(bike_ids)))
            by_id = dict(statuses.all())
            assert by_id[riding_bike_id] == BikeStatus.IN_USE
            [idle_bike_id] = [b for b in bike_ids if b != riding_bike_id]
            assert by_id[idle_bike_id] == BikeStatus.AVAILABLE
