# Imports for testing tools
import os
import datetime
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

# Keep the app's import-time engine away from the working directory database
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_booking.db")

# Import your application code
from booking_service.main import app
from booking_service.booking_state import BookingStatus
from booking_service.database import Base, make_engine, make_session_factory
from booking_service.directory import get_directory
from booking_service.lifecycle import BookingLifecycle
from booking_service.reviews import ReviewService
from booking_service.routers.dependencies import read_limiter, write_limiter
from booking_service.schemas import CreateInquiry, ListingRecord, ProfileRecord, ServiceLocation
from booking_service.store import Store, get_store

CLIENT_ID = "client-anna"
HOST_ID = "host-jan"
STRANGER_ID = "stranger-ola"
LISTING_ID = "listing-tap-repair"
INSTANT_LISTING_ID = "listing-boiler-check"

START = datetime.datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime.datetime = START):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> datetime.datetime:
        self.now += datetime.timedelta(**kwargs)
        return self.now


class FakeDirectory:
    """In-memory stand-in for the listing/profile service."""

    def __init__(self):
        self.listings = {
            LISTING_ID: ListingRecord(
                id=LISTING_ID,
                host_id=HOST_ID,
                title="Leaking tap repair",
                service_type="plumbing",
                base_price=150.0,
                price_unit="visit",
                rating_average=4.8,
            ),
            INSTANT_LISTING_ID: ListingRecord(
                id=INSTANT_LISTING_ID,
                host_id=HOST_ID,
                title="Boiler inspection",
                service_type="heating",
                base_price=220.0,
                price_unit="visit",
                instant_booking=True,
                cancellation_policy="strict",
            ),
        }
        self.profiles = {
            HOST_ID: ProfileRecord(id=HOST_ID, display_name="Jan Kowalski", avatar_url="https://cdn.example/jan.png"),
            CLIENT_ID: ProfileRecord(id=CLIENT_ID, display_name="Anna Nowak"),
        }

    def get_listing(self, listing_id):
        return self.listings.get(listing_id)

    def get_profile(self, user_id):
        return self.profiles.get(user_id)


def inquiry(listing_id: str = LISTING_ID, client_id: str = CLIENT_ID, host_id: str = HOST_ID) -> CreateInquiry:
    return CreateInquiry(
        client_id=client_id,
        host_id=host_id,
        listing_id=listing_id,
        scheduled_date=START + datetime.timedelta(days=3),
        estimated_duration=90,
        service_location=ServiceLocation(lat=52.2297, lng=21.0122, address="ul. Marszałkowska 1, Warszawa"),
    )


# Happy path used to put a fresh booking into any non-canceled status
_PATH = [
    (BookingStatus.PENDING_APPROVAL, lambda lc, bid: lc.request_to_book(bid, CLIENT_ID)),
    (BookingStatus.PENDING_PAYMENT, lambda lc, bid: lc.approve_booking(bid, HOST_ID)),
    (BookingStatus.CONFIRMED, lambda lc, bid: lc.confirm_payment(bid)),
    (BookingStatus.ACTIVE, lambda lc, bid: lc.check_in(bid, HOST_ID)),
    (BookingStatus.COMPLETED, lambda lc, bid: lc.check_out(bid, HOST_ID)),
]


def create_booking_in(lifecycle: BookingLifecycle, status: BookingStatus = BookingStatus.INQUIRY) -> str:
    """Creates a booking and walks it along the happy path until it reaches `status`."""
    result = lifecycle.create_inquiry(inquiry())
    assert result.success, result.message
    booking_id = result.booking_id
    for reached, step in _PATH:
        if status == BookingStatus.INQUIRY:
            break
        step_result = step(lifecycle, booking_id)
        assert step_result.success, step_result.message
        if reached == status:
            break
    return booking_id


# --- Database Management Fixtures ---
@pytest.fixture(scope="function")
def engine(tmp_path):
    """A throwaway SQLite file per test, so separate sessions really race."""
    engine = make_engine(f"sqlite:///{tmp_path / 'test_booking.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """A plain session for inspecting what the engine committed."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def store(session_factory):
    return Store(session_factory, max_attempts=3)


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def directory():
    return FakeDirectory()


@pytest.fixture(scope="function")
def lifecycle(store, directory, clock):
    return BookingLifecycle(store, directory=directory, clock=clock)


@pytest.fixture(scope="function")
def reviews(store, clock):
    return ReviewService(store, clock=clock)


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the background tasks (poller and scheduler) and the Redis-backed
    limiter setup that run on app lifespan.
    """
    mocker.patch("booking_service.main.run_outbox_poller", new_callable=AsyncMock)
    mocker.patch("booking_service.main.run_booking_scheduler", new_callable=AsyncMock)
    mocker.patch("booking_service.main.FastAPILimiter.init", new_callable=AsyncMock)


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(store, directory):
    """Provides a TestClient wired to the per-test store and fake directory."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[write_limiter] = lambda: None
    app.dependency_overrides[read_limiter] = lambda: None

    # Create and yield the TestClient
    with TestClient(app) as c:
        yield c

    # Clean up overrides
    app.dependency_overrides.clear()
