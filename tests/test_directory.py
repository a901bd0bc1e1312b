import httpx
import pytest

from booking_service.directory import HttpDirectory
from booking_service.errors import ErrorCode, StoreUnavailableError
from booking_service.lifecycle import BookingLifecycle

from conftest import inquiry

LISTING = {
    "id": "listing-1",
    "host_id": "host-1",
    "title": "Kitchen tiling",
    "service_type": "tiling",
    "base_price": 80.0,
    "price_unit": "hour",
    "rating_average": 4.2,
    "instant_booking": True,
}


def directory_with(handler) -> HttpDirectory:
    return HttpDirectory(base_url="http://listings.test", timeout=1, transport=httpx.MockTransport(handler))


def test_get_listing():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/listings/listing-1"
        return httpx.Response(200, json=LISTING)

    listing = directory_with(handler).get_listing("listing-1")

    assert listing.title == "Kitchen tiling"
    assert listing.instant_booking is True
    assert listing.cancellation_policy == "flexible"


def test_get_profile():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/users/host-1"
        return httpx.Response(200, json={"id": "host-1", "display_name": "Piotr"})

    profile = directory_with(handler).get_profile("host-1")

    assert profile.display_name == "Piotr"
    assert profile.avatar_url is None


def test_missing_records_are_none():
    directory = directory_with(lambda request: httpx.Response(404, json={"detail": "Not found"}))

    assert directory.get_listing("gone") is None
    assert directory.get_profile("gone") is None


def test_server_errors_mean_unavailable():
    directory = directory_with(lambda request: httpx.Response(500))

    with pytest.raises(StoreUnavailableError):
        directory.get_listing("listing-1")


def test_connection_errors_mean_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(StoreUnavailableError):
        directory_with(handler).get_profile("host-1")


def test_lifecycle_reports_an_unavailable_directory(store):
    lifecycle = BookingLifecycle(store, directory=directory_with(lambda request: httpx.Response(503)))

    result = lifecycle.create_inquiry(inquiry())

    assert result.success is False
    assert result.error == ErrorCode.STORE_UNAVAILABLE


def test_malformed_listing_means_unavailable():
    directory = directory_with(lambda request: httpx.Response(200, json={"id": "listing-1"}))

    with pytest.raises(StoreUnavailableError):
        directory.get_listing("listing-1")


def test_non_json_body_means_unavailable():
    directory = directory_with(lambda request: httpx.Response(200, content=b"<html>maintenance</html>"))

    with pytest.raises(StoreUnavailableError):
        directory.get_profile("host-1")


def test_lifecycle_reports_a_malformed_listing(store):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/listings/"):
            return httpx.Response(200, json={"id": "listing-1", "title": "Kitchen tiling"})
        return httpx.Response(200, json={"id": "host-1", "display_name": "Piotr"})

    lifecycle = BookingLifecycle(store, directory=directory_with(handler))

    result = lifecycle.create_inquiry(inquiry())

    assert result.success is False
    assert result.error == ErrorCode.STORE_UNAVAILABLE
