"""Read-only client for the listing/profile service.

Only consulted while a booking is being created; everything the booking
needs afterwards is copied into its snapshots.
"""

import logging

import httpx

from .config import settings
from .errors import StoreUnavailableError
from .schemas import ListingRecord, ProfileRecord

logger = logging.getLogger("booking_service")


class HttpDirectory:
    def __init__(self, base_url: str | None = None, timeout: float | None = None, transport=None):
        self.client = httpx.Client(
            base_url=base_url or settings.LISTING_SERVICE_URL,
            timeout=timeout or settings.LISTING_SERVICE_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _get(self, path: str) -> dict | None:
        try:
            response = self.client.get(path)
        except httpx.HTTPError as e:
            logger.error(f"Listing service request {path} failed: {e}")
            raise StoreUnavailableError("The listing service is unavailable") from e

        if response.status_code == 404:
            return None
        if response.is_error:
            logger.error(f"Listing service returned {response.status_code} for {path}")
            raise StoreUnavailableError("The listing service is unavailable")
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Listing service returned a body that is not JSON for {path}: {e}")
            raise StoreUnavailableError("The listing service returned an invalid response") from e

    def _fetch(self, path: str, model):
        data = self._get(path)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValueError as e:
            # pydantic's ValidationError is a ValueError
            logger.error(f"Listing service returned a malformed {model.__name__} for {path}: {e}")
            raise StoreUnavailableError("The listing service returned an invalid response") from e

    def get_listing(self, listing_id: str) -> ListingRecord | None:
        return self._fetch(f"/listings/{listing_id}", ListingRecord)

    def get_profile(self, user_id: str) -> ProfileRecord | None:
        return self._fetch(f"/users/{user_id}", ProfileRecord)

    def close(self):
        self.client.close()


def get_directory():
    directory = HttpDirectory()
    try:
        yield directory
    finally:
        directory.close()
