from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Literal, Optional
import datetime

from .booking_state import BookingStatus
from .errors import BookingServiceError, ErrorCode


# --- Value objects stored on the booking row ---

class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class StatusChange(FrozenModel):
    status: BookingStatus
    changed_at: datetime.datetime
    changed_by: str
    reason: Optional[str] = None


class ListingSnapshot(FrozenModel):
    title: str
    service_type: str
    price_at_booking: float
    price_unit: Literal["hour", "visit", "project"] = "visit"
    instant_booking: bool = False


class HostSnapshot(FrozenModel):
    display_name: str
    avatar_url: Optional[str] = None
    rating_at_booking: float = 0


class ClientSnapshot(FrozenModel):
    display_name: str
    avatar_url: Optional[str] = None


class ServiceLocation(FrozenModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str


class AdditionalCharge(FrozenModel):
    description: str
    amount: float


class Pricing(FrozenModel):
    base_amount: float
    total_amount: float
    currency: str = "PLN"
    additional_charges: tuple[AdditionalCharge, ...] = ()


# --- Data read from the listing/profile subsystem ---

class ListingRecord(BaseModel):
    id: str
    host_id: Optional[str] = None
    title: str
    service_type: str
    base_price: float
    price_unit: Literal["hour", "visit", "project"] = "visit"
    rating_average: float = 0
    instant_booking: bool = False
    cancellation_policy: Literal["flexible", "moderate", "strict"] = "flexible"
    currency: str = "PLN"


class ProfileRecord(BaseModel):
    id: str
    display_name: str
    avatar_url: Optional[str] = None


# --- Inputs ---

class BookingCreate(BaseModel):
    # client_id comes from the JWT token
    host_id: str
    listing_id: str
    scheduled_date: datetime.datetime
    estimated_duration: int = Field(gt=0, description="Minutes")
    service_location: ServiceLocation


class CreateInquiry(BookingCreate):
    client_id: str


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CategoryRatings(FrozenModel):
    communication: Optional[int] = Field(default=None, ge=1, le=5)
    quality: Optional[int] = Field(default=None, ge=1, le=5)
    timeliness: Optional[int] = Field(default=None, ge=1, le=5)
    value: Optional[int] = Field(default=None, ge=1, le=5)


class ReviewCreate(BaseModel):
    # author_id comes from the JWT token
    booking_id: str
    rating: int = Field(ge=1, le=5)
    content: str = Field(min_length=1, max_length=5000)
    category_ratings: Optional[CategoryRatings] = None


class SubmitReview(ReviewCreate):
    author_id: str


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    content: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    category_ratings: Optional[CategoryRatings] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.rating is None and self.content is None and self.category_ratings is None:
            raise ValueError("At least one field must be provided")
        return self


# --- Read models ---

class BookingRead(BaseModel):
    id: str
    client_id: str
    host_id: str
    listing_id: str
    status: BookingStatus
    status_history: list[StatusChange]
    listing_snapshot: ListingSnapshot
    host_snapshot: HostSnapshot
    client_snapshot: ClientSnapshot
    scheduled_date: datetime.datetime
    estimated_duration: int
    check_in: Optional[datetime.datetime] = None
    check_out: Optional[datetime.datetime] = None
    service_location: ServiceLocation
    pricing: Pricing
    payment_status: str
    cancellation_policy: str
    booking_hash: str
    chat_id: str
    review_window_ends_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewRead(BaseModel):
    id: str
    booking_id: str
    author_id: str
    author_role: Literal["client", "host"]
    target_id: str
    rating: int
    category_ratings: Optional[CategoryRatings] = None
    content: str
    published: bool
    pair_complete: bool
    published_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewPair(BaseModel):
    client_review: Optional[ReviewRead] = None
    host_review: Optional[ReviewRead] = None
    both_published: bool = False


class ReviewPrompt(BaseModel):
    booking_id: str
    other_party_reviewed: bool
    message: str


# --- Operation results ---

class ActionResult(BaseModel):
    """Structured outcome of an engine operation: success or a coded error."""

    success: bool
    error: Optional[ErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def failed(cls, exc: BookingServiceError, **fields):
        return cls(success=False, error=exc.code, message=exc.message, **fields)


class BookingActionResult(ActionResult):
    booking_id: Optional[str] = None
    new_status: Optional[BookingStatus] = None


class ReviewSubmitResult(ActionResult):
    review_id: Optional[str] = None
    pair_published: bool = False
