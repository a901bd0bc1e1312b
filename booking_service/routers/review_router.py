from fastapi import APIRouter, Depends, HTTPException, status

from .. import schemas
from ..reviews import ReviewService
from .dependencies import CurrentUser, get_review_service, raise_for_result, read_limiter, write_limiter

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("/", response_model=schemas.ReviewSubmitResult, status_code=status.HTTP_201_CREATED)
def submit_review(
        review: schemas.ReviewCreate,
        user_id: CurrentUser,
        reviews: ReviewService = Depends(get_review_service),
        limit: None = Depends(write_limiter)
):
    """
    Review the other party of a completed booking. The review stays hidden
    from them until they have reviewed too.
    """
    return raise_for_result(reviews.submit_review(
        schemas.SubmitReview(author_id=user_id, **review.model_dump())
    ))


@router.patch("/{review_id}", response_model=schemas.ActionResult)
def update_review(
        review_id: str,
        updates: schemas.ReviewUpdate,
        user_id: CurrentUser,
        reviews: ReviewService = Depends(get_review_service),
        limit: None = Depends(write_limiter)
):
    return raise_for_result(reviews.update_review(review_id, user_id, updates))


@router.get("/bookings/{booking_id}", response_model=schemas.ReviewPair)
def read_review_pair(
        booking_id: str,
        user_id: CurrentUser,
        reviews: ReviewService = Depends(get_review_service),
        limit: None = Depends(read_limiter)
):
    return reviews.get_review_pair(booking_id, user_id)


@router.get("/bookings/{booking_id}/prompt", response_model=schemas.ReviewPrompt)
def read_review_prompt(
        booking_id: str,
        user_id: CurrentUser,
        reviews: ReviewService = Depends(get_review_service),
        limit: None = Depends(read_limiter)
):
    prompt = reviews.review_prompt(booking_id, user_id)
    if prompt is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return prompt


@router.get("/{review_id}", response_model=schemas.ReviewRead)
def read_review(
        review_id: str,
        user_id: CurrentUser,
        reviews: ReviewService = Depends(get_review_service),
        limit: None = Depends(read_limiter)
):
    review = reviews.get_review(review_id, user_id)
    if review is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Review not found")
    return review
