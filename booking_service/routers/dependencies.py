from fastapi import Depends, HTTPException, status, Request
from typing import Annotated
from jose import jwt, JWTError
from fastapi.security import APIKeyHeader

from fastapi_limiter.depends import RateLimiter

from ..config import settings
from ..directory import get_directory
from ..errors import HTTP_STATUS_BY_CODE
from ..lifecycle import BookingLifecycle
from ..reviews import ReviewService
from ..schemas import ActionResult
from ..store import Store, get_store

api_key_header = APIKeyHeader(name="Authorization")


async def get_key_by_user_id_or_ip(request: Request) -> str:
    """
    Tries to get the user ID from the JWT token.
    If it fails (no token, invalid token), it falls back to the client's IP.
    """
    try:
        token = request.headers.get("Authorization")
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            return request.client.host  # Fallback to IP

        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")

        if user_id:
            return str(user_id)
    except (JWTError, ValueError, AttributeError, TypeError):
        # If token is invalid, missing, or malformed, limit by IP
        pass
    return request.client.host


# Shared limiter instances, so tests can override them by identity
write_limiter = RateLimiter(times=30, minutes=1, identifier=get_key_by_user_id_or_ip)
read_limiter = RateLimiter(times=60, minutes=1, identifier=get_key_by_user_id_or_ip)


async def get_current_user_id_from_token(
        token: Annotated[str, Depends(api_key_header)]
) -> str:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header to get the user ID.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            raise credentials_exception
        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
        if not user_id:
            raise credentials_exception
        return str(user_id)
    except (JWTError, ValueError, AttributeError):
        raise credentials_exception


CurrentUser = Annotated[str, Depends(get_current_user_id_from_token)]


def get_lifecycle(store: Store = Depends(get_store), directory=Depends(get_directory)) -> BookingLifecycle:
    return BookingLifecycle(store, directory=directory)


def get_review_service(store: Store = Depends(get_store)) -> ReviewService:
    return ReviewService(store)


def raise_for_result(result: ActionResult) -> ActionResult:
    """Turns a failed engine result into the matching HTTP error."""
    if not result.success:
        raise HTTPException(
            status_code=HTTP_STATUS_BY_CODE[result.error],
            detail={"error": result.error.value, "message": result.message},
        )
    return result
