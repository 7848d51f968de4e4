# classroll/backend/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings


def get_limiter_key(request: Request) -> str:
    """
    Returns the rate-limit key for a request.

    Students checking in from the school network share one public address,
    so signed-in callers are limited per user id ("user:<sub>") instead.
    Anonymous or undecodable requests fall back to the client address.
    """
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() == "bearer" and token and settings.SECRET_KEY:
        try:
            # Only the identity matters here; expiry is enforced by the route dependency.
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
        except jwt.PyJWTError:
            payload = {}
        user_id = payload.get("sub")
        if user_id:
            return f"user:{user_id}"

    return get_remote_address(request)


limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
