from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from jose import JWTError
from core.config import settings
from services.token_service import TokenService


def get_user_id(request: Request):
    """
    Rate-limit key: the caller's user id when it sends a valid access
    token, otherwise its IP address.
    """
    token = request.headers.get("Authorization")
    if token:
        try:
            claims = TokenService.decode_access_token(token.replace("Bearer ", ""))
            return f"user:{claims['user_id']}"
        except JWTError:
            pass

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_user_id,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    enabled=settings.ENV != "testing"
)
