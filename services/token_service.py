from datetime import datetime, timezone, timedelta
from jose import jwt, JWTError
from core.config import settings


class TokenService:
    """
    Access tokens shared with the login service.

    The OTP login flow issues these; this service only needs to mint them
    (login service, tests, tooling) and read them back.
    """

    @staticmethod
    def create_access_token(user_id: int, role: str, subject: str | None = None,
                            expires_delta: timedelta = None):
        """
        Creates a JWT access token.

        Args:
            user_id: User's ID
            role: customer, admin or delivery
            subject: Stable user handle, the phone number by default flow
            expires_delta: Token lifetime (default: ACCESS_TOKEN_EXPIRE_MINUTES)

        Returns:
            JWT access token string
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        expire = datetime.now(timezone.utc) + expires_delta

        payload = {
            "sub": subject or str(user_id),
            "id": user_id,
            "role": role,
            "type": "access",
            "exp": expire
        }

        return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_access_token(token: str) -> dict:
        """
        Returns {"user_id", "role"} for a valid access token.

        Raises:
            JWTError: bad signature, expired, or not an access token
        """
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])

        user_id = payload.get("id")
        role = payload.get("role")
        if user_id is None or role is None:
            raise JWTError("Token is missing identity claims")
        if payload.get("type") != "access":
            raise JWTError("Invalid token type. Access token required.")

        return {"user_id": user_id, "role": role}
