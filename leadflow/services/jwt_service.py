"""
JWT token service for internal service authentication.

Lead assignment and the CRM integration surface call the delivery API
with short-lived service tokens.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from leadflow.config import settings


class JWTService:
    """Service for creating and verifying JWT tokens."""

    def create_token(self, service: str, scopes: list[str]) -> str:
        """
        Create a service token.

        Args:
            service: Calling service name (becomes `sub`)
            scopes: Granted scopes, e.g. ["webhooks:write"]

        Returns:
            Encoded JWT token string
        """
        expires = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

        payload = {
            "sub": service,
            "scopes": scopes,
            "exp": expires
        }

        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError:
            return None
