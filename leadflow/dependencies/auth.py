"""
Authentication dependencies for FastAPI.

Every delivery API route requires a service token carrying the
matching scope.
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from leadflow.services.jwt_service import JWTService


# Security scheme
security = HTTPBearer()


class TokenPayload(BaseModel):
    """Service token payload model."""
    sub: str      # calling service
    scopes: list[str] = []


async def get_current_service(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """
    Dependency that requires a valid service token.

    Returns token payload if valid, raises 401 if invalid.
    """
    payload = JWTService().verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = TokenPayload(**payload)
    request.state.service = token.sub
    return token


def require_scope(scope: str):
    """
    Dependency factory requiring a scope.

    Usage:
        @router.post("/deliveries")
        async def enqueue(token: TokenPayload = Depends(require_scope("webhooks:write"))):
            ...
    """
    def checker(token: TokenPayload = Depends(get_current_service)) -> TokenPayload:
        if scope not in token.scopes:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Scope required: {scope}"
            )
        return token

    return checker
