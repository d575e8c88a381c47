from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.exceptions import AccessDeniedError
from ..core.security import (
    security, verify_token, AuthenticationError, UserRole, TokenPayload, Actor
)
from ..models.user import User

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    user = db.query(User).filter(User.id == token_payload.sub).first()
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user

def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    """The caller with the role stored on their account."""
    return Actor(user_id=current_user.id, role=UserRole(current_user.role))

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise AccessDeniedError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return role_checker

get_patient_actor = require_role([UserRole.PATIENT])

# Rate limiting dependency
def booking_rate_limit(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Limit booking attempts per client within a fixed TTL window."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:booking:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.BOOKING_RATE_LIMIT_WINDOW_SECONDS, 1)
        return

    if int(current_requests) >= settings.BOOKING_RATE_LIMIT:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later."
        )
    redis_client.incr(key)
