from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.security import verify_access_token
from app.models.user import User


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing headers are reported by get_current_user
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Dependency to get the current authenticated user.
    Validates the JWT token and returns the user object.
    """
    if credentials is None:
        raise AuthenticationError("Authentication required")

    user_id = verify_access_token(credentials.credentials)
    if user_id is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise AuthenticationError("Invalid or expired token")

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        logger.warning(f"Invalid user_id in token: {user_id}")
        raise AuthenticationError("Invalid or expired token")

    user = await db.get(User, user_uuid)
    if user is None:
        logger.warning(f"User {user_id} not found")
        raise AuthenticationError("Invalid or expired token")

    if not user.is_active:
        raise AuthorizationError("User account is deactivated")

    return user


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
