import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from pydantic import ValidationError

from .schemas.user import TokenData
from ..models.db_models import Principal, Role
from ..config.config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> Principal:
    """
    Decodes the bearer token, validates its claims with pydantic and returns
    the caller as an explicit Principal.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenData.model_validate(payload)

        if token_data.sub is None or token_data.role is None:
            logger.warning(f"Token is valid but missing 'sub' or 'role': {payload}")
            raise credentials_exception

        return Principal(user_id=token_data.sub, role=Role(token_data.role.lower()))

    except (jwt.PyJWTError, ValidationError, ValueError) as e:
        # Covers expired or badly signed tokens and malformed claims alike.
        logger.warning(f"Token validation error: {e}")
        raise credentials_exception


def require_roles(*roles: Role):
    """Dependency factory that only lets the given roles through."""
    async def _checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="This operation is not allowed for your role.")
        return principal
    return _checker
