import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from .config import JWT_ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

security = HTTPBearer()

MANAGER_ROLES = ("ADMIN", "MANAGER")


class CurrentUser(BaseModel):
    """Claims the API trusts from a verified access token"""

    sub: str
    org_id: str
    role: str
    email: Optional[str] = None


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry of an access token and return its claims"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"❌ Rejected access token: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    claims = decode_access_token(credentials.credentials)

    sub = claims.get("sub")
    org_id = claims.get("org_id")
    if not sub or not org_id:
        logger.warning("❌ Access token missing sub or org_id claim")
        raise HTTPException(status_code=401, detail="Token is missing required claims")

    return CurrentUser(
        sub=str(sub),
        org_id=str(org_id),
        role=str(claims.get("role", "")).upper(),
        email=claims.get("email"),
    )


def require_roles(*roles: str):
    """Dependency factory that only lets the given roles through"""

    async def checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in roles:
            logger.warning(
                f"⚠️ User {current_user.sub} with role {current_user.role or 'none'} denied, needs {roles}"
            )
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return checker
