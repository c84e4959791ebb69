"""
Auth dependencies for the admin-triggered sync and board endpoints.
Tokens are issued by the back office login (not part of this service);
here they are only verified. The provider webhook endpoint is unauthenticated.
"""
import logging
import uuid

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.models.user import ADMIN_ROLES, ROLE_SUPER_ADMIN, User

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer()


class CurrentUser(BaseModel):
    id: uuid.UUID
    role: str
    tenant_id: uuid.UUID

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Dependency to extract and verify the user from a JWT Bearer token."""
    import jwt as pyjwt
    from src.config import get_settings
    settings = get_settings()

    try:
        payload = pyjwt.decode(
            credentials.credentials,
            settings.dashboard_jwt_secret or settings.app_secret_key,
            algorithms=["HS256"],
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        user_uuid = uuid.UUID(user_id)
    except (ValueError, AttributeError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    result = await db.execute(
        select(User).where(and_(User.id == user_uuid, User.is_active == True))  # noqa: E712
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return CurrentUser(id=user.id, role=user.role, tenant_id=user.tenant_id)


async def get_current_admin(
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Dependency that requires an admin role."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def require_tenant_access(user: CurrentUser, tenant_id: str) -> uuid.UUID:
    """
    Parse the requested tenant id and check the user may act on it.
    Super admins may act on any tenant; everyone else only on their own.
    """
    try:
        tenant_uuid = uuid.UUID(str(tenant_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid tenantId")

    if user.role != ROLE_SUPER_ADMIN and user.tenant_id != tenant_uuid:
        logger.warning(
            "User %s denied access to tenant %s", str(user.id)[:8], str(tenant_uuid)[:8],
        )
        raise HTTPException(status_code=403, detail="Not authorized for this tenant")
    return tenant_uuid
