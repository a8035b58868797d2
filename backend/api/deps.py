"""
EDI Exchange API Dependencies

Dependency injection for session factories, auth, tenant context and the
exchange services.
"""

import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.config import get_settings
from db.session import AsyncSessionLocal
from services.configuration import ConfigurationService
from services.transactions import EdiTransactionService

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

# Local debug tenant
DEV_TENANT_ID = "00000000-0000-0000-0000-000000000001"


def get_session_factory():
    """Services open one short session per state transition."""
    return AsyncSessionLocal


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@edi-exchange.local",
            "tenant_id": DEV_TENANT_ID,
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_tenant_id(user: dict = Depends(get_current_user)) -> uuid.UUID:
    tenant_id = user.get("tenant_id")
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No tenant context",
        )
    try:
        return uuid.UUID(str(tenant_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid tenant context",
        )


def get_scheduler(request: Request):
    """Polling scheduler started in the app lifespan (None when disabled)."""
    return getattr(request.app.state, "scheduler", None)


def get_configuration_service(
    session_factory=Depends(get_session_factory),
    scheduler=Depends(get_scheduler),
) -> ConfigurationService:
    return ConfigurationService(session_factory, scheduler=scheduler)


def get_transaction_service(
    session_factory=Depends(get_session_factory),
    configuration: ConfigurationService = Depends(get_configuration_service),
) -> EdiTransactionService:
    return EdiTransactionService(session_factory, configuration=configuration)
