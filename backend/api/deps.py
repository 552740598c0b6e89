"""
MaintainOps API Dependencies

Dependency injection for DB sessions, auth, tenant context and the clock.
"""

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock, system_clock
from core.config import get_settings
from db.session import AsyncSessionLocal

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

DEV_TENANT_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@maintainops.local",
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


def get_tenant_id(user: dict = Depends(get_current_user)) -> uuid.UUID:
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
            detail="Malformed tenant context",
        )


async def get_tenant_db(
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> AsyncSession:
    """
    Get a DB session with tenant context set.
    Sets the PostgreSQL RLS variable at the start of every transaction,
    since engine operations commit and begin again within one request.
    """
    if db.bind.dialect.name != "postgresql":
        return db

    @event.listens_for(db.sync_session, "after_begin")
    def _set_tenant_context(session, transaction, connection):
        connection.execute(
            text("SELECT set_config('app.current_tenant_id', :tid, true)"),
            {"tid": str(tenant_id)},
        )

    return db


def get_clock() -> Clock:
    """Time source for visit transitions; overridden in tests."""
    return system_clock
