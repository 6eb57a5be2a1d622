"""Shared route dependencies."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.middleware.auth import require_auth
from dsa_onboarding.models.application import Application
from dsa_onboarding.services.application_service import application_service
from dsa_onboarding.services.token_service import Identity


async def current_application(
    identity: Identity = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> Application:
    """The caller's application; 404 when none is attached to the login."""
    return await application_service.get_application(db, identity)
