from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promptloop.config import Settings, get_settings
from promptloop.core.database import AsyncSessionLocal
from promptloop.core.security import verify_bearer_token


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory handed to the runner, which opens one session per job."""
    return AsyncSessionLocal


# Type aliases for dependency injection
AppSettings = Annotated[Settings, Depends(get_settings)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


async def require_cron_secret(
    settings: AppSettings,
    authorization: str | None = Header(default=None),
) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` when a secret is configured."""
    if not settings.cron_secret:
        return
    if not verify_bearer_token(authorization, settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


CronAuthorized = Annotated[None, Depends(require_cron_secret)]
