"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.engine import EngagementEngine


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract the authenticated actor from header."""
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-ID header is required",
        )
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-ID format",
        )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
ActorId = Annotated[UUID, Depends(get_actor_id)]


async def get_engine(request: Request, db: DbSession) -> EngagementEngine:
    """Engine facade bound to the request's session."""
    state = request.app.state
    return EngagementEngine(
        db,
        state.gateway,
        config=state.engine_config,
        emitter=state.emitter,
    )


Engine = Annotated[EngagementEngine, Depends(get_engine)]
