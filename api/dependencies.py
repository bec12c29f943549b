"""
FastAPI dependencies: database session and source registry
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import async_session_maker
from ingestion.registry import SourceRegistry, build_default_registry


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request"""
    async with async_session_maker() as session:
        yield session


def get_registry(request: Request) -> SourceRegistry:
    """
    Registry built at startup.

    Falls back to building one when the app was started without its
    lifespan (e.g. mounted in another ASGI app).
    """
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        registry = build_default_registry()
        request.app.state.registry = registry
    return registry
