"""FastAPI dependencies exposing the media stack built in the app lifespan."""

from fastapi import Request

from nftcache.core.container import MediaStack
from nftcache.services.cache_store import CacheStore
from nftcache.services.pipeline import MediaResolutionPipeline


def get_stack(request: Request) -> MediaStack:
    """Get the MediaStack from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(stack: MediaStack = Depends(get_stack)):
        ...     counts = await stack.store.status_counts()
    """
    return request.app.state.stack


def get_pipeline(request: Request) -> MediaResolutionPipeline:
    return request.app.state.stack.pipeline


def get_store(request: Request) -> CacheStore:
    return request.app.state.stack.store
