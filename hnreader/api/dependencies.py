"""
Shared FastAPI dependencies.

Long-lived components are created once in the application lifespan and
stored on app.state; these accessors hand them to the route handlers.
"""
import secrets
from typing import Optional

from fastapi import HTTPException, Query, Request, status

from hnreader.cache.redis_client import RedisCache
from hnreader.cache.toplist import TopList
from hnreader.database.store import Store
from hnreader.events.broker import EventBroker
from hnreader.scrapers.hn_client import HNClient
from hnreader.services.fetcher import Fetcher


async def require_auth(
    request: Request,
    token: Optional[str] = Query(None, description="Bearer token for clients that cannot set headers (EventSource)"),
) -> None:
    """
    Authorize a request against the configured API token.

    With no token configured the API is open. Otherwise the request must
    carry "Authorization: Bearer <token>" or a matching `token` query param.

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    expected = request.app.state.settings.api_token
    if not expected:
        return

    supplied = token
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        supplied = credentials.strip()

    if not supplied or not secrets.compare_digest(supplied, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_fetcher(request: Request) -> Fetcher:
    return request.app.state.fetcher


def get_client(request: Request) -> HNClient:
    return request.app.state.client


def get_toplist(request: Request) -> TopList:
    return request.app.state.toplist


def get_broker(request: Request) -> EventBroker:
    return request.app.state.broker


def get_cache(request: Request) -> Optional[RedisCache]:
    return request.app.state.cache
