"""
Async Hacker News API client.

Every request (top list, single item, batch member) first acquires a permit
from one shared asyncio.Semaphore, so a burst such as fetching hundreds of
comment branches never has more than `concurrency` requests in flight.
Waiting for a permit is cancellable. Failures are reported per call and
never retried here.
"""
import asyncio
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from hnreader.config.settings import settings
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)


class UpstreamError(Exception):
    """Network, timeout or HTTP failure talking to the Hacker News API."""


class UpstreamDecodeError(UpstreamError):
    """The Hacker News API answered with a body we could not decode."""


class HNItem(BaseModel):
    """An item as returned by /v0/item/<id>.json (story, comment, job, ...)."""
    id: int = 0
    type: str = ""
    by: str = ""
    time: int = 0
    text: str = ""
    url: str = ""
    title: str = ""
    score: int = 0
    descendants: int = 0
    kids: list[int] = []
    parent: int = 0
    dead: bool = False
    deleted: bool = False


class HNClient:
    """
    Bounded-concurrency client for the Hacker News Firebase API.

    Usage:
        client = HNClient()
        ids = await client.fetch_top()
        item = await client.fetch_item(ids[0])
        await client.close()
    """

    def __init__(
        self,
        base_url: str = settings.hn_base_url,
        concurrency: int = settings.hn_concurrency,
        timeout: float = settings.hn_timeout_seconds,
        top_limit: int = settings.top_stories_limit,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.top_limit = top_limit
        self._semaphore = asyncio.Semaphore(concurrency)
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def _get_json(self, path: str):
        async with self._semaphore:
            try:
                response = await self._http.get(f"{self.base_url}{path}")
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise UpstreamError(f"GET {path}: {e}") from e
            try:
                return response.json()
            except ValueError as e:
                raise UpstreamDecodeError(f"decode {path}: {e}") from e

    async def fetch_top(self) -> list[int]:
        """Current front-page story IDs, best first (at most top_limit)."""
        data = await self._get_json("/topstories.json")
        if not isinstance(data, list) or not all(isinstance(i, int) for i in data):
            raise UpstreamDecodeError("decode /topstories.json: expected a list of IDs")
        return data[: self.top_limit]

    async def fetch_item(self, item_id: int) -> Optional[HNItem]:
        """A single item, or None when upstream has no record for the ID."""
        data = await self._get_json(f"/item/{item_id}.json")
        if data is None:
            return None
        try:
            return HNItem.model_validate(data)
        except ValidationError as e:
            raise UpstreamDecodeError(f"decode item {item_id}: {e}") from e

    async def fetch_batch(self, ids: list[int]) -> list[Optional[HNItem]]:
        """
        Fetch many items concurrently.

        The result is aligned with `ids`; an item that failed or does not
        exist is None. Individual failures never fail the batch.
        """
        results = await asyncio.gather(
            *(self.fetch_item(item_id) for item_id in ids),
            return_exceptions=True,
        )
        items: list[Optional[HNItem]] = []
        for item_id, result in zip(ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.debug(f"Batch fetch of item {item_id} failed: {result}")
                items.append(None)
            else:
                items.append(result)
        return items
