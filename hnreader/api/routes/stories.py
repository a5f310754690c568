import asyncio
import json
import time
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status

from hnreader.api.dependencies import (
    get_cache,
    get_client,
    get_fetcher,
    get_store,
    get_toplist,
    require_auth,
)
from hnreader.api.middleware.rate_limit import check_rate_limit
from hnreader.api.responses import json_with_etag
from hnreader.api.schemas.stories import (
    ArticleResponse,
    CommentsResponse,
    PeriodStoriesResponse,
    RefreshResponse,
    StoryListResponse,
    StoryResponse,
)
from hnreader.cache.redis_client import CacheKeys, RedisCache
from hnreader.cache.toplist import TopList
from hnreader.database.store import Store
from hnreader.models.hn import Item
from hnreader.scrapers.hn_client import HNClient, UpstreamError
from hnreader.services.fetcher import Fetcher
from hnreader.services.ranker import PERIODS
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/stories", tags=["stories"], dependencies=[Depends(require_auth)])

STORY_REFRESHED = "story_refreshed"
COMMENTS_UPDATED = "comments_updated"


# ═══════════════════════════════════════════════════════════════════════════════
# RATE LIMIT DEPENDENCY FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════


async def rate_limit_stories_read(request: Request):
    """Rate limit: story reads, 300 requests per minute per IP."""
    return await check_rate_limit(request, "stories:read")


async def rate_limit_story_refresh(request: Request, story_id: int):
    """
    Rate limit: POST /stories/{id}/refresh

    Keyed on the story rather than the client: a story is refreshed
    upstream at most once per window no matter how many readers ask.
    """
    return await check_rate_limit(request, "stories:refresh", identifier=str(story_id))


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════


def _story(item: Item, rank: Optional[int] = None) -> StoryResponse:
    story = StoryResponse.model_validate(item)
    if rank is not None:
        story = story.model_copy(update={"rank": rank})
    return story


def _page_size(request: Request) -> int:
    return request.app.state.settings.page_size


async def _load_story(story_id: int, store: Store, fetcher: Fetcher) -> Item:
    """
    Stored story, fetched on demand on a miss.

    Raises:
        HTTPException: 502 if the upstream fetch fails, 404 if the story doesn't exist
    """
    item = await store.get_item(story_id)
    if item is not None:
        return item

    try:
        await fetcher.fetch_item_singleflight(story_id)
    except UpstreamError as e:
        logger.error(f"On-demand fetch of story {story_id} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch story from Hacker News")

    item = await store.get_item(story_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Story not found")
    return item


# ═══════════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════


@router.get("", response_model=StoryListResponse)
async def list_stories(
    request: Request,
    page: int = Query(1, ge=1),
    store: Store = Depends(get_store),
    fetcher: Fetcher = Depends(get_fetcher),
    toplist: TopList = Depends(get_toplist),
    _rate_limit=Depends(rate_limit_stories_read),
):
    """
    Front page, in Hacker News order.

    Pages come from the in-memory TopList, which is replaced as soon as a
    poll reads the top IDs; stories not yet in the store are fetched on
    demand. Before the first poll the last persisted ranks are served.
    """
    page_size = _page_size(request)

    if len(toplist) == 0:
        items, total = await store.list_items_by_rank(page, page_size)
        payload = StoryListResponse(
            stories=[_story(item) for item in items],
            page=page,
            total=total,
            complete=True,
        )
        return json_with_etag(request, payload)

    ids, total = toplist.page(page, page_size)
    found = await store.get_items_by_ids(ids)

    missing = [story_id for story_id in ids if story_id not in found]
    if missing:
        results = await asyncio.gather(
            *(fetcher.fetch_item_singleflight(story_id) for story_id in missing),
            return_exceptions=True,
        )
        for story_id, result in zip(missing, results):
            if isinstance(result, Exception):
                logger.warning(f"On-demand fetch of story {story_id} failed: {result}")
        found.update(await store.get_items_by_ids(missing))

    offset = (page - 1) * page_size
    stories = [
        _story(found[story_id], rank=offset + position)
        for position, story_id in enumerate(ids, start=1)
        if story_id in found
    ]

    payload = StoryListResponse(
        stories=stories,
        page=page,
        total=total,
        complete=len(stories) == len(ids),
    )
    return json_with_etag(request, payload)


@router.get("/top", response_model=PeriodStoriesResponse)
async def list_top_stories(
    request: Request,
    period: str = Query("day", description="day, yesterday or week"),
    page: int = Query(1, ge=1),
    store: Store = Depends(get_store),
    cache: Optional[RedisCache] = Depends(get_cache),
    _rate_limit=Depends(rate_limit_stories_read),
):
    """Best stories of a period by ranking score. Cached until the next ranking run."""
    if period not in PERIODS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid period '{period}'. Must be one of: {', '.join(PERIODS)}",
        )

    cache_key = CacheKeys.rankings_page(period, page)
    if cache is not None:
        cached = await cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache HIT: {cache_key}")
            return json_with_etag(request, cached)

    items, total = await store.list_items_by_period(period, page, _page_size(request))
    payload = PeriodStoriesResponse(
        period=period,
        stories=[_story(item) for item in items],
        page=page,
        total=total,
    ).model_dump(mode="json")

    if cache is not None:
        await cache.set(cache_key, payload, ttl=RedisCache.TTL_RANKINGS)

    return json_with_etag(request, payload)


@router.get("/{story_id}", response_model=StoryResponse)
async def get_story(
    request: Request,
    story_id: int,
    store: Store = Depends(get_store),
    fetcher: Fetcher = Depends(get_fetcher),
    _rate_limit=Depends(rate_limit_stories_read),
):
    item = await _load_story(story_id, store, fetcher)
    return json_with_etag(request, _story(item))


@router.get("/{story_id}/comments", response_model=CommentsResponse)
async def get_comments(
    request: Request,
    story_id: int,
    store: Store = Depends(get_store),
    fetcher: Fetcher = Depends(get_fetcher),
    client: HNClient = Depends(get_client),
    _rate_limit=Depends(rate_limit_stories_read),
):
    """
    Comment tree of a story.

    - No comments stored but the story has some: full fetch
    - Fewer stored than the story's descendant count: fetch new branches only
    Upstream failures are logged and whatever is stored is served.
    """
    item = await _load_story(story_id, store, fetcher)

    stored = await store.count_comments(story_id)
    if item.descendants > 0 and stored < item.descendants:
        try:
            upstream = await client.fetch_item(story_id)
            if upstream is not None and upstream.kids:
                await fetcher.fetch_comments_singleflight(
                    story_id, upstream.kids, only_new=stored > 0
                )
        except UpstreamError as e:
            logger.warning(f"On-demand comment fetch for story {story_id} failed: {e}")

    roots, fetched_at = await store.get_comment_tree(story_id)
    payload = {
        "story_id": story_id,
        "fetched_at": fetched_at,
        "comments": [node.to_dict() for node in roots],
    }
    return json_with_etag(request, payload)


@router.get("/{story_id}/article", response_model=ArticleResponse)
async def get_article(
    request: Request,
    story_id: int,
    store: Store = Depends(get_store),
    fetcher: Fetcher = Depends(get_fetcher),
    _rate_limit=Depends(rate_limit_stories_read),
):
    """Reader-mode article, extracted on demand. Failed extractions are cached as such."""
    item = await _load_story(story_id, store, fetcher)
    if not item.url:
        raise HTTPException(status_code=404, detail="Story has no article URL")

    article = await store.get_article(story_id)
    if article is None:
        await fetcher.extract_article_singleflight(story_id, item.url)
        article = await store.get_article(story_id)
        if article is None:
            raise HTTPException(status_code=503, detail="Article could not be stored")

    return json_with_etag(request, ArticleResponse.model_validate(article))


@router.post("/{story_id}/refresh", response_model=RefreshResponse, status_code=status.HTTP_202_ACCEPTED)
async def refresh_story(
    request: Request,
    story_id: int,
    background_tasks: BackgroundTasks,
    article: bool = Query(False, description="Also re-extract the article"),
    _rate_limit=Depends(rate_limit_story_refresh),
) -> RefreshResponse:
    """
    Re-fetch a story with its comments (and optionally its article) in the
    background. Subscribers are notified through the event stream.
    """
    background_tasks.add_task(run_refresh, request.app.state, story_id, article)
    return RefreshResponse(story_id=story_id, status="accepted", article=article)


async def run_refresh(state, story_id: int, article: bool) -> None:
    fetcher: Fetcher = state.fetcher
    store: Store = state.store

    try:
        await fetcher.fetch_item_with_comments_singleflight(story_id)
    except Exception as e:
        logger.error(f"Refresh of story {story_id} failed: {e}")
        return

    if article:
        item = await store.get_item(story_id)
        if item is not None and item.url:
            await fetcher.extract_article_singleflight(story_id, item.url)

    data = json.dumps({"story_id": story_id, "timestamp": int(time.time())})
    state.broker.publish(STORY_REFRESHED, data)
    state.broker.publish(COMMENTS_UPDATED, data)
    logger.info(f"Story {story_id} refreshed")
