import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hnreader.api.middleware.rate_limit import LocalRateLimiter
from hnreader.api.routes import events, health, stories
from hnreader.cache.redis_client import RedisCache
from hnreader.cache.toplist import TopList
from hnreader.config.settings import Settings, get_settings
from hnreader.database.config import build_engine, init_db
from hnreader.database.store import Store
from hnreader.events.broker import EventBroker
from hnreader.scrapers.article_extractor import ArticleExtractor
from hnreader.scrapers.hn_client import HNClient
from hnreader.services.fetcher import Fetcher
from hnreader.services.ranker import Ranker
from hnreader.tasks.cleaner import Cleaner
from hnreader.tasks.poller import Poller
from hnreader.tasks.workers import BackgroundWorkers
from hnreader.utils.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Create the schema and the store
        - Build the upstream client, extractor and fetcher
        - Connect Redis (ranking page cache + refresh rate limiter), optional
        - Start the poller and cleaner

    Shutdown:
        - Signal the shared stop event and wait for the workers
        - Close HTTP clients, Redis and the database engine
    """
    s: Settings = app.state.settings

    # ── STARTUP ────────────────────────────────────────────────────────────

    engine = build_engine(s.async_database_url)
    await init_db(engine)
    store = Store(engine)
    logger.info("Database initialized")

    stop_event = asyncio.Event()
    client = HNClient(
        base_url=s.hn_base_url,
        concurrency=s.hn_concurrency,
        timeout=s.hn_timeout_seconds,
        top_limit=s.top_stories_limit,
    )
    extractor = ArticleExtractor(
        timeout=s.article_timeout_seconds,
        max_bytes=s.article_max_bytes,
        user_agent=s.article_user_agent,
    )
    fetcher = Fetcher(client, store, extractor, stop_event=stop_event)

    cache: Optional[RedisCache] = None
    if s.redis_enabled:
        cache = RedisCache(s.redis_url)
        await cache.connect()
        if not cache.is_connected:
            logger.warning("Redis unavailable - caching and rate limiting disabled")
            cache = None

    toplist = TopList()
    broker = EventBroker(ring_size=s.event_ring_size, subscriber_buffer=s.subscriber_buffer)
    ranker = Ranker(store, cache=cache)

    poller = Poller(
        client, fetcher, store, ranker, broker, toplist,
        stop_event=stop_event,
        interval=s.poll_interval_seconds,
        eager_count=s.eager_count,
        min_rank_pairs=s.min_rank_pairs,
    )
    cleaner = Cleaner(
        store,
        stop_event=stop_event,
        initial_delay=s.cleaner_initial_delay_seconds,
        interval=s.cleaner_interval_seconds,
        retention_days=s.retention_days,
    )
    workers = BackgroundWorkers(poller, cleaner, stop_event)

    # Store in app state (accessible in endpoints via request.app.state)
    app.state.store = store
    app.state.client = client
    app.state.fetcher = fetcher
    app.state.cache = cache
    app.state.redis_client = cache.client if cache is not None else None
    app.state.toplist = toplist
    app.state.broker = broker
    app.state.ranker = ranker
    app.state.poller = poller
    app.state.stop_event = stop_event
    app.state.workers = workers

    if s.enable_workers:
        workers.start()

    yield  # ← App runs here, handling requests

    # ── SHUTDOWN ───────────────────────────────────────────────────────────

    await workers.stop()
    await client.close()
    await extractor.close()
    if cache is not None:
        await cache.disconnect()
    await engine.dispose()
    logger.info("Shutdown complete")


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or get_settings()

    app = FastAPI(
        title="HN Reader API",
        version="1.0.0",
        description="Caching reader for Hacker News: front page, rankings, comments, articles and live updates",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.local_rate_limiter = LocalRateLimiter()

    # CORS - allow frontend to call API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    API_PREFIX = "/api"
    app.include_router(stories.router, prefix=API_PREFIX)
    app.include_router(events.router, prefix=API_PREFIX)
    app.include_router(health.router, prefix=API_PREFIX)

    @app.get("/")
    async def root():
        return {"message": "HN Reader API", "status": "running"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    s = get_settings()
    uvicorn.run(
        "hnreader.api.main:app",
        host=s.host,
        port=s.port,
        log_level=s.log_level.lower(),
    )
