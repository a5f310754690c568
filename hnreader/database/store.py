"""
Persistence layer for stories, comments, articles and period rankings.

Every method opens its own short-lived AsyncSession so the poller, the
cleaner and request handlers can share one Store safely. Operations that
must be all-or-nothing (rank swap, ranking replacement, story deletion)
run inside a single transaction.

Errors are sqlalchemy.exc.SQLAlchemyError and propagate to the caller.
"""
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, exists, func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from hnreader.database.comment_tree import (
    CommentNode,
    build_comment_tree,
    max_fetched_at,
)
from hnreader.models.hn import Article, Comment, Item, Ranking
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RankPair:
    """A story ID and its 1-based front-page position."""
    id: int
    rank: int


@dataclass(frozen=True)
class RankingRow:
    story_id: int
    score: float
    computed_at: int


class Store:
    """Async store over SQLite (aiosqlite) or PostgreSQL (asyncpg)."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _insert(self, model):
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(model)
        return sqlite.insert(model)

    # ─────────────────────────────────────────────────────────────────
    # Stories
    # ─────────────────────────────────────────────────────────────────

    async def upsert_item(self, values: dict[str, Any]) -> None:
        """
        Insert or update a story.

        A NULL rank in `values` keeps the stored rank; ranks are otherwise
        changed only through swap_ranks().
        """
        stmt = self._insert(Item).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Item.id],
            set_={
                "title": stmt.excluded.title,
                "url": stmt.excluded.url,
                "text": stmt.excluded.text,
                "score": stmt.excluded.score,
                "by": stmt.excluded.by,
                "time": stmt.excluded.time,
                "descendants": stmt.excluded.descendants,
                "type": stmt.excluded.type,
                "fetched_at": stmt.excluded.fetched_at,
                "rank": func.coalesce(stmt.excluded.rank, Item.rank),
                "dead": stmt.excluded.dead,
            },
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def get_item(self, item_id: int) -> Optional[Item]:
        async with self.session_factory() as session:
            return await session.get(Item, item_id)

    async def item_exists(self, item_id: int) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(select(exists().where(Item.id == item_id)))
            return bool(result.scalar())

    async def get_items_by_ids(self, ids: Sequence[int]) -> dict[int, Item]:
        """Stories keyed by ID; IDs not in the store are omitted."""
        if not ids:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(select(Item).where(Item.id.in_(list(ids))))
            return {item.id: item for item in result.scalars().all()}

    async def count_ranked_items(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(Item).where(Item.rank.is_not(None))
            )
            return result.scalar_one()

    async def list_items_by_rank(self, page: int = 1, page_size: int = 30) -> tuple[list[Item], int]:
        """Front-page stories ordered by rank. page is 1-indexed."""
        total = await self.count_ranked_items()
        async with self.session_factory() as session:
            result = await session.execute(
                select(Item)
                .where(Item.rank.is_not(None))
                .order_by(Item.rank.asc())
                .limit(page_size)
                .offset((page - 1) * page_size)
            )
            return list(result.scalars().all()), total

    async def list_items_by_time_range(self, start: int, end: int) -> list[Item]:
        """Stories created within [start, end) unix seconds, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Item)
                .where(Item.time >= start, Item.time < end)
                .order_by(Item.time.desc())
            )
            return list(result.scalars().all())

    async def clear_ranks(self) -> None:
        async with self.session_factory() as session:
            await session.execute(update(Item).values(rank=None))
            await session.commit()

    async def set_rank(self, item_id: int, rank: int) -> None:
        async with self.session_factory() as session:
            await session.execute(update(Item).where(Item.id == item_id).values(rank=rank))
            await session.commit()

    async def swap_ranks(self, pairs: Iterable[RankPair]) -> None:
        """
        Atomically clear every rank, then apply the new pairs.

        Runs in one transaction: readers see either the previous front
        page or the new one, never a mix.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(update(Item).values(rank=None))
                for pair in pairs:
                    await session.execute(
                        update(Item).where(Item.id == pair.id).values(rank=pair.rank)
                    )

    async def count_items(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(Item))
            return result.scalar_one()

    async def max_fetched_at(self) -> int:
        """Most recent fetched_at of any story (0 for an empty store)."""
        async with self.session_factory() as session:
            result = await session.execute(select(func.max(Item.fetched_at)))
            return result.scalar() or 0

    # ─────────────────────────────────────────────────────────────────
    # Comments
    # ─────────────────────────────────────────────────────────────────

    async def upsert_comment(self, values: dict[str, Any]) -> None:
        stmt = self._insert(Comment).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Comment.id],
            set_={
                "story_id": stmt.excluded.story_id,
                "parent_id": stmt.excluded.parent_id,
                "by": stmt.excluded.by,
                "text": stmt.excluded.text,
                "time": stmt.excluded.time,
                "dead": stmt.excluded.dead,
                "deleted": stmt.excluded.deleted,
                "fetched_at": stmt.excluded.fetched_at,
            },
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def comment_ids(self, story_id: int) -> set[int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Comment.id).where(Comment.story_id == story_id)
            )
            return set(result.scalars().all())

    async def count_comments(self, story_id: int) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(Comment).where(Comment.story_id == story_id)
            )
            return result.scalar_one()

    async def get_comments_by_item(self, story_id: int) -> list[Comment]:
        """Flat list of a story's comments, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Comment)
                .where(Comment.story_id == story_id)
                .order_by(Comment.time.asc(), Comment.id.asc())
            )
            return list(result.scalars().all())

    async def get_comment_tree(self, story_id: int) -> tuple[list[CommentNode], int]:
        """Comment forest for a story plus the newest fetched_at among its comments."""
        rows = await self.get_comments_by_item(story_id)
        nodes = [CommentNode.from_row(row) for row in rows]
        return build_comment_tree(nodes), max_fetched_at(nodes)

    # ─────────────────────────────────────────────────────────────────
    # Articles
    # ─────────────────────────────────────────────────────────────────

    async def upsert_article(self, values: dict[str, Any]) -> None:
        stmt = self._insert(Article).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Article.story_id],
            set_={
                "content": stmt.excluded.content,
                "title": stmt.excluded.title,
                "excerpt": stmt.excluded.excerpt,
                "byline": stmt.excluded.byline,
                "extraction_failed": stmt.excluded.extraction_failed,
                "fetched_at": stmt.excluded.fetched_at,
            },
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def get_article(self, story_id: int) -> Optional[Article]:
        async with self.session_factory() as session:
            return await session.get(Article, story_id)

    # ─────────────────────────────────────────────────────────────────
    # Period rankings
    # ─────────────────────────────────────────────────────────────────

    async def replace_rankings(self, period: str, rows: Iterable[RankingRow]) -> int:
        """Delete every ranking of `period` and insert `rows`, in one transaction."""
        count = 0
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(delete(Ranking).where(Ranking.period == period))
                for row in rows:
                    session.add(Ranking(
                        story_id=row.story_id,
                        period=period,
                        score=row.score,
                        computed_at=row.computed_at,
                    ))
                    count += 1
        return count

    async def count_rankings(self, period: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(Ranking).where(Ranking.period == period)
            )
            return result.scalar_one()

    async def get_rankings(self, period: str) -> list[Ranking]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Ranking).where(Ranking.period == period).order_by(Ranking.score.desc())
            )
            return list(result.scalars().all())

    async def list_items_by_period(
        self, period: str, page: int = 1, page_size: int = 30
    ) -> tuple[list[Item], int]:
        """Stories of a ranking period ordered by score, paginated."""
        total = await self.count_rankings(period)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Item)
                .join(Ranking, Ranking.story_id == Item.id)
                .where(Ranking.period == period)
                .order_by(Ranking.score.desc())
                .limit(page_size)
                .offset((page - 1) * page_size)
            )
            return list(result.scalars().all()), total

    # ─────────────────────────────────────────────────────────────────
    # Cleanup
    # ─────────────────────────────────────────────────────────────────

    async def stale_unranked_item_ids(self, cutoff: int) -> list[int]:
        """Off-page stories last fetched before `cutoff` and absent from every ranking."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Item.id).where(
                    Item.rank.is_(None),
                    Item.fetched_at < cutoff,
                    ~exists().where(Ranking.story_id == Item.id),
                )
            )
            return list(result.scalars().all())

    async def delete_item_cascade(self, item_id: int) -> None:
        """Remove a story with its comments, article and rankings."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(delete(Comment).where(Comment.story_id == item_id))
                await session.execute(delete(Article).where(Article.story_id == item_id))
                await session.execute(delete(Ranking).where(Ranking.story_id == item_id))
                await session.execute(delete(Item).where(Item.id == item_id))

    async def compact(self) -> None:
        """Reclaim space after bulk deletes (VACUUM must run outside a transaction)."""
        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.execute(text("VACUUM"))

    async def ping(self) -> None:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))
