from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, Boolean, Float, ForeignKey, Index,
)
from hnreader.database.config import Base


class Item(Base):
    """A Hacker News story (or job/poll) as last fetched from upstream."""
    __tablename__ = "stories"

    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(Text, nullable=False)
    url = Column(Text)
    text = Column(Text)
    score = Column(Integer, nullable=False, default=0)
    by = Column(String(100), nullable=False)
    time = Column(BigInteger, nullable=False)           # unix seconds
    descendants = Column(Integer, nullable=False, default=0)
    type = Column(String(20), nullable=False, default="story")
    fetched_at = Column(BigInteger, nullable=False)     # unix seconds
    rank = Column(Integer)                              # NULL = off the front page
    dead = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('idx_stories_rank', 'rank'),
        Index('idx_stories_time', 'time'),
    )


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=False)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(Integer)                         # NULL = top-level
    by = Column(String(100))
    text = Column(Text)
    time = Column(BigInteger, nullable=False)
    dead = Column(Boolean, nullable=False, default=False)
    deleted = Column(Boolean, nullable=False, default=False)
    fetched_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index('idx_comments_story', 'story_id'),
    )


class Article(Base):
    """Reader-mode extraction of a story URL. A row with extraction_failed
    set caches the failure until a manual refresh re-attempts it."""
    __tablename__ = "articles"

    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), primary_key=True, autoincrement=False)
    content = Column(Text)
    title = Column(Text)
    excerpt = Column(Text)
    byline = Column(Text)
    extraction_failed = Column(Boolean, nullable=False, default=False)
    fetched_at = Column(BigInteger, nullable=False)


class Ranking(Base):
    __tablename__ = "rankings"

    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), primary_key=True, autoincrement=False)
    period = Column(String(16), primary_key=True)       # day / yesterday / week
    score = Column(Float, nullable=False)
    computed_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index('idx_rankings_period_score', 'period', 'score'),
    )
