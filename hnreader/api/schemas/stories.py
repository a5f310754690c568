from pydantic import BaseModel, Field
from typing import Optional


class StoryResponse(BaseModel):
    id: int
    title: str
    url: str | None
    text: str | None
    score: int
    by: str
    time: int  # unix seconds
    descendants: int
    type: str
    rank: int | None = Field(None, description="1-based front-page position, null when off the page")
    fetched_at: int
    dead: bool

    class Config:
        from_attributes = True


class StoryListResponse(BaseModel):
    stories: list[StoryResponse]
    page: int
    total: int  # Total stories in the listing (not just this page)
    complete: bool = Field(..., description="False if some stories on this page could not be loaded")


class PeriodStoriesResponse(BaseModel):
    period: str
    stories: list[StoryResponse]
    page: int
    total: int


class CommentResponse(BaseModel):
    id: int
    parent_id: int | None
    by: str | None
    text: str | None
    time: int
    dead: bool
    deleted: bool
    children: list["CommentResponse"] = []


CommentResponse.model_rebuild()


class CommentsResponse(BaseModel):
    story_id: int
    fetched_at: int = Field(..., description="Newest fetch time across the returned comments, 0 if none")
    comments: list[CommentResponse]


class ArticleResponse(BaseModel):
    story_id: int
    title: str | None
    byline: str | None
    excerpt: str | None
    content: str | None
    extraction_failed: bool
    fetched_at: int

    class Config:
        from_attributes = True


class RefreshResponse(BaseModel):
    story_id: int
    status: str
    article: bool


class HealthResponse(BaseModel):
    status: str
    stories_count: int
    last_poll: Optional[int] = None
    subscribers: int
    toplist_size: int
