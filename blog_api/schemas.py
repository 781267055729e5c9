from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from blog_api.models import CommentStatus, PostStatus, UserRole, UserStatus


class CamelModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire (both accepted on input)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- User / auth ---

class UserCreate(CamelModel):
    name: str = Field(min_length=1, max_length=150)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=8, max_length=72)


class SignInRequest(CamelModel):
    email: str
    password: str


class UserResponse(CamelModel):
    id: int
    name: str
    email: str
    role: UserRole
    status: UserStatus
    created_at: datetime


class UserSummary(CamelModel):
    id: int
    name: str


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# --- Post ---

class PostCreate(CamelModel):
    title: str = Field(min_length=1, max_length=300)
    content: str = Field(min_length=1)
    tags: list[str] = []
    status: PostStatus = PostStatus.PUBLISHED
    is_featured: bool = False


class PostUpdate(CamelModel):
    """
    Partial update payload.  ``author_id`` is deliberately absent: the
    owner is fixed at creation time and unknown keys are ignored.
    """

    title: str | None = Field(None, min_length=1, max_length=300)
    content: str | None = Field(None, min_length=1)
    tags: list[str] | None = None
    status: PostStatus | None = None
    is_featured: bool | None = None


class PostResponse(CamelModel):
    id: int
    title: str
    content: str
    tags: list[str] = []
    status: PostStatus
    is_featured: bool
    views: int
    author_id: int
    author: UserSummary | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _tag_names(cls, value):
        # ORM instances carry Tag rows; the API exposes the plain name set.
        return [getattr(tag, "name", tag) for tag in value or []]


class PostWithCommentCount(PostResponse):
    comment_count: int = 0


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class PaginatedPosts(CamelModel):
    data: list[PostResponse]
    pagination: Pagination


class MyPostsResponse(CamelModel):
    data: list[PostWithCommentCount]
    total: int


# --- Comment ---

class CommentCreate(CamelModel):
    content: str = Field(min_length=1)
    post_id: int
    parent_id: int | None = None


class CommentUpdate(CamelModel):
    content: str | None = Field(None, min_length=1)
    status: CommentStatus | None = None


class CommentModerate(CamelModel):
    status: CommentStatus


class CommentResponse(CamelModel):
    id: int
    content: str
    status: CommentStatus
    post_id: int
    author_id: int
    parent_id: int | None = None
    created_at: datetime
    updated_at: datetime | None = None


class PostSummary(CamelModel):
    id: int
    title: str
    views: int


class CommentWithPost(CommentResponse):
    post: PostSummary | None = None


class CommentNode(CommentResponse):
    replies: list["CommentNode"] = []


class PostDetail(PostResponse):
    comments: list[CommentNode] = []
    comment_count: int = 0


# --- Stats ---

class StatsResponse(CamelModel):
    total_posts: int
    published_posts: int
    draft_posts: int
    archived_posts: int
    total_comments: int
    approved_comments: int
    total_users: int
    admin_count: int
    user_count: int
    total_views: int
    today_posts: int


# Required for forward-reference resolution (CommentNode.replies)
CommentNode.model_rebuild()
