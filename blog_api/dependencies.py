from fastapi import Query

from blog_api.config import settings
from blog_api.models import PostStatus


class PaginationParams:
    """
    Reusable FastAPI dependency that parses pagination / sorting query
    parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    limit:
        Number of items per page, clamped to ``settings.MAX_PAGE_SIZE``.
    sort_by:
        Field to sort by (``sortBy`` on the wire).  The service layer maps
        it onto an allow-list of columns before it reaches SQLAlchemy.
    sort_order:
        ``"asc"`` or ``"desc"`` (``sortOrder`` on the wire).
    skip:
        Computed SQL OFFSET derived from *page* and *limit*.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        limit: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
        sort_by: str = Query("created_at", alias="sortBy", description="Field to sort by."),
        sort_order: str = Query(
            "desc",
            alias="sortOrder",
            pattern="^(asc|desc)$",
            description="Sort direction: 'asc' or 'desc'.",
        ),
    ) -> None:
        self.page = page
        self.limit = min(limit, settings.MAX_PAGE_SIZE)
        self.sort_by = sort_by
        self.sort_order = sort_order

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class PostFilterParams:
    """
    Optional post filters for ``GET /posts``.

    ``tags`` may be repeated (``?tags=a&tags=b``) or comma separated
    (``?tags=a,b``); both forms are flattened into one list.
    """

    def __init__(
        self,
        search: str | None = Query(None, description="Matches title, content or an exact tag."),
        tags: list[str] = Query([], description="Every listed tag must be present."),
        is_featured: bool | None = Query(None, alias="isFeatured"),
        status: PostStatus | None = Query(None),
        author_id: int | None = Query(None, alias="authorId"),
    ) -> None:
        self.search = search.strip() if search and search.strip() else None
        self.tags = [
            name.strip()
            for raw in tags
            for name in raw.split(",")
            if name.strip()
        ]
        self.is_featured = is_featured
        self.status = status
        self.author_id = author_id
