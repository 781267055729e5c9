"""
Post service: business logic for the Post aggregate.

Design notes
------------
- Every function takes the request's ``AsyncSession`` as its first
  argument.  Services flush but never commit: the transaction boundary is
  owned by the ``get_db`` dependency, so a handler's statements (for
  example the view increment and the read that follows it) commit or roll
  back together.
- Relationships are declared ``lazy="noload"``; what a response needs is
  loaded explicitly with ``joinedload`` (many-to-one: author) and
  ``selectinload`` (many-to-many: tags).
- List filtering appends one clause per active filter to a list and the
  same list feeds both the page query and the COUNT query.
"""
import logging
import math
from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy import asc, delete, desc, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blog_api.exceptions import ForbiddenError, NotFoundError
from blog_api.models import (
    Comment,
    CommentStatus,
    Post,
    PostStatus,
    Tag,
    User,
    UserRole,
    UserStatus,
    post_tags,
    utcnow,
)
from blog_api.schemas import (
    CommentNode,
    MyPostsResponse,
    PaginatedPosts,
    Pagination,
    PostCreate,
    PostDetail,
    PostResponse,
    PostUpdate,
    PostWithCommentCount,
    StatsResponse,
)

logger = logging.getLogger(__name__)

# Depth of the comment tree returned by get_post_by_id (top level = 1).
MAX_COMMENT_DEPTH = 3

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Fields that are safe to sort by; guards against arbitrary attribute access.
# Keys accept both the snake_case column name and its camelCase wire form.
_SORTABLE_COLUMNS = {
    "created_at": Post.created_at,
    "createdAt": Post.created_at,
    "updated_at": Post.updated_at,
    "updatedAt": Post.updated_at,
    "title": Post.title,
    "views": Post.views,
    "status": Post.status,
    "is_featured": Post.is_featured,
    "isFeatured": Post.is_featured,
}


def _resolve_sort_column(sort_by: str):
    """
    Return the column expression for *sort_by*.

    Falls back to ``Post.created_at`` for any unrecognised name.
    """
    return _SORTABLE_COLUMNS.get(sort_by, Post.created_at)


def _normalize_tag_names(names: list[str]) -> list[str]:
    """Strip, drop empties and de-duplicate while keeping the given order."""
    seen: dict[str, None] = {}
    for name in names:
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


async def _find_tag(db: AsyncSession, name: str) -> Tag | None:
    return (await db.execute(select(Tag).where(Tag.name == name))).scalar_one_or_none()


async def _resolve_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """
    Return Tag rows for each name in *tag_names*, creating any that do not
    yet exist.

    Each insert runs in a savepoint: when a concurrent request created the
    same tag first, the unique constraint fails, the savepoint is rolled
    back and the other request's row is used instead.
    """
    tags: list[Tag] = []
    for name in _normalize_tag_names(tag_names):
        tag = await _find_tag(db, name)
        if tag is None:
            try:
                async with db.begin_nested():
                    tag = Tag(name=name)
                    db.add(tag)
            except IntegrityError:
                logger.info("Tag %r was created concurrently, reusing it", name)
                tag = (await db.execute(select(Tag).where(Tag.name == name))).scalar_one()
        tags.append(tag)
    return tags


def build_post_filters(
    search: str | None = None,
    tags: list[str] | None = None,
    is_featured: bool | None = None,
    status: PostStatus | None = None,
    author_id: int | None = None,
) -> list:
    """
    Build the conjunctive filter list for a post listing.

    - *search* matches a case-insensitive substring of the title or the
      content, or a tag whose name equals the search string exactly.
    - *tags* is all-of: every listed tag must be attached to the post.
    """
    conditions = []

    if search:
        conditions.append(
            or_(
                Post.title.icontains(search, autoescape=True),
                Post.content.icontains(search, autoescape=True),
                Post.tags.any(Tag.name == search),
            )
        )

    for name in _normalize_tag_names(tags or []):
        conditions.append(Post.tags.any(Tag.name == name))

    if is_featured is not None:
        conditions.append(Post.is_featured.is_(is_featured))

    if status is not None:
        conditions.append(Post.status == status)

    if author_id is not None:
        conditions.append(Post.author_id == author_id)

    return conditions


async def _get_post_or_raise(db: AsyncSession, post_id: int, *, with_relations: bool = False) -> Post:
    q = select(Post).where(Post.id == post_id).execution_options(populate_existing=True)
    if with_relations:
        q = q.options(joinedload(Post.author), selectinload(Post.tags))
    post = (await db.execute(q)).unique().scalar_one_or_none()
    if post is None:
        raise NotFoundError(f"Post {post_id} not found")
    return post


def _ensure_can_modify(post: Post, user_id: int, is_admin: bool) -> None:
    if not is_admin and post.author_id != user_id:
        logger.warning("User %s tried to modify post %s owned by %s", user_id, post.id, post.author_id)
        raise ForbiddenError("Only the author of the post or an admin can modify it")


def _today_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Return the inclusive UTC bounds of the current calendar day in the
    server's local timezone.
    """
    now = (now or datetime.now()).astimezone()
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=999999)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def _build_comment_tree(comments: list[Comment]) -> list[CommentNode]:
    """
    Nest *comments* (already filtered to APPROVED, ordered oldest first)
    into at most ``MAX_COMMENT_DEPTH`` levels.

    Top-level comments come out newest first, replies oldest first.  A
    comment whose parent is not in *comments* is unreachable, so a hidden
    comment hides its whole subtree.
    """
    children: dict[int | None, list[Comment]] = defaultdict(list)
    for comment in comments:
        children[comment.parent_id].append(comment)

    def to_node(comment: Comment, depth: int) -> CommentNode:
        node = CommentNode.model_validate(comment)
        if depth < MAX_COMMENT_DEPTH:
            node.replies = [to_node(reply, depth + 1) for reply in children[comment.id]]
        return node

    return [to_node(root, 1) for root in reversed(children[None])]


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_post(db: AsyncSession, data: PostCreate, author: User) -> PostResponse:
    """
    Create a post owned by *author*.

    The owner always comes from the authenticated user.  Only admins may
    create a featured post; the flag is dropped for everybody else.
    """
    post = Post(
        title=data.title,
        content=data.content,
        status=data.status,
        is_featured=data.is_featured if author.is_admin else False,
        author_id=author.id,
    )
    post.tags = await _resolve_tags(db, data.tags)
    db.add(post)
    await db.flush()

    logger.info("User %s created post %s", author.id, post.id)
    return PostResponse.model_validate(await _get_post_or_raise(db, post.id, with_relations=True))


async def get_all_posts(
    db: AsyncSession,
    *,
    search: str | None = None,
    tags: list[str] | None = None,
    is_featured: bool | None = None,
    status: PostStatus | None = None,
    author_id: int | None = None,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> PaginatedPosts:
    """
    Return one page of posts matching every active filter.

    Two SQL statements are issued, both with the identical filter list:
    1. SELECT with ORDER BY / LIMIT / OFFSET (+ author JOIN, tags LOAD).
    2. COUNT of all matching posts.
    """
    conditions = build_post_filters(search, tags, is_featured, status, author_id)
    skip = (page - 1) * limit

    direction = desc if sort_order == "desc" else asc

    posts_q = (
        select(Post)
        .where(*conditions)
        .options(joinedload(Post.author), selectinload(Post.tags))
        .order_by(direction(_resolve_sort_column(sort_by)), direction(Post.id))
        .offset(skip)
        .limit(limit)
    )
    posts = (await db.execute(posts_q)).unique().scalars().all()

    count_q = select(func.count()).select_from(Post).where(*conditions)
    total: int = (await db.execute(count_q)).scalar_one()

    return PaginatedPosts(
        data=[PostResponse.model_validate(p) for p in posts],
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        ),
    )


async def get_post_by_id(db: AsyncSession, post_id: int) -> PostDetail:
    """
    Count a view of *post_id* and return the post with its comment tree.

    The increment is a single ``UPDATE ... SET views = views + 1`` issued
    before the read in the same transaction, so concurrent readers never
    lose an increment and the returned ``views`` includes this visit.
    """
    result = await db.execute(
        update(Post)
        .where(Post.id == post_id)
        .values(views=Post.views + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Post {post_id} not found")

    post = await _get_post_or_raise(db, post_id, with_relations=True)

    approved_q = (
        select(Comment)
        .where(Comment.post_id == post_id, Comment.status == CommentStatus.APPROVED)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    )
    approved = (await db.execute(approved_q)).scalars().all()

    count_q = select(func.count()).select_from(Comment).where(Comment.post_id == post_id)
    comment_count: int = (await db.execute(count_q)).scalar_one()

    detail = PostDetail.model_validate(post)
    detail.comments = _build_comment_tree(list(approved))
    detail.comment_count = comment_count
    return detail


async def get_my_posts(db: AsyncSession, author_id: int) -> MyPostsResponse:
    """
    Return every post of *author_id*, newest first, with comment counts.

    Raises NotFoundError unless the author exists and is ACTIVE, so posts
    of a blocked or removed account cannot be listed.
    """
    user_q = select(User.id).where(User.id == author_id, User.status == UserStatus.ACTIVE)
    if (await db.execute(user_q)).scalar_one_or_none() is None:
        raise NotFoundError(f"Active user {author_id} not found")

    comment_count = (
        select(func.count(Comment.id))
        .where(Comment.post_id == Post.id)
        .correlate(Post)
        .scalar_subquery()
    )
    posts_q = (
        select(Post, comment_count)
        .where(Post.author_id == author_id)
        .options(selectinload(Post.tags))
        .order_by(Post.created_at.desc(), Post.id.desc())
    )
    rows = (await db.execute(posts_q)).all()

    total_q = select(func.count(Post.id)).where(Post.author_id == author_id)
    total: int = (await db.execute(total_q)).scalar_one()

    data = []
    for post, count in rows:
        item = PostWithCommentCount.model_validate(post)
        item.comment_count = count
        data.append(item)
    return MyPostsResponse(data=data, total=total)


async def update_post(
    db: AsyncSession,
    post_id: int,
    data: PostUpdate,
    user_id: int,
    is_admin: bool,
) -> PostResponse:
    """
    Partially update a post.

    Only the author or an admin may update.  ``is_featured`` is an
    admin-only field and is silently dropped for everybody else.  When
    ``tags`` is supplied it replaces the whole tag set.
    """
    post = await _get_post_or_raise(db, post_id)
    _ensure_can_modify(post, user_id, is_admin)

    update_data = data.model_dump(exclude_unset=True)
    if not is_admin:
        update_data.pop("is_featured", None)
    tag_names: list[str] | None = update_data.pop("tags", None)

    for field, value in update_data.items():
        if value is None:
            continue
        setattr(post, field, value)

    if tag_names is not None:
        # Link rows alone never touch posts, so bump the timestamp by hand.
        post.updated_at = utcnow()
        await db.execute(delete(post_tags).where(post_tags.c.post_id == post.id))
        for tag in await _resolve_tags(db, tag_names):
            await db.execute(post_tags.insert().values(post_id=post.id, tag_id=tag.id))

    await db.flush()
    logger.info("User %s updated post %s", user_id, post_id)
    return PostResponse.model_validate(await _get_post_or_raise(db, post_id, with_relations=True))


async def delete_post(db: AsyncSession, post_id: int, user_id: int, is_admin: bool) -> None:
    """Hard-delete a post together with its comments and tag links."""
    post = await _get_post_or_raise(db, post_id)
    _ensure_can_modify(post, user_id, is_admin)

    await db.execute(delete(Comment).where(Comment.post_id == post_id))
    await db.execute(delete(post_tags).where(post_tags.c.post_id == post_id))
    await db.execute(delete(Post).where(Post.id == post_id))
    await db.flush()
    logger.info("User %s deleted post %s", user_id, post_id)


def _count(model, *criteria):
    return select(func.count()).select_from(model).where(*criteria).scalar_subquery()


async def get_stats(db: AsyncSession) -> StatsResponse:
    """
    Return dashboard counters for posts, comments, users and views.

    Every counter is a scalar subquery of one SELECT, so they are all
    computed against the same snapshot in a single round-trip.
    ``today_posts`` covers the current local calendar day, both bounds
    inclusive.
    """
    start_of_today, end_of_today = _today_bounds()

    stats_q = select(
        _count(Post).label("total_posts"),
        _count(Post, Post.status == PostStatus.PUBLISHED).label("published_posts"),
        _count(Post, Post.status == PostStatus.DRAFT).label("draft_posts"),
        _count(Post, Post.status == PostStatus.ARCHIVED).label("archived_posts"),
        _count(Comment).label("total_comments"),
        _count(Comment, Comment.status == CommentStatus.APPROVED).label("approved_comments"),
        _count(User).label("total_users"),
        _count(User, User.role == UserRole.ADMIN).label("admin_count"),
        _count(User, User.role == UserRole.USER).label("user_count"),
        select(func.coalesce(func.sum(Post.views), 0)).scalar_subquery().label("total_views"),
        _count(
            Post,
            Post.created_at >= start_of_today,
            Post.created_at <= end_of_today,
        ).label("today_posts"),
    )
    row = (await db.execute(stats_q)).one()
    return StatsResponse(**row._asdict())
