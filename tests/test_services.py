"""
Direct service-layer tests: exercises business logic without HTTP.

These call service functions with a database session so the query
building, transactional view counting, comment-tree shaping and
ownership rules are tested independently of routing and auth.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    service_error_handler,
)
from blog_api.models import (
    Comment,
    CommentStatus,
    Post,
    PostStatus,
    Tag,
    User,
    UserRole,
    UserStatus,
)
from blog_api.schemas import CommentCreate, CommentUpdate, PostCreate, PostUpdate, UserCreate
from blog_api.services import comment_service, post_service, user_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(
    db: AsyncSession,
    email: str = "svc@example.com",
    role: UserRole = UserRole.USER,
    status: UserStatus = UserStatus.ACTIVE,
) -> User:
    user = User(name="Service User", email=email, password_hash="x", role=role, status=status)
    db.add(user)
    await db.flush()
    return user


async def _create_post(db: AsyncSession, author: User, **fields):
    data = PostCreate(title=fields.pop("title", "Title"), content=fields.pop("content", "Content"), **fields)
    return await post_service.create_post(db, data, author)


async def _add_comment(db, post_id, author, parent_id=None, status=CommentStatus.APPROVED, content="c"):
    comment = Comment(
        content=content, post_id=post_id, author_id=author.id, parent_id=parent_id, status=status
    )
    db.add(comment)
    await db.flush()
    return comment


# ---------------------------------------------------------------------------
# get_all_posts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_all_posts_empty(db_session: AsyncSession):
    result = await post_service.get_all_posts(db_session)
    assert result.data == []
    assert result.pagination.total == 0
    assert result.pagination.total_pages == 0


@pytest.mark.asyncio
async def test_total_matches_independent_count(db_session: AsyncSession):
    author = await _create_user(db_session)
    other = await _create_user(db_session, email="other@example.com")
    await _create_post(db_session, author, title="Python tips", tags=["python", "tips"])
    await _create_post(db_session, author, title="Python drafts", tags=["python"], status=PostStatus.DRAFT)
    await _create_post(db_session, other, title="Rust", content="python mention", tags=["python", "tips"])
    await _create_post(db_session, other, title="Go", tags=["tips"])

    filters = dict(search="python", tags=["tips"], status=PostStatus.PUBLISHED)
    result = await post_service.get_all_posts(db_session, limit=1, **filters)

    conditions = post_service.build_post_filters(**filters)
    independent = (
        await db_session.execute(select(func.count()).select_from(Post).where(*conditions))
    ).scalar_one()
    assert independent == 2
    assert result.pagination.total == independent
    assert result.pagination.total_pages == 2
    assert len(result.data) == 1


@pytest.mark.asyncio
async def test_filters_are_combined_with_and(db_session: AsyncSession):
    author = await _create_user(db_session)
    admin = await _create_user(db_session, email="admin@example.com", role=UserRole.ADMIN)
    await _create_post(db_session, admin, title="Featured draft", is_featured=True, status=PostStatus.DRAFT)
    await _create_post(db_session, admin, title="Featured live", is_featured=True)
    await _create_post(db_session, author, title="Plain live")

    result = await post_service.get_all_posts(
        db_session, is_featured=True, status=PostStatus.PUBLISHED, author_id=admin.id
    )
    assert [p.title for p in result.data] == ["Featured live"]


def test_sort_column_allow_list():
    assert post_service._resolve_sort_column("views") is Post.views
    assert post_service._resolve_sort_column("createdAt") is Post.created_at
    assert post_service._resolve_sort_column("author_id; DROP TABLE posts") is Post.created_at


# ---------------------------------------------------------------------------
# get_post_by_id
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_post_by_id_increments_views_once_per_call(db_session: AsyncSession):
    author = await _create_user(db_session)
    post = await _create_post(db_session, author)

    for expected in (1, 2, 3):
        detail = await post_service.get_post_by_id(db_session, post.id)
        assert detail.views == expected

    stored = (await db_session.execute(select(Post.views).where(Post.id == post.id))).scalar_one()
    assert stored == 3


@pytest.mark.asyncio
async def test_get_post_by_id_missing(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await post_service.get_post_by_id(db_session, 12345)


@pytest.mark.asyncio
async def test_comment_tree_depth_and_ordering(db_session: AsyncSession):
    author = await _create_user(db_session)
    post = await _create_post(db_session, author)
    base = datetime.now(timezone.utc) - timedelta(hours=1)

    def at(minutes):
        return base + timedelta(minutes=minutes)

    old_root = await _add_comment(db_session, post.id, author, content="old root")
    old_root.created_at = at(0)
    new_root = await _add_comment(db_session, post.id, author, content="new root")
    new_root.created_at = at(10)
    late_reply = await _add_comment(db_session, post.id, author, old_root.id, content="late reply")
    late_reply.created_at = at(5)
    early_reply = await _add_comment(db_session, post.id, author, old_root.id, content="early reply")
    early_reply.created_at = at(1)
    level3 = await _add_comment(db_session, post.id, author, early_reply.id, content="level 3")
    level3.created_at = at(2)
    level4 = await _add_comment(db_session, post.id, author, level3.id, content="level 4")
    level4.created_at = at(3)
    await _add_comment(db_session, post.id, author, old_root.id, status=CommentStatus.PENDING)
    await db_session.flush()

    detail = await post_service.get_post_by_id(db_session, post.id)

    assert [c.content for c in detail.comments] == ["new root", "old root"]
    old = detail.comments[1]
    assert [r.content for r in old.replies] == ["early reply", "late reply"]
    third_level = old.replies[0].replies
    assert [r.content for r in third_level] == ["level 3"]
    # The tree stops at three levels.
    assert third_level[0].replies == []
    assert detail.comment_count == 7


@pytest.mark.asyncio
async def test_hidden_comment_hides_its_subtree(db_session: AsyncSession):
    author = await _create_user(db_session)
    post = await _create_post(db_session, author)
    pending_root = await _add_comment(db_session, post.id, author, status=CommentStatus.PENDING)
    await _add_comment(db_session, post.id, author, pending_root.id)

    detail = await post_service.get_post_by_id(db_session, post.id)
    assert detail.comments == []
    assert detail.comment_count == 2


# ---------------------------------------------------------------------------
# get_my_posts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_my_posts_requires_active_user(db_session: AsyncSession):
    blocked = await _create_user(db_session, email="blocked@example.com", status=UserStatus.BLOCKED)
    await _create_post(db_session, blocked)

    with pytest.raises(NotFoundError):
        await post_service.get_my_posts(db_session, blocked.id)
    with pytest.raises(NotFoundError):
        await post_service.get_my_posts(db_session, 999)


@pytest.mark.asyncio
async def test_get_my_posts_counts(db_session: AsyncSession):
    author = await _create_user(db_session)
    first = await _create_post(db_session, author, title="First")
    await _create_post(db_session, author, title="Second")
    await _add_comment(db_session, first.id, author)
    await _add_comment(db_session, first.id, author, status=CommentStatus.REJECTED)

    result = await post_service.get_my_posts(db_session, author.id)
    assert result.total == 2
    counts = {p.title: p.comment_count for p in result.data}
    assert counts == {"First": 2, "Second": 0}


# ---------------------------------------------------------------------------
# update_post / delete_post
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_post_ownership(db_session: AsyncSession):
    owner = await _create_user(db_session)
    stranger = await _create_user(db_session, email="stranger@example.com")
    post = await _create_post(db_session, owner)

    with pytest.raises(ForbiddenError):
        await post_service.update_post(db_session, post.id, PostUpdate(title="x"), stranger.id, False)

    updated = await post_service.update_post(db_session, post.id, PostUpdate(title="x"), stranger.id, True)
    assert updated.title == "x"
    assert updated.author_id == owner.id

    with pytest.raises(NotFoundError):
        await post_service.update_post(db_session, 999, PostUpdate(title="x"), owner.id, True)


@pytest.mark.asyncio
async def test_non_admin_featured_change_is_dropped(db_session: AsyncSession):
    owner = await _create_user(db_session)
    post = await _create_post(db_session, owner)

    updated = await post_service.update_post(
        db_session, post.id, PostUpdate(is_featured=True, content="new"), owner.id, False
    )
    assert updated.is_featured is False
    assert updated.content == "new"

    stored = (await db_session.execute(select(Post.is_featured).where(Post.id == post.id))).scalar_one()
    assert stored is False


@pytest.mark.asyncio
async def test_delete_post_removes_comments(db_session: AsyncSession):
    owner = await _create_user(db_session)
    stranger = await _create_user(db_session, email="stranger@example.com")
    post = await _create_post(db_session, owner, tags=["gone"])
    await _add_comment(db_session, post.id, stranger)

    with pytest.raises(ForbiddenError):
        await post_service.delete_post(db_session, post.id, stranger.id, False)

    await post_service.delete_post(db_session, post.id, owner.id, False)
    remaining = (await db_session.execute(select(func.count()).select_from(Comment))).scalar_one()
    assert remaining == 0
    with pytest.raises(NotFoundError):
        await post_service.delete_post(db_session, post.id, owner.id, False)


# ---------------------------------------------------------------------------
# get_stats
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stats_empty_database(db_session: AsyncSession):
    stats = await post_service.get_stats(db_session)
    assert stats.total_views == 0
    assert stats.total_posts == 0
    assert stats.today_posts == 0


@pytest.mark.asyncio
async def test_stats_counts_today_only(db_session: AsyncSession):
    author = await _create_user(db_session)
    await _create_post(db_session, author, status=PostStatus.PUBLISHED)
    await _create_post(db_session, author, status=PostStatus.ARCHIVED)
    old = Post(
        title="Old",
        content="c",
        author_id=author.id,
        status=PostStatus.DRAFT,
        views=7,
        created_at=datetime.now(timezone.utc) - timedelta(days=3),
    )
    db_session.add(old)
    await db_session.flush()

    stats = await post_service.get_stats(db_session)
    assert stats.total_posts == 3
    assert (stats.published_posts, stats.draft_posts, stats.archived_posts) == (1, 1, 1)
    assert stats.today_posts == 2
    assert stats.total_views == 7
    assert (stats.total_users, stats.user_count, stats.admin_count) == (1, 1, 0)


def test_today_bounds_cover_whole_local_day():
    now = datetime(2024, 3, 5, 15, 30).astimezone()
    start, end = post_service._today_bounds(now)
    assert start.astimezone(now.tzinfo).replace(tzinfo=None) == datetime(2024, 3, 5, 0, 0)
    assert end - start == timedelta(days=1, microseconds=-1)


# ---------------------------------------------------------------------------
# comment_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_reply_checks_parent(db_session: AsyncSession):
    author = await _create_user(db_session)
    post_a = await _create_post(db_session, author, title="A")
    post_b = await _create_post(db_session, author, title="B")
    parent = await comment_service.create_comment(db_session, CommentCreate(content="p", post_id=post_a.id), author.id)

    reply = await comment_service.create_comment(
        db_session, CommentCreate(content="r", post_id=post_a.id, parent_id=parent.id), author.id
    )
    assert reply.parent_id == parent.id

    with pytest.raises(BadRequestError):
        await comment_service.create_comment(
            db_session, CommentCreate(content="x", post_id=post_b.id, parent_id=parent.id), author.id
        )


@pytest.mark.asyncio
async def test_admin_may_change_comment_status_via_update(db_session: AsyncSession):
    author = await _create_user(db_session)
    post = await _create_post(db_session, author)
    comment = await comment_service.create_comment(db_session, CommentCreate(content="c", post_id=post.id), author.id)

    kept = await comment_service.update_comment(
        db_session, comment.id, CommentUpdate(status=CommentStatus.REJECTED), author.id, False
    )
    assert kept.status == CommentStatus.APPROVED

    changed = await comment_service.update_comment(
        db_session, comment.id, CommentUpdate(status=CommentStatus.REJECTED), 999, True
    )
    assert changed.status == CommentStatus.REJECTED


# ---------------------------------------------------------------------------
# user_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_and_authenticate(db_session: AsyncSession):
    data = UserCreate(name="Reg", email="Reg@Example.com", password="long-enough")
    user = await user_service.register_user(db_session, data)
    assert user.email == "reg@example.com"
    assert user.password_hash != "long-enough"

    assert (await user_service.authenticate_user(db_session, "reg@example.com", "long-enough")).id == user.id
    with pytest.raises(UnauthorizedError):
        await user_service.authenticate_user(db_session, "reg@example.com", "nope")
    with pytest.raises(ConflictError):
        await user_service.register_user(db_session, data)


@pytest.mark.asyncio
async def test_resolve_tags_reuses_tag_created_concurrently(db_session: AsyncSession, monkeypatch):
    db_session.add(Tag(name="python"))
    await db_session.commit()

    async def lookup_misses(db, name):
        return None

    # The lookup runs before another request's insert becomes visible.
    monkeypatch.setattr(post_service, "_find_tag", lookup_misses)
    tags = await post_service._resolve_tags(db_session, ["python", "sql"])

    assert [t.name for t in tags] == ["python", "sql"]
    count = (await db_session.execute(select(func.count()).select_from(Tag))).scalar_one()
    assert count == 2


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_service_errors_map_to_their_status_codes():
    request = Request({"type": "http", "method": "GET", "path": "/", "headers": []})
    for exc, code in [(NotFoundError("gone"), 404), (ConflictError("dup"), 409), (ForbiddenError("no"), 403)]:
        resp = await service_error_handler(request, exc)
        assert resp.status_code == code
        assert json.loads(resp.body) == {"detail": exc.detail}
