"""
Comment service: threaded comments attached to posts.

A comment either sits at the top level of a post (``parent_id`` is NULL)
or replies to another comment of the same post.  New comments are
APPROVED; admins moderate them afterwards.  Authors and admins may edit
or delete a comment, and deleting a comment removes its whole reply
subtree.
"""
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from blog_api.exceptions import BadRequestError, ForbiddenError, NotFoundError
from blog_api.models import Comment, CommentStatus, Post
from blog_api.schemas import (
    CommentCreate,
    CommentResponse,
    CommentUpdate,
    CommentWithPost,
)

logger = logging.getLogger(__name__)


async def _get_comment_or_raise(db: AsyncSession, comment_id: int, *, with_post: bool = False) -> Comment:
    q = select(Comment).where(Comment.id == comment_id).execution_options(populate_existing=True)
    if with_post:
        q = q.options(joinedload(Comment.post))
    comment = (await db.execute(q)).unique().scalar_one_or_none()
    if comment is None:
        raise NotFoundError(f"Comment {comment_id} not found")
    return comment


def _ensure_can_modify(comment: Comment, user_id: int, is_admin: bool) -> None:
    if not is_admin and comment.author_id != user_id:
        logger.warning(
            "User %s tried to modify comment %s owned by %s", user_id, comment.id, comment.author_id
        )
        raise ForbiddenError("Only the author of the comment or an admin can modify it")


async def create_comment(db: AsyncSession, data: CommentCreate, author_id: int) -> CommentResponse:
    """
    Add a comment by *author_id* to ``data.post_id``.

    When ``data.parent_id`` is set the parent must exist and belong to the
    same post.
    """
    post = (await db.execute(select(Post.id).where(Post.id == data.post_id))).scalar_one_or_none()
    if post is None:
        raise NotFoundError(f"Post {data.post_id} not found")

    if data.parent_id is not None:
        parent = (
            await db.execute(select(Comment).where(Comment.id == data.parent_id))
        ).scalar_one_or_none()
        if parent is None:
            raise NotFoundError(f"Parent comment {data.parent_id} not found")
        if parent.post_id != data.post_id:
            raise BadRequestError("Parent comment belongs to a different post")

    comment = Comment(
        content=data.content,
        post_id=data.post_id,
        parent_id=data.parent_id,
        author_id=author_id,
        status=CommentStatus.APPROVED,
    )
    db.add(comment)
    await db.flush()

    logger.info("User %s commented on post %s (comment %s)", author_id, data.post_id, comment.id)
    return CommentResponse.model_validate(comment)


def _can_see_unapproved(comment_author_id: int, viewer_id: int | None, is_admin: bool) -> bool:
    return is_admin or (viewer_id is not None and viewer_id == comment_author_id)


async def get_comment_by_id(
    db: AsyncSession,
    comment_id: int,
    viewer_id: int | None = None,
    is_admin: bool = False,
) -> CommentWithPost:
    """
    Return a comment with its post.  PENDING and REJECTED comments are
    reported as missing to everyone except their author and admins.
    """
    comment = await _get_comment_or_raise(db, comment_id, with_post=True)
    if comment.status != CommentStatus.APPROVED and not _can_see_unapproved(
        comment.author_id, viewer_id, is_admin
    ):
        raise NotFoundError(f"Comment {comment_id} not found")
    return CommentWithPost.model_validate(comment)


async def get_comments_by_author(
    db: AsyncSession,
    author_id: int,
    viewer_id: int | None = None,
    is_admin: bool = False,
) -> list[CommentWithPost]:
    """
    Return comments written by *author_id*, newest first.  Other readers
    only see the approved ones.
    """
    q = (
        select(Comment)
        .where(Comment.author_id == author_id)
        .options(joinedload(Comment.post))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
    )
    if not _can_see_unapproved(author_id, viewer_id, is_admin):
        q = q.where(Comment.status == CommentStatus.APPROVED)
    comments = (await db.execute(q)).unique().scalars().all()
    return [CommentWithPost.model_validate(c) for c in comments]


async def update_comment(
    db: AsyncSession,
    comment_id: int,
    data: CommentUpdate,
    user_id: int,
    is_admin: bool,
) -> CommentResponse:
    """
    Edit a comment.  ``status`` is a moderation field: it is silently
    dropped unless the caller is an admin.
    """
    comment = await _get_comment_or_raise(db, comment_id)
    _ensure_can_modify(comment, user_id, is_admin)

    update_data = data.model_dump(exclude_unset=True)
    if not is_admin:
        update_data.pop("status", None)

    for field, value in update_data.items():
        if value is not None:
            setattr(comment, field, value)

    await db.flush()
    logger.info("User %s updated comment %s", user_id, comment_id)
    return CommentResponse.model_validate(comment)


async def moderate_comment(db: AsyncSession, comment_id: int, status: CommentStatus) -> CommentResponse:
    comment = await _get_comment_or_raise(db, comment_id)
    comment.status = status
    await db.flush()
    logger.info("Comment %s moderated to %s", comment_id, status.value)
    return CommentResponse.model_validate(comment)


async def delete_comment(db: AsyncSession, comment_id: int, user_id: int, is_admin: bool) -> None:
    """Hard-delete a comment and every reply below it."""
    comment = await _get_comment_or_raise(db, comment_id)
    _ensure_can_modify(comment, user_id, is_admin)

    subtree = [comment.id]
    frontier = [comment.id]
    while frontier:
        frontier = list(
            (await db.execute(select(Comment.id).where(Comment.parent_id.in_(frontier)))).scalars()
        )
        subtree.extend(frontier)

    await db.execute(delete(Comment).where(Comment.id.in_(subtree)))
    await db.flush()
    logger.info("User %s deleted comment %s (%d in subtree)", user_id, comment_id, len(subtree))
