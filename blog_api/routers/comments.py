from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.auth import AdminUser, CurrentUser, OptionalUser
from blog_api.database import get_db
from blog_api.schemas import (
    CommentCreate,
    CommentModerate,
    CommentResponse,
    CommentUpdate,
    CommentWithPost,
)
from blog_api.services import comment_service

router = APIRouter(prefix="/comments", tags=["comments"])


@router.get("/author/{author_id}", response_model=list[CommentWithPost])
async def comments_by_author(author_id: int, viewer: OptionalUser, db: AsyncSession = Depends(get_db)):
    return await comment_service.get_comments_by_author(
        db, author_id, viewer.id if viewer else None, bool(viewer and viewer.is_admin)
    )


@router.post("", status_code=201, response_model=CommentResponse)
async def create_comment(data: CommentCreate, user: CurrentUser, db: AsyncSession = Depends(get_db)):
    return await comment_service.create_comment(db, data, user.id)


@router.get("/{comment_id}", response_model=CommentWithPost)
async def get_comment(comment_id: int, viewer: OptionalUser, db: AsyncSession = Depends(get_db)):
    return await comment_service.get_comment_by_id(
        db, comment_id, viewer.id if viewer else None, bool(viewer and viewer.is_admin)
    )


@router.patch("/{comment_id}", response_model=CommentResponse)
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.update_comment(db, comment_id, data, user.id, user.is_admin)


@router.patch("/{comment_id}/moderate", response_model=CommentResponse)
async def moderate_comment(
    comment_id: int,
    data: CommentModerate,
    _: AdminUser,
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.moderate_comment(db, comment_id, data.status)


@router.delete("/{comment_id}", status_code=204)
async def delete_comment(comment_id: int, user: CurrentUser, db: AsyncSession = Depends(get_db)):
    await comment_service.delete_comment(db, comment_id, user.id, user.is_admin)
