from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.auth import AdminUser, CurrentUser
from blog_api.database import get_db
from blog_api.dependencies import PaginationParams, PostFilterParams
from blog_api.schemas import (
    MyPostsResponse,
    PaginatedPosts,
    PostCreate,
    PostDetail,
    PostResponse,
    PostUpdate,
    StatsResponse,
)
from blog_api.services import post_service

router = APIRouter(prefix="/posts", tags=["posts"])


@router.get("", response_model=PaginatedPosts)
async def list_posts(
    filters: PostFilterParams = Depends(),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.get_all_posts(
        db,
        search=filters.search,
        tags=filters.tags,
        is_featured=filters.is_featured,
        status=filters.status,
        author_id=filters.author_id,
        page=pagination.page,
        limit=pagination.limit,
        sort_by=pagination.sort_by,
        sort_order=pagination.sort_order,
    )


@router.post("", status_code=201, response_model=PostResponse)
async def create_post(data: PostCreate, user: CurrentUser, db: AsyncSession = Depends(get_db)):
    return await post_service.create_post(db, data, user)


# Static paths are registered before /{post_id} so they are matched first.
@router.get("/my-posts", response_model=MyPostsResponse)
async def my_posts(user: CurrentUser, db: AsyncSession = Depends(get_db)):
    return await post_service.get_my_posts(db, user.id)


@router.get("/stats", response_model=StatsResponse)
async def stats(_: AdminUser, db: AsyncSession = Depends(get_db)):
    return await post_service.get_stats(db)


@router.get("/{post_id}", response_model=PostDetail)
async def get_post(post_id: int, db: AsyncSession = Depends(get_db)):
    return await post_service.get_post_by_id(db, post_id)


@router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: int,
    data: PostUpdate,
    user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    return await post_service.update_post(db, post_id, data, user.id, user.is_admin)


@router.delete("/{post_id}", status_code=204)
async def delete_post(post_id: int, user: CurrentUser, db: AsyncSession = Depends(get_db)):
    await post_service.delete_post(db, post_id, user.id, user.is_admin)
