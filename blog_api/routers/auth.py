from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.auth import CurrentUser, create_access_token
from blog_api.database import get_db
from blog_api.schemas import SignInRequest, TokenResponse, UserCreate, UserResponse
from blog_api.services import user_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/sign-up", status_code=201, response_model=TokenResponse)
async def sign_up(data: UserCreate, db: AsyncSession = Depends(get_db)):
    try:
        user = await user_service.register_user(db, data)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    return TokenResponse(access_token=create_access_token(user), user=UserResponse.model_validate(user))


@router.post("/sign-in", response_model=TokenResponse)
async def sign_in(data: SignInRequest, db: AsyncSession = Depends(get_db)):
    user = await user_service.authenticate_user(db, data.email, data.password)
    return TokenResponse(access_token=create_access_token(user), user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def me(user: CurrentUser):
    return user
