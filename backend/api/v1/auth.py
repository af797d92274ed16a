from typing import Optional
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from api.dependencies import get_current_user
from core.config import settings
from core.security import ACCESS_COOKIE, REFRESH_COOKIE
from db.store import Store, get_store
from schemas.user_schema import ChangePasswordRequest, LoginRequest, RefreshRequest, SessionPair, UserInDB
from services import session_service
from services.media_service import ObjectStore, get_object_store, stage_upload
from services.user_service import register_user
from utils.responses import no_store_json
from utils.timing import timeit

router = APIRouter()

def _set_session_cookies(response: JSONResponse, pair: SessionPair) -> JSONResponse:
    options = {"httponly": True, "secure": settings.COOKIE_SECURE}
    response.set_cookie(ACCESS_COOKIE, pair.access_token, max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60, **options)
    response.set_cookie(REFRESH_COOKIE, pair.refresh_token, max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400, **options)
    return response

@router.post("/register", status_code=201)
@timeit("register")
async def register(
    username: str = Form(""),
    email: str = Form(""),
    fullname: str = Form(""),
    password: str = Form(""),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None),
    store: Store = Depends(get_store),
    object_store: ObjectStore = Depends(get_object_store),
):
    avatar_path = cover_image_path = None
    try:
        avatar_path = await stage_upload(avatar)
        cover_image_path = await stage_upload(cover_image)
        user = await register_user(store, object_store, username, email, fullname, password, avatar_path, cover_image_path)
    finally:
        await object_store.discard(avatar_path)
        await object_store.discard(cover_image_path)
    return no_store_json(user, "User registered successfully", status_code=201)

@router.post("/login")
@timeit()
async def login(payload: LoginRequest, store: Store = Depends(get_store)):
    result = await session_service.login(store, payload.username, payload.password, email=payload.email)
    response = no_store_json(result, "User logged in successfully")
    return _set_session_cookies(response, result)

@router.post("/logout")
@timeit()
async def logout(current_user: UserInDB = Depends(get_current_user), store: Store = Depends(get_store)):
    await session_service.end_session(store, current_user.id)
    response = no_store_json({}, "User logged out successfully")
    options = {"httponly": True, "secure": settings.COOKIE_SECURE}
    response.delete_cookie(ACCESS_COOKIE, **options)
    response.delete_cookie(REFRESH_COOKIE, **options)
    return response

@router.post("/refresh-token")
@timeit()
async def refresh_token(request: Request, payload: Optional[RefreshRequest] = None, store: Store = Depends(get_store)):
    presented = request.cookies.get(REFRESH_COOKIE) or (payload.refresh_token if payload else None)
    pair = await session_service.rotate_session(store, presented)
    response = no_store_json(pair, "Access token refreshed")
    return _set_session_cookies(response, pair)

@router.post("/change-password")
@timeit()
async def change_password(data: ChangePasswordRequest, current_user: UserInDB = Depends(get_current_user), store: Store = Depends(get_store)):
    await session_service.change_password(store, current_user.id, data.old_password, data.new_password)
    return no_store_json({}, "Password changed successfully")
