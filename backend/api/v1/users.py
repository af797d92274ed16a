from typing import Optional
from fastapi import APIRouter, Depends, File, UploadFile
from api.dependencies import get_current_user, get_optional_viewer
from db.store import Store, get_store
from schemas.user_schema import UpdateAccountRequest, UserInDB
from services import channel_service, user_service
from services.media_service import ObjectStore, get_object_store, stage_upload
from utils.responses import no_store_json
from utils.timing import timeit

router = APIRouter()

@router.get("/current-user")
@timeit()
async def read_current_user(current_user: UserInDB = Depends(get_current_user)):
    # Dependency already loaded the record; only strip the credential fields.
    return no_store_json(current_user.to_public(), "Current user fetched successfully")

@router.patch("/update-account")
@timeit()
async def update_account(data: UpdateAccountRequest, current_user: UserInDB = Depends(get_current_user), store: Store = Depends(get_store)):
    user = await user_service.update_account_details(store, current_user.id, data.fullname, data.email)
    return no_store_json(user, "Account details updated successfully")

@router.patch("/avatar")
@timeit()
async def update_avatar(
    avatar: Optional[UploadFile] = File(None),
    current_user: UserInDB = Depends(get_current_user),
    store: Store = Depends(get_store),
    object_store: ObjectStore = Depends(get_object_store),
):
    user = await user_service.update_avatar(store, object_store, current_user.id, await stage_upload(avatar))
    return no_store_json(user, "Avatar updated successfully")

@router.patch("/cover-image")
@timeit()
async def update_cover_image(
    cover_image: Optional[UploadFile] = File(None),
    current_user: UserInDB = Depends(get_current_user),
    store: Store = Depends(get_store),
    object_store: ObjectStore = Depends(get_object_store),
):
    user = await user_service.update_cover_image(store, object_store, current_user.id, await stage_upload(cover_image))
    return no_store_json(user, "Cover image updated successfully")

@router.get("/c/{username}")
@timeit("get_channel_profile")
async def get_channel_profile(username: str, viewer: Optional[UserInDB] = Depends(get_optional_viewer), store: Store = Depends(get_store)):
    profile = await channel_service.get_channel_profile(store, username, viewer.id if viewer else None)
    return no_store_json(profile, "User channel fetched successfully")

@router.get("/history")
@timeit("get_watch_history")
async def get_watch_history(current_user: UserInDB = Depends(get_current_user), store: Store = Depends(get_store)):
    history = await channel_service.get_watch_history(store, current_user.id)
    return no_store_json(history, "Watch history fetched successfully")
