import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Optional

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from core.config import settings
from core.errors import UpstreamFailure

logger = logging.getLogger(__name__)


def _remove_local_file(local_path: str) -> None:
    try:
        os.remove(local_path)
    except FileNotFoundError:
        pass


async def stage_upload(upload: Optional[UploadFile]) -> Optional[str]:
    """Write an incoming multipart file to the temp upload dir and return its path"""
    if upload is None or not upload.filename:
        return None
    tmp_dir = Path(settings.UPLOAD_TMP_DIR)
    tmp_dir.mkdir(parents=True, exist_ok=True)
    local_path = tmp_dir / f"{uuid.uuid4().hex}-{Path(upload.filename).name}"
    with open(local_path, "wb") as out:
        await run_in_threadpool(shutil.copyfileobj, upload.file, out)
    return str(local_path)


class ObjectStore:
    """Cloudinary-backed file storage.

    ``upload`` always deletes the local file, whether the upload succeeded or
    not.
    """

    def __init__(self):
        cloudinary.config(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            secure=True,
        )

    async def upload(self, local_path: str) -> dict:
        try:
            response = await run_in_threadpool(cloudinary.uploader.upload, local_path, resource_type="auto")
        except Exception as e:
            logger.error(f"Cloudinary upload failed for {local_path}: {e}")
            raise UpstreamFailure("Error while uploading file") from e
        finally:
            _remove_local_file(local_path)
        url = response.get("secure_url") or response.get("url")
        if not url:
            raise UpstreamFailure("Error while uploading file")
        logger.info(f"Uploaded file to cloudinary: {url}")
        return {"url": url}

    async def discard(self, local_path: Optional[str]) -> None:
        """Drop a staged file that will not be uploaded"""
        if local_path:
            _remove_local_file(local_path)


_object_store: Optional[ObjectStore] = None

def get_object_store() -> ObjectStore:
    global _object_store
    if _object_store is None:
        _object_store = ObjectStore()
    return _object_store
