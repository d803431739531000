import logging
from typing import List

import cloudinary
import cloudinary.uploader
from fastapi import HTTPException, UploadFile

from config import (
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
    CLOUDINARY_CLOUD_NAME,
    MAX_UPLOAD_BYTES,
    MAX_UPLOAD_FILES,
    UPLOAD_FOLDER,
)

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")


class CloudinaryStorage:
    def __init__(self):
        if CLOUDINARY_CLOUD_NAME:
            cloudinary.config(
                cloud_name=CLOUDINARY_CLOUD_NAME,
                api_key=CLOUDINARY_API_KEY,
                api_secret=CLOUDINARY_API_SECRET,
                secure=True,
            )

    def upload(self, content: bytes, folder: str = UPLOAD_FOLDER) -> dict:
        if not CLOUDINARY_CLOUD_NAME:
            raise HTTPException(status_code=500, detail="Image storage not configured")
        result = cloudinary.uploader.upload(content, folder=folder, resource_type="image")
        return {"url": result["secure_url"], "public_id": result["public_id"]}

    def delete(self, public_id: str) -> bool:
        result = cloudinary.uploader.destroy(public_id)
        return result.get("result") == "ok"


_storage = CloudinaryStorage()


def get_storage():
    return _storage


async def read_images(files: List[UploadFile]) -> List[bytes]:
    """Read uploaded images, enforcing count, type and size limits."""
    if not files:
        raise HTTPException(status_code=400, detail="No images uploaded")
    if len(files) > MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_UPLOAD_FILES} images allowed")
    contents = []
    for f in files:
        if f.content_type not in ALLOWED_CONTENT_TYPES:
            raise HTTPException(status_code=400, detail=f"Unsupported file type: {f.content_type}")
        data = await f.read()
        if len(data) > MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=400, detail=f"{f.filename} exceeds 10MB")
        contents.append(data)
    return contents
