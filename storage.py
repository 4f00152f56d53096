"""
Object storage for profile photos.

Photos are kept in the "photo" collection keyed by user id and served back
from GET /photos/{user_id}.
"""
import logging
import mimetypes
import time
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

from bson import Binary
from pymongo.database import Database

from config import PUBLIC_BASE_URL
from database import now_utc
from errors import NotFoundError, PreconditionError, StorageError
from store import remote_call

logger = logging.getLogger(__name__)

LOCAL_PREFIX = "file:"


def is_local(reference: Optional[str]) -> bool:
    return bool(reference) and reference.startswith(LOCAL_PREFIX)


def read_local(reference: str) -> Tuple[bytes, str]:
    """Read the bytes behind a file: reference picked on the device."""
    path = Path(unquote(urlparse(reference).path))
    content_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    try:
        return path.read_bytes(), content_type
    except OSError as e:
        logger.exception("Error reading local photo %s", reference)
        raise StorageError("There was an issue reading the selected photo.") from e


class PhotoStore:
    collection = "photo"

    def __init__(self, db: Database, base_url: str = PUBLIC_BASE_URL):
        self.col = db[self.collection]
        self.base_url = base_url.rstrip("/")

    def upload(self, user_id: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Store the bytes under the user id and return the public reference."""
        if not data:
            raise PreconditionError("Photo Required", "The selected photo is empty.")
        with remote_call(f"uploading photo for {user_id}"):
            self.col.update_one(
                {"_id": user_id},
                {"$set": {"data": Binary(data), "content_type": content_type, "updated_at": now_utc()}},
                upsert=True,
            )
        logger.info("Uploaded %d byte photo for %s", len(data), user_id)
        return self.url_for(user_id)

    def url_for(self, user_id: str) -> str:
        # version suffix so clients drop cached copies of the previous photo
        return f"{self.base_url}/photos/{user_id}?v={int(time.time() * 1000)}"

    def download(self, user_id: str) -> Tuple[bytes, str]:
        with remote_call(f"fetching photo for {user_id}"):
            doc = self.col.find_one({"_id": user_id})
        if not doc:
            raise NotFoundError("Photo Not Found", "No photo uploaded for this user.")
        return bytes(doc["data"]), doc.get("content_type") or "image/jpeg"
