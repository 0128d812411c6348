import asyncio
import io
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set
from uuid import uuid4

import cloudinary
import cloudinary.api
import cloudinary.uploader


logger = logging.getLogger(__name__)

# Cloudinary caps bulk deletes at 100 public ids per call
_DELETE_CHUNK = 100
_VERSION_SEGMENT = re.compile(r"^v\d+$")


@dataclass
class MediaDeletionResult:

    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def extract_public_id(url: str) -> Optional[str]:
    """Return the Cloudinary public id of a delivery URL, or None if it is not one."""
    if not url or "cloudinary.com" not in url:
        return None
    parts = url.split("?", 1)[0].split("/")
    try:
        upload_index = parts.index("upload")
    except ValueError:
        return None
    tail = parts[upload_index + 1:]
    while tail and _VERSION_SEGMENT.match(tail[0]):
        tail = tail[1:]
    if not tail:
        return None
    public_id = "/".join(tail)
    return re.sub(r"\.[^/.]+$", "", public_id) or None


class CloudinaryMediaStore:

    enabled = True

    def __init__(self, cloud_name: str, api_key: str | None, api_secret: str | None, folder: str = "messages") -> None:
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)
        self._folder = folder

    async def upload(self, data: bytes, folder: str | None = None) -> str:
        # the SDK is synchronous
        result = await asyncio.to_thread(
            cloudinary.uploader.upload,
            io.BytesIO(data),
            folder=folder or self._folder,
            resource_type="image",
        )
        return result["secure_url"]

    async def delete_many(self, urls: Iterable[str]) -> MediaDeletionResult:
        outcome = MediaDeletionResult()
        by_public_id: Dict[str, str] = {}
        for url in dict.fromkeys(u for u in urls if u):
            public_id = extract_public_id(url)
            if public_id is None:
                logger.warning("Could not extract public id from %s", url)
                outcome.failed.append(url)
                continue
            by_public_id[public_id] = url

        public_ids = list(by_public_id)
        for start in range(0, len(public_ids), _DELETE_CHUNK):
            chunk = public_ids[start:start + _DELETE_CHUNK]
            try:
                response = await asyncio.to_thread(cloudinary.api.delete_resources, chunk, resource_type="image")
            except Exception as exc:
                logger.warning("Cloudinary bulk delete failed for %d images: %s", len(chunk), exc)
                outcome.failed.extend(by_public_id[pid] for pid in chunk)
                continue
            statuses = response.get("deleted", {})
            for pid in chunk:
                # "not_found" means the blob is already gone
                if statuses.get(pid) in ("deleted", "not_found"):
                    outcome.deleted.append(by_public_id[pid])
                else:
                    outcome.failed.append(by_public_id[pid])
        return outcome


class InMemoryMediaStore:
    """Local media store for development and tests."""

    enabled = False

    def __init__(self, fail_urls: Iterable[str] = ()) -> None:
        self.urls: Set[str] = set()
        self.fail_urls: Set[str] = set(fail_urls)
        self.delete_calls: List[List[str]] = []

    def add(self, url: str) -> str:
        self.urls.add(url)
        return url

    async def upload(self, data: bytes, folder: str | None = None) -> str:
        return self.add(f"https://res.cloudinary.com/local/image/upload/{folder or 'messages'}/{uuid4().hex}.jpg")

    async def delete_many(self, urls: Iterable[str]) -> MediaDeletionResult:
        requested = list(dict.fromkeys(u for u in urls if u))
        self.delete_calls.append(requested)
        outcome = MediaDeletionResult()
        for url in requested:
            if url in self.fail_urls:
                outcome.failed.append(url)
                continue
            self.urls.discard(url)
            outcome.deleted.append(url)
        return outcome


_media_store = None


def get_media_store():
    global _media_store
    if _media_store is not None:
        return _media_store
    cloud_name = os.getenv("CLOUDINARY_CLOUD_NAME")
    if not cloud_name:
        logger.info("CLOUDINARY_CLOUD_NAME not set; using in-memory media store")
        _media_store = InMemoryMediaStore()
        return _media_store
    _media_store = CloudinaryMediaStore(
        cloud_name,
        os.getenv("CLOUDINARY_API_KEY"),
        os.getenv("CLOUDINARY_API_SECRET"),
        folder=os.getenv("CLOUDINARY_FOLDER", "messages"),
    )
    return _media_store
