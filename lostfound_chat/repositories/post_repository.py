from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from lostfound_chat.models.post import PostDocument, ResolutionDetails


class PostRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["posts"]

    async def get(self, post_id: str) -> Optional[PostDocument]:
        return await self.collection.find_one({"_id": post_id})

    async def mark_resolved(self, post_id: str, resolution_details: ResolutionDetails, session=None) -> bool:
        result = await self.collection.update_one(
            {"_id": post_id, "status": {"$ne": "resolved"}},
            {
                "$set": {
                    "status": "resolved",
                    "resolutionDetails": resolution_details,
                    "updatedAt": datetime.now(timezone.utc),
                },
            },
            session=session,
        )
        return bool(result.matched_count)
