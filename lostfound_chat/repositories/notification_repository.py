from typing import Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from lostfound_chat.models.notification import NotificationDocument, NotificationPreferencesDocument


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["notifications"]

    @property
    def preferences(self):
        return self._db["notification_preferences"]

    async def insert_many(self, docs: List[NotificationDocument]) -> int:
        if not docs:
            return 0
        for doc in docs:
            doc.setdefault("_id", str(ObjectId()))
        result = await self.collection.insert_many(docs)
        return len(result.inserted_ids)

    async def get_preferences(self, user_id: str) -> Optional[NotificationPreferencesDocument]:
        return await self.preferences.find_one({"_id": user_id})

    async def set_preferences(self, user_id: str, prefs: Dict[str, bool]) -> NotificationPreferencesDocument:
        await self.preferences.update_one({"_id": user_id}, {"$set": prefs}, upsert=True)
        return {"_id": user_id, **prefs}
