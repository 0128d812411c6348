from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from lostfound_chat.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversationId", ASCENDING), ("timestamp", ASCENDING)])

    async def insert(self, doc: MessageDocument, session=None) -> str:
        await self.collection.insert_one(doc, session=session)
        return doc["_id"]

    async def get(self, conversation_id: str, message_id: str) -> Optional[MessageDocument]:
        return await self.collection.find_one({"_id": message_id, "conversationId": conversation_id})

    async def list_page(
        self,
        conversation_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"conversationId": conversation_id}
        if before is not None:
            query["timestamp"] = {"$lt": before}
        cursor = self.collection.find(query).sort([("timestamp", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = await cursor.to_list(length=limit)
        # ascending chronological order for the UI
        return list(reversed(items))

    async def list_all(self, conversation_id: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"conversationId": conversation_id}).sort([("timestamp", ASCENDING), ("_id", ASCENDING)])
        return await cursor.to_list(length=None)

    async def latest(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        items = await self.list_page(conversation_id, limit=1)
        return items[0] if items else None

    async def count(self, conversation_id: str) -> int:
        return await self.collection.count_documents({"conversationId": conversation_id})

    async def oldest(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        cursor = (
            self.collection.find({"conversationId": conversation_id}, {"_id": 1, "messageType": 1})
            .sort([("timestamp", ASCENDING), ("_id", ASCENDING)])
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def delete_ids(self, conversation_id: str, message_ids: Iterable[str]) -> int:
        ids = list(message_ids)
        if not ids:
            return 0
        result = await self.collection.delete_many({"conversationId": conversation_id, "_id": {"$in": ids}})
        return result.deleted_count or 0

    async def delete_for_conversation(self, conversation_id: str, session=None) -> int:
        result = await self.collection.delete_many({"conversationId": conversation_id}, session=session)
        return result.deleted_count or 0

    async def mark_read_by(self, conversation_id: str, message_id: str, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": message_id, "conversationId": conversation_id},
            {"$addToSet": {"readBy": user_id}},
        )
        return bool(result.modified_count)

    async def mark_all_read_by(self, conversation_id: str, user_id: str) -> int:
        result = await self.collection.update_many(
            {"conversationId": conversation_id, "readBy": {"$ne": user_id}},
            {"$addToSet": {"readBy": user_id}},
        )
        return result.modified_count or 0

    async def transition_request(
        self,
        conversation_id: str,
        message_id: str,
        expected_statuses: Iterable[str],
        fields: Dict[str, Any],
        session=None,
    ) -> Optional[Dict[str, Any]]:
        """Apply ``fields`` only while the request is still in one of ``expected_statuses``.

        Returns the updated message, or None when another writer got there first.
        """
        query = {
            "_id": message_id,
            "conversationId": conversation_id,
            "requestData.status": {"$in": list(expected_statuses)},
            "requestData.idPhotoConfirmed": {"$ne": True},
        }
        return await self.collection.find_one_and_update(
            query,
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    async def update_fields(self, conversation_id: str, message_id: str, fields: Dict[str, Any]) -> bool:
        result = await self.collection.update_one({"_id": message_id, "conversationId": conversation_id}, {"$set": fields})
        return bool(result.matched_count)
