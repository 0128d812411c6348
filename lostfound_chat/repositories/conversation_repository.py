from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from lostfound_chat.database.connection import mongo_transaction
from lostfound_chat.models.conversation import ConversationDocument


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    @property
    def keys(self):
        return self._db["conversation_keys"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participantIds", ASCENDING)])
        await self.collection.create_index([("postId", ASCENDING)])
        await self.collection.create_index([("updatedAt", DESCENDING)])
        await self.keys.create_index([("conversationId", ASCENDING)])

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        async with mongo_transaction(self._db) as session:
            yield session

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    async def find_by_post_and_participants(self, post_id: str, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"postId": post_id, "participantIds": {"$all": [user_a, user_b]}})

    async def get_key(self, key: str) -> Optional[Dict[str, Any]]:
        return await self.keys.find_one({"_id": key})

    async def insert_key(self, key: str, conversation_id: str, session=None) -> None:
        # raises DuplicateKeyError when the (post, requester) pair is taken
        await self.keys.insert_one(
            {"_id": key, "conversationId": conversation_id, "createdAt": datetime.now(timezone.utc)},
            session=session,
        )

    async def insert(self, doc: ConversationDocument, session=None) -> str:
        await self.collection.insert_one(doc, session=session)
        return doc["_id"]

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        # a conversation with a single participant is invalid and never listed
        query = {"participantIds": user_id, "participantIds.1": {"$exists": True}}
        cursor = self.collection.find(query).sort([("updatedAt", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        return await cursor.to_list(length=limit)

    async def list_by_post(self, post_id: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"postId": post_id})
        return await cursor.to_list(length=None)

    async def apply_new_message(
        self,
        conversation_id: str,
        last_message: Dict[str, Any],
        receiver_ids: Iterable[str],
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        update: Dict[str, Any] = {
            "$set": {"lastMessage": last_message, "updatedAt": datetime.now(timezone.utc), **(extra or {})},
        }
        increments = {f"unreadCounts.{uid}": 1 for uid in receiver_ids}
        if increments:
            update["$inc"] = increments
        result = await self.collection.update_one({"_id": conversation_id}, update)
        return bool(result.matched_count)

    async def reset_unread(self, conversation_id: str, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": conversation_id},
            {"$set": {f"unreadCounts.{user_id}": 0}},
        )
        return bool(result.matched_count)

    async def update_fields(self, conversation_id: str, fields: Dict[str, Any], session=None) -> bool:
        result = await self.collection.update_one(
            {"_id": conversation_id},
            {"$set": {**fields, "updatedAt": datetime.now(timezone.utc)}},
            session=session,
        )
        return bool(result.matched_count)

    async def delete(self, conversation_id: str, session=None) -> bool:
        await self.keys.delete_many({"conversationId": conversation_id}, session=session)
        result = await self.collection.delete_one({"_id": conversation_id}, session=session)
        return bool(result.deleted_count)
