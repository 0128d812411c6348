"""In-memory stand-ins for the MongoDB repositories.

Used by the test-suite and for running the API without a database. Every
method mirrors its motor counterpart; documents are deep-copied on the way in
and out so callers can never mutate stored state by accident. A method body
never awaits, so each call is atomic with respect to other coroutines.
A failed ``transaction()`` block restores the whole store to its state on
entry.
"""

from __future__ import annotations

import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = copy.deepcopy(value)


def _get_path(doc: Dict[str, Any], path: str) -> Any:
    target: Any = doc
    for part in path.split("."):
        if not isinstance(target, dict):
            return None
        target = target.get(part)
    return target


@dataclass
class InMemoryStore:
    posts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    conversations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    conversation_keys: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    messages: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    devices: List[Dict[str, Any]] = field(default_factory=list)
    notifications: List[Dict[str, Any]] = field(default_factory=list)
    preferences: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class InMemoryPostRepository:

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def add(self, doc: Dict[str, Any]) -> str:
        self._store.posts[doc["_id"]] = copy.deepcopy(doc)
        return doc["_id"]

    async def get(self, post_id: str) -> Optional[Dict[str, Any]]:
        doc = self._store.posts.get(post_id)
        return copy.deepcopy(doc) if doc else None

    async def mark_resolved(self, post_id: str, resolution_details: Dict[str, Any], session=None) -> bool:
        doc = self._store.posts.get(post_id)
        if doc is None or doc.get("status") == "resolved":
            return False
        doc["status"] = "resolved"
        doc["resolutionDetails"] = copy.deepcopy(resolution_details)
        doc["updatedAt"] = datetime.now(timezone.utc)
        return True


class InMemoryConversationRepository:

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def ensure_indexes(self) -> None:
        return

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        snapshot = copy.deepcopy(vars(self._store))
        try:
            yield None
        except BaseException:
            for name, value in snapshot.items():
                setattr(self._store, name, value)
            raise

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        doc = self._store.conversations.get(conversation_id)
        return copy.deepcopy(doc) if doc else None

    async def find_by_post_and_participants(self, post_id: str, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        for doc in self._store.conversations.values():
            ids = doc.get("participantIds", [])
            if doc.get("postId") == post_id and user_a in ids and user_b in ids:
                return copy.deepcopy(doc)
        return None

    async def get_key(self, key: str) -> Optional[Dict[str, Any]]:
        doc = self._store.conversation_keys.get(key)
        return copy.deepcopy(doc) if doc else None

    async def insert_key(self, key: str, conversation_id: str, session=None) -> None:
        if key in self._store.conversation_keys:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: conversation_keys _id: {key}")
        self._store.conversation_keys[key] = {
            "_id": key,
            "conversationId": conversation_id,
            "createdAt": datetime.now(timezone.utc),
        }

    async def insert(self, doc: Dict[str, Any], session=None) -> str:
        self._store.conversations[doc["_id"]] = copy.deepcopy(doc)
        return doc["_id"]

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        items = [
            doc for doc in self._store.conversations.values()
            if user_id in doc.get("participantIds", []) and len(doc.get("participantIds", [])) >= 2
        ]
        items.sort(key=lambda d: (d.get("updatedAt") or d.get("createdAt"), d["_id"]), reverse=True)
        return copy.deepcopy(items[:limit])

    async def list_by_post(self, post_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy([doc for doc in self._store.conversations.values() if doc.get("postId") == post_id])

    async def apply_new_message(
        self,
        conversation_id: str,
        last_message: Dict[str, Any],
        receiver_ids: Iterable[str],
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        doc = self._store.conversations.get(conversation_id)
        if doc is None:
            return False
        doc["lastMessage"] = copy.deepcopy(last_message)
        doc["updatedAt"] = datetime.now(timezone.utc)
        for path, value in (extra or {}).items():
            _set_path(doc, path, value)
        counts = doc.setdefault("unreadCounts", {})
        for uid in receiver_ids:
            counts[uid] = counts.get(uid, 0) + 1
        return True

    async def reset_unread(self, conversation_id: str, user_id: str) -> bool:
        doc = self._store.conversations.get(conversation_id)
        if doc is None:
            return False
        doc.setdefault("unreadCounts", {})[user_id] = 0
        return True

    async def update_fields(self, conversation_id: str, fields: Dict[str, Any], session=None) -> bool:
        doc = self._store.conversations.get(conversation_id)
        if doc is None:
            return False
        for path, value in fields.items():
            _set_path(doc, path, value)
        doc["updatedAt"] = datetime.now(timezone.utc)
        return True

    async def delete(self, conversation_id: str, session=None) -> bool:
        for key in [k for k, v in self._store.conversation_keys.items() if v["conversationId"] == conversation_id]:
            del self._store.conversation_keys[key]
        return self._store.conversations.pop(conversation_id, None) is not None


class InMemoryMessageRepository:

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def ensure_indexes(self) -> None:
        return

    def _for(self, conversation_id: str) -> List[Dict[str, Any]]:
        items = [m for m in self._store.messages.values() if m.get("conversationId") == conversation_id]
        items.sort(key=lambda m: (m["timestamp"], m["_id"]))
        return items

    async def insert(self, doc: Dict[str, Any], session=None) -> str:
        doc.setdefault("_id", str(ObjectId()))
        self._store.messages[doc["_id"]] = copy.deepcopy(doc)
        return doc["_id"]

    async def get(self, conversation_id: str, message_id: str) -> Optional[Dict[str, Any]]:
        doc = self._store.messages.get(message_id)
        if doc is None or doc.get("conversationId") != conversation_id:
            return None
        return copy.deepcopy(doc)

    async def list_page(self, conversation_id: str, limit: int = 50, before: Optional[datetime] = None) -> List[Dict[str, Any]]:
        items = self._for(conversation_id)
        if before is not None:
            items = [m for m in items if m["timestamp"] < before]
        return copy.deepcopy(items[-limit:]) if limit > 0 else []

    async def list_all(self, conversation_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._for(conversation_id))

    async def latest(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        items = self._for(conversation_id)
        return copy.deepcopy(items[-1]) if items else None

    async def count(self, conversation_id: str) -> int:
        return len(self._for(conversation_id))

    async def oldest(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return [{"_id": m["_id"], "messageType": m.get("messageType")} for m in self._for(conversation_id)[:limit]]

    async def delete_ids(self, conversation_id: str, message_ids: Iterable[str]) -> int:
        deleted = 0
        for message_id in list(message_ids):
            doc = self._store.messages.get(message_id)
            if doc is not None and doc.get("conversationId") == conversation_id:
                del self._store.messages[message_id]
                deleted += 1
        return deleted

    async def delete_for_conversation(self, conversation_id: str, session=None) -> int:
        return await self.delete_ids(conversation_id, [m["_id"] for m in self._for(conversation_id)])

    async def mark_read_by(self, conversation_id: str, message_id: str, user_id: str) -> bool:
        doc = self._store.messages.get(message_id)
        if doc is None or doc.get("conversationId") != conversation_id:
            return False
        read_by = doc.setdefault("readBy", [])
        if user_id in read_by:
            return False
        read_by.append(user_id)
        return True

    async def mark_all_read_by(self, conversation_id: str, user_id: str) -> int:
        changed = 0
        for doc in self._for(conversation_id):
            read_by = doc.setdefault("readBy", [])
            if user_id not in read_by:
                read_by.append(user_id)
                changed += 1
        return changed

    async def transition_request(
        self,
        conversation_id: str,
        message_id: str,
        expected_statuses: Iterable[str],
        fields: Dict[str, Any],
        session=None,
    ) -> Optional[Dict[str, Any]]:
        doc = self._store.messages.get(message_id)
        if doc is None or doc.get("conversationId") != conversation_id:
            return None
        if _get_path(doc, "requestData.status") not in set(expected_statuses):
            return None
        if _get_path(doc, "requestData.idPhotoConfirmed") is True:
            return None
        for path, value in fields.items():
            _set_path(doc, path, value)
        return copy.deepcopy(doc)

    async def update_fields(self, conversation_id: str, message_id: str, fields: Dict[str, Any]) -> bool:
        doc = self._store.messages.get(message_id)
        if doc is None or doc.get("conversationId") != conversation_id:
            return False
        for path, value in fields.items():
            _set_path(doc, path, value)
        return True


class InMemoryDeviceRepository:

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def register(self, user_id: str, platform: str, token: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        for doc in self._store.devices:
            if (doc["user_id"], doc["platform"], doc["token"]) == (user_id, platform, token):
                doc["last_seen_at"] = now
                break
        else:
            self._store.devices.append({"user_id": user_id, "platform": platform, "token": token, "last_seen_at": now})
        return {"user_id": user_id, "platform": platform, "token": token}

    async def get_tokens(self, user_id: str, platform: str | None = None) -> List[Dict[str, Any]]:
        return copy.deepcopy([
            d for d in self._store.devices
            if d["user_id"] == user_id and (platform is None or d["platform"] == platform)
        ])


class InMemoryNotificationRepository:

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def insert_many(self, docs: List[Dict[str, Any]]) -> int:
        for doc in docs:
            doc.setdefault("_id", str(ObjectId()))
            self._store.notifications.append(copy.deepcopy(doc))
        return len(docs)

    async def get_preferences(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = self._store.preferences.get(user_id)
        return copy.deepcopy(doc) if doc else None

    async def set_preferences(self, user_id: str, prefs: Dict[str, bool]) -> Dict[str, Any]:
        doc = self._store.preferences.setdefault(user_id, {"_id": user_id})
        doc.update(prefs)
        return copy.deepcopy(doc)
