import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest

from lostfound_chat.repositories.memory import (
    InMemoryConversationRepository,
    InMemoryDeviceRepository,
    InMemoryMessageRepository,
    InMemoryNotificationRepository,
    InMemoryPostRepository,
    InMemoryStore,
)
from lostfound_chat.services.conversation_service import ConversationService
from lostfound_chat.services.message_service import MessageService
from lostfound_chat.services.request_service import RequestService
from lostfound_chat.services.resolution_service import ResolutionService
from lostfound_chat.utils.media import InMemoryMediaStore
from lostfound_chat.utils.notifications import NotificationDispatcher


NAMES = {"owner": "Olivia Owner", "alice": "Alice", "bob": "Bob", "carol": "Carol"}


class RecordingEvents:

    def __init__(self) -> None:
        self.events: List[tuple] = []

    async def publish(self, user_ids, event: str, data: Dict[str, Any]) -> None:
        self.events.append((list(user_ids), event, data))

    def named(self, event: str) -> List[tuple]:
        return [e for e in self.events if e[1] == event]


@dataclass
class Harness:
    store: InMemoryStore
    posts: InMemoryPostRepository
    conversations: InMemoryConversationRepository
    messages: InMemoryMessageRepository
    devices: InMemoryDeviceRepository
    notifications: InMemoryNotificationRepository
    media: InMemoryMediaStore
    dispatcher: NotificationDispatcher
    events: RecordingEvents
    exchange: MessageService
    conversation_service: ConversationService
    resolution: ResolutionService
    requests: RequestService

    def add_post(self, post_id: str = "post-1", creator: str = "owner", title: str = "Black Wallet", post_type: str = "lost", **extra) -> str:
        return self.posts.add({
            "_id": post_id,
            "title": title,
            "type": post_type,
            "status": "pending",
            "creatorId": creator,
            "updatedAt": datetime.now(timezone.utc),
            **extra,
        })

    def open(self, requester: str, post_id: str = "post-1", reporter: str = "owner", text: str | None = None) -> str:
        conversation_id, _ = asyncio.run(self.conversation_service.create_or_reuse_conversation(
            post_id,
            reporter,
            requester,
            {"name": NAMES.get(requester, requester), "photo": None},
            {"name": NAMES.get(reporter, reporter), "photo": None},
            text,
        ))
        return conversation_id

    def photo(self, name: str) -> str:
        return self.media.add(f"https://res.cloudinary.com/demo/image/upload/v1700000000/messages/{name}.jpg")

    def request_payload(self, kind: str = "handover", prefix: str = "x", photos: int = 1, reason: str = "I found it near the library") -> Dict[str, Any]:
        return {
            "kind": kind,
            "reason": reason,
            "id_photo_url": self.photo(f"{prefix}-id"),
            "photos": [{"url": self.photo(f"{prefix}-item{i}"), "description": f"photo {i}"} for i in range(photos)],
        }

    def send_request(self, conversation_id: str, sender: str, kind: str = "handover", photos: int = 1) -> Dict[str, Any]:
        return asyncio.run(self.requests.send_request(
            conversation_id, sender, NAMES.get(sender, sender), self.request_payload(kind, prefix=sender, photos=photos),
        ))

    def notifications_for(self, user_id: str, type_: str | None = None) -> List[Dict[str, Any]]:
        return [
            n for n in self.store.notifications
            if n["userId"] == user_id and (type_ is None or n["type"] == type_)
        ]


def build_harness(message_limit: int = 50) -> Harness:
    store = InMemoryStore()
    posts = InMemoryPostRepository(store)
    conversations = InMemoryConversationRepository(store)
    messages = InMemoryMessageRepository(store)
    devices = InMemoryDeviceRepository(store)
    notifications = InMemoryNotificationRepository(store)
    media = InMemoryMediaStore()
    dispatcher = NotificationDispatcher(notifications, devices)
    events = RecordingEvents()
    exchange = MessageService(messages, conversations, dispatcher, events, media, limit=message_limit)
    conversation_service = ConversationService(conversations, messages, posts, dispatcher, events, media)
    resolution = ResolutionService(posts, conversations, messages, media, dispatcher, events)
    requests = RequestService(exchange, messages, conversations, media, dispatcher, events, resolution)
    return Harness(
        store, posts, conversations, messages, devices, notifications, media,
        dispatcher, events, exchange, conversation_service, resolution, requests,
    )


@pytest.fixture
def harness() -> Harness:
    return build_harness()
