from fastapi import Depends, Header, HTTPException

from lostfound_chat.database.connection import mongo_db_dependency
from lostfound_chat.repositories.conversation_repository import ConversationRepository
from lostfound_chat.repositories.device_repository import DeviceRepository
from lostfound_chat.repositories.message_repository import MessageRepository
from lostfound_chat.repositories.notification_repository import NotificationRepository
from lostfound_chat.repositories.post_repository import PostRepository
from lostfound_chat.services.conversation_service import ConversationService
from lostfound_chat.services.message_service import MessageService
from lostfound_chat.services.request_service import RequestService
from lostfound_chat.services.resolution_service import ResolutionService
from lostfound_chat.utils.media import get_media_store
from lostfound_chat.utils.notifications import NotificationDispatcher, get_push
from lostfound_chat.utils.realtime_bus import EventPublisher, get_bus


async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    # identity is established upstream; the gateway forwards the user id
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_conversation_repo(db = Depends(mongo_db_dependency)) -> ConversationRepository:
    return ConversationRepository(db)


def get_message_repo(db = Depends(mongo_db_dependency)) -> MessageRepository:
    return MessageRepository(db)


def get_post_repo(db = Depends(mongo_db_dependency)) -> PostRepository:
    return PostRepository(db)


def get_device_repo(db = Depends(mongo_db_dependency)) -> DeviceRepository:
    return DeviceRepository(db)


def get_notification_repo(db = Depends(mongo_db_dependency)) -> NotificationRepository:
    return NotificationRepository(db)


def get_media():
    return get_media_store()


async def get_events() -> EventPublisher:
    return EventPublisher(await get_bus())


async def get_dispatcher(
    notification_repo = Depends(get_notification_repo),
    device_repo = Depends(get_device_repo),
) -> NotificationDispatcher:
    return NotificationDispatcher(notification_repo, device_repo, await get_push())


def get_message_service(
    message_repo = Depends(get_message_repo),
    conversation_repo = Depends(get_conversation_repo),
    dispatcher = Depends(get_dispatcher),
    events = Depends(get_events),
    media = Depends(get_media),
) -> MessageService:
    return MessageService(message_repo, conversation_repo, dispatcher, events, media)


def get_conversation_service(
    conversation_repo = Depends(get_conversation_repo),
    message_repo = Depends(get_message_repo),
    post_repo = Depends(get_post_repo),
    dispatcher = Depends(get_dispatcher),
    events = Depends(get_events),
    media = Depends(get_media),
) -> ConversationService:
    return ConversationService(conversation_repo, message_repo, post_repo, dispatcher, events, media)


def get_resolution_service(
    post_repo = Depends(get_post_repo),
    conversation_repo = Depends(get_conversation_repo),
    message_repo = Depends(get_message_repo),
    media = Depends(get_media),
    dispatcher = Depends(get_dispatcher),
    events = Depends(get_events),
) -> ResolutionService:
    return ResolutionService(post_repo, conversation_repo, message_repo, media, dispatcher, events)


def get_request_service(
    message_service = Depends(get_message_service),
    message_repo = Depends(get_message_repo),
    conversation_repo = Depends(get_conversation_repo),
    media = Depends(get_media),
    dispatcher = Depends(get_dispatcher),
    events = Depends(get_events),
    resolution = Depends(get_resolution_service),
) -> RequestService:
    return RequestService(message_service, message_repo, conversation_repo, media, dispatcher, events, resolution)
