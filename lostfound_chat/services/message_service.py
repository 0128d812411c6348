import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from lostfound_chat.models.message import PROTECTED_MESSAGE_TYPES
from lostfound_chat.services.helpers import (
    message_photo_urls,
    new_message_doc,
    other_participants,
    require_participant,
)
from lostfound_chat.utils.errors import InvalidArgument, NotAuthorized, NotFound
from lostfound_chat.utils.notifications import NotificationPayload


logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_LIMIT = 50


def message_limit() -> int:
    return int(os.getenv("CHAT_MESSAGE_LIMIT", str(DEFAULT_MESSAGE_LIMIT)))


class MessageService:

    def __init__(self, message_repo, conversation_repo, dispatcher, events, media_store, limit: int | None = None) -> None:
        self._messages = message_repo
        self._conversations = conversation_repo
        self._dispatcher = dispatcher
        self._events = events
        self._media = media_store
        self._limit = limit if limit is not None else message_limit()

    async def send(
        self,
        conversation_id: str,
        sender_id: str,
        sender_name: str,
        text: str,
        sender_profile_picture: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not text or not text.strip():
            raise InvalidArgument("Message content cannot be empty")
        conversation = await require_participant(self._conversations, conversation_id, sender_id)
        text = text.strip()
        doc = new_message_doc(conversation_id, sender_id, sender_name, text, sender_profile_picture)
        notification = NotificationPayload(
            type="message",
            title=f"New message from {sender_name}",
            body=text[:100],
            data={
                "conversationId": conversation_id,
                "messageId": doc["_id"],
                "postId": conversation.get("postId"),
                "postTitle": conversation.get("postTitle"),
                "senderId": sender_id,
            },
        )
        return await self.append(conversation, doc, preview=text[:200], notification=notification)

    async def append(
        self,
        conversation: Dict[str, Any],
        doc: Dict[str, Any],
        preview: str,
        extra: Optional[Dict[str, Any]] = None,
        notification: Optional[NotificationPayload] = None,
    ) -> Dict[str, Any]:
        """Store a message and fold it into its conversation.

        Every participant other than the sender gets their unread counter
        incremented atomically; the sender's counter is left alone.
        """
        conversation_id = conversation["_id"]
        sender_id = doc["senderId"]
        receivers = other_participants(conversation, sender_id)

        await self._messages.insert(doc)
        last_message = {"text": preview, "senderId": sender_id, "timestamp": doc["timestamp"]}
        if not await self._conversations.apply_new_message(conversation_id, last_message, receivers, extra):
            # conversation removed while we were writing
            await self._messages.delete_ids(conversation_id, [doc["_id"]])
            raise NotFound(f"Conversation {conversation_id} not found")

        participants = conversation.get("participantIds", [])
        await self._events.publish(participants, "message.created", {"conversationId": conversation_id, "message": doc})
        await self._events.publish(participants, "conversation.updated", {"conversationId": conversation_id, "lastMessage": last_message})

        if notification is not None and receivers:
            result = await self._dispatcher.notify(receivers, notification)
            if not result.success:
                logger.warning("Notification %s partially failed for %s: %s", notification.type, conversation_id, result.failed)

        try:
            await self.enforce_retention(conversation_id)
        except Exception as exc:
            logger.warning("Retention pass failed for %s: %s", conversation_id, exc)
        return doc

    async def enforce_retention(self, conversation_id: str) -> int:
        """Trim the oldest messages once a conversation is over the cap.

        Only the oldest overflow window is considered; request messages in
        that window are kept, so a conversation made up mostly of requests
        may stay above the cap.
        """
        total = await self._messages.count(conversation_id)
        excess = total - self._limit
        if excess <= 0:
            return 0
        window = await self._messages.oldest(conversation_id, excess)
        ids = [m["_id"] for m in window if m.get("messageType") not in PROTECTED_MESSAGE_TYPES]
        if len(ids) < len(window):
            logger.info(
                "Conversation %s keeps %d protected messages above the %d message cap",
                conversation_id, len(window) - len(ids), self._limit,
            )
        if not ids:
            return 0
        deleted = await self._messages.delete_ids(conversation_id, ids)
        logger.debug("Evicted %d messages from %s", deleted, conversation_id)
        return deleted

    async def list_messages(
        self,
        conversation_id: str,
        user_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        await require_participant(self._conversations, conversation_id, user_id)
        return await self._messages.list_page(conversation_id, limit=limit, before=before)

    async def mark_message_read(self, conversation_id: str, message_id: str, user_id: str) -> bool:
        await require_participant(self._conversations, conversation_id, user_id)
        return await self._messages.mark_read_by(conversation_id, message_id, user_id)

    async def delete_message(self, conversation_id: str, message_id: str, user_id: str) -> Dict[str, Any]:
        conversation = await require_participant(self._conversations, conversation_id, user_id)
        message = await self._messages.get(conversation_id, message_id)
        if not message:
            raise NotFound(f"Message {message_id} not found")
        if message.get("senderId") != user_id:
            raise NotAuthorized("You can only delete your own messages")
        if (message.get("requestData") or {}).get("idPhotoConfirmed"):
            raise NotAuthorized("A confirmed request cannot be deleted")

        photos = message_photo_urls(message)
        await self._messages.delete_ids(conversation_id, [message_id])

        latest = await self._messages.latest(conversation_id)
        last_message = None
        if latest:
            last_message = {"text": latest.get("text", "")[:200], "senderId": latest.get("senderId"), "timestamp": latest.get("timestamp")}
        await self._conversations.update_fields(conversation_id, {"lastMessage": last_message})

        media = None
        if photos:
            media = await self._media.delete_many(photos)
            if not media.success:
                logger.warning("Could not delete %d photos of message %s", len(media.failed), message_id)

        await self._events.publish(
            conversation.get("participantIds", []),
            "message.deleted",
            {"conversationId": conversation_id, "messageId": message_id, "lastMessage": last_message},
        )
        return {
            "message_id": message_id,
            "photos_deleted": len(media.deleted) if media else 0,
            "photos_failed": len(media.failed) if media else 0,
        }
