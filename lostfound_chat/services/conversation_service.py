import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError, OperationFailure

from lostfound_chat.models.post import FOUND_ACTIONS
from lostfound_chat.services.helpers import (
    message_photo_urls,
    new_id,
    new_message_doc,
    other_participants,
    require_participant,
)
from lostfound_chat.utils.errors import AlreadyProcessed, InvalidArgument, NotAuthorized, NotFound
from lostfound_chat.utils.notifications import NotificationPayload


logger = logging.getLogger(__name__)

DEFAULT_POST_TITLE = "Unknown Post"


def conversation_key(post_id: str, requester_id: str) -> str:
    return f"{post_id}:{requester_id}"


def post_snapshot(post: Optional[Dict[str, Any]], reporter_id: str) -> Dict[str, Any]:
    """Post fields denormalized onto a conversation, with defaults for a missing post."""
    post = post or {}
    found_action = post.get("foundAction")
    if found_action not in FOUND_ACTIONS:
        found_action = None
    return {
        "postTitle": post.get("title") or DEFAULT_POST_TITLE,
        "postType": post.get("type") or "lost",
        "postStatus": post.get("status") or "pending",
        "postCreatorId": post.get("creatorId") or reporter_id,
        "foundAction": found_action,
    }


class ConversationService:

    def __init__(self, conversation_repo, message_repo, post_repo, dispatcher, events, media_store) -> None:
        self._conversations = conversation_repo
        self._messages = message_repo
        self._posts = post_repo
        self._dispatcher = dispatcher
        self._events = events
        self._media = media_store

    async def create_or_reuse_conversation(
        self,
        post_id: str,
        reporter_id: str,
        requester_id: str,
        requester_profile: Dict[str, Any],
        reporter_profile: Dict[str, Any],
        opening_text: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """Return ``(conversation_id, created)`` for the requester's thread about a post.

        At most one conversation exists per (post, requester): the insert is
        guarded by a unique key document, so concurrent callers converge on
        the same conversation.
        """
        if not post_id or not post_id.strip():
            raise NotFound("Post id is invalid")
        if requester_id == reporter_id:
            raise InvalidArgument("You cannot start a conversation with yourself")

        existing = await self._find_existing(post_id, reporter_id, requester_id)
        if existing:
            return existing["_id"], False

        post = None
        try:
            post = await self._posts.get(post_id)
        except Exception as exc:
            logger.warning("Post lookup for %s failed, using defaults: %s", post_id, exc)
        if post is None:
            logger.warning("Post %s not found; conversation gets default post details", post_id)
        elif post.get("status") == "resolved":
            raise AlreadyProcessed("This post has already been resolved")
        elif post.get("creatorId") and post["creatorId"] != reporter_id:
            raise InvalidArgument("Conversations about a post must be held with its creator")

        now = datetime.now(timezone.utc)
        conversation_id = new_id()
        snapshot = post_snapshot(post, reporter_id)
        conversation = {
            "_id": conversation_id,
            "postId": post_id,
            **snapshot,
            "participants": {
                requester_id: {"name": requester_profile.get("name"), "photo": requester_profile.get("photo"), "joinedAt": now},
                reporter_id: {"name": reporter_profile.get("name"), "photo": reporter_profile.get("photo"), "joinedAt": now},
            },
            "participantIds": [requester_id, reporter_id],
            "unreadCounts": {requester_id: 0, reporter_id: 1},
            "lastMessage": None,
            "createdAt": now,
            "updatedAt": now,
        }
        text = (opening_text or "").strip() or f"Hi! I'm reaching out about \"{snapshot['postTitle']}\"."
        opening = new_message_doc(
            conversation_id,
            requester_id,
            requester_profile.get("name") or "Unknown User",
            text,
            requester_profile.get("photo"),
        )
        conversation["lastMessage"] = {"text": text[:200], "senderId": requester_id, "timestamp": opening["timestamp"]}

        try:
            async with self._conversations.transaction() as session:
                await self._conversations.insert_key(conversation_key(post_id, requester_id), conversation_id, session=session)
                await self._conversations.insert(conversation, session=session)
                await self._messages.insert(opening, session=session)
        except DuplicateKeyError:
            return await self._winner(post_id, reporter_id, requester_id)
        except OperationFailure as exc:
            if not exc.has_error_label("TransientTransactionError"):
                raise
            logger.info("Conversation insert for %s/%s lost a race: %s", post_id, requester_id, exc)
            return await self._winner(post_id, reporter_id, requester_id)

        logger.info("Created conversation %s for post %s", conversation_id, post_id)
        await self._events.publish(conversation["participantIds"], "conversation.created", {"conversation": conversation})
        result = await self._dispatcher.notify(
            [reporter_id],
            NotificationPayload(
                type="message",
                title=f"New message from {opening['senderName']}",
                body=text[:100],
                data={"conversationId": conversation_id, "messageId": opening["_id"], "postId": post_id, "senderId": requester_id},
            ),
        )
        if not result.success:
            logger.warning("Could not notify %s about conversation %s: %s", reporter_id, conversation_id, result.failed)
        return conversation_id, True

    async def _find_existing(self, post_id: str, reporter_id: str, requester_id: str) -> Optional[Dict[str, Any]]:
        existing = await self._conversations.find_by_post_and_participants(post_id, requester_id, reporter_id)
        if existing:
            return existing
        key = await self._conversations.get_key(conversation_key(post_id, requester_id))
        if key:
            return await self._conversations.get(key["conversationId"])
        return None

    async def _winner(self, post_id: str, reporter_id: str, requester_id: str) -> Tuple[str, bool]:
        existing = await self._find_existing(post_id, reporter_id, requester_id)
        if not existing:
            raise AlreadyProcessed("Conversation is being created, try again")
        return existing["_id"], False

    async def list_conversations(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return await self._conversations.list_for_user(user_id, limit=limit)

    async def get_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        return await require_participant(self._conversations, conversation_id, user_id)

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> bool:
        conversation = await self._conversations.get(conversation_id)
        if not conversation:
            # deleted concurrently (e.g. post resolved); nothing to reset
            logger.info("Skipping read reset for missing conversation %s", conversation_id)
            return False
        if user_id not in conversation.get("participantIds", []):
            raise NotAuthorized("You are not a participant of this conversation")
        await self._conversations.reset_unread(conversation_id, user_id)
        await self._events.publish([user_id], "conversation.updated", {"conversationId": conversation_id, "unreadCount": 0})
        return True

    async def mark_all_unread_messages_as_read(self, conversation_id: str, user_id: str) -> bool:
        conversation = await self._conversations.get(conversation_id)
        if not conversation:
            logger.info("Skipping read receipts for missing conversation %s", conversation_id)
            return False
        if user_id not in conversation.get("participantIds", []):
            raise NotAuthorized("You are not a participant of this conversation")
        changed = await self._messages.mark_all_read_by(conversation_id, user_id)
        if changed:
            await self._events.publish(
                other_participants(conversation, user_id),
                "messages.read",
                {"conversationId": conversation_id, "readerId": user_id},
            )
        return changed > 0

    async def refresh_post_snapshot(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        conversation = await require_participant(self._conversations, conversation_id, user_id)
        post = await self._posts.get(conversation["postId"])
        if not post:
            raise NotFound(f"Post {conversation['postId']} not found")
        fields = post_snapshot(post, conversation.get("postCreatorId") or "")
        await self._conversations.update_fields(conversation_id, fields)
        conversation.update(fields)
        return conversation

    async def delete_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        """Remove a conversation and its messages at a participant's request.

        Refused once the post is resolved or a request in the thread has been
        confirmed; at that point the resolution owns the cleanup.
        """
        conversation = await require_participant(self._conversations, conversation_id, user_id)
        post = await self._posts.get(conversation["postId"])
        if (post or {}).get("status") == "resolved" or conversation.get("postStatus") == "resolved":
            raise NotAuthorized("Conversations of a resolved post cannot be deleted")

        messages = await self._messages.list_all(conversation_id)
        if any((m.get("requestData") or {}).get("idPhotoConfirmed") for m in messages):
            raise NotAuthorized("Conversations with a confirmed request cannot be deleted")
        photos = [url for m in messages for url in message_photo_urls(m)]

        async with self._conversations.transaction() as session:
            deleted_messages = await self._messages.delete_for_conversation(conversation_id, session=session)
            await self._conversations.delete(conversation_id, session=session)
        logger.info("Deleted conversation %s (%d messages) for %s", conversation_id, deleted_messages, user_id)

        media = await self._media.delete_many(photos) if photos else None
        if media is not None and not media.success:
            logger.warning("Conversation %s left %d photos behind", conversation_id, len(media.failed))

        await self._events.publish(conversation.get("participantIds", []), "conversation.deleted", {"conversationId": conversation_id})
        return {
            "conversation_id": conversation_id,
            "messages_deleted": deleted_messages,
            "photos_deleted": len(media.deleted) if media else 0,
            "photos_failed": len(media.failed) if media else 0,
        }
