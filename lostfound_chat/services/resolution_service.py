"""Post resolution.

Confirming a handover or claim resolves the whole post: the winning request
is confirmed together with the post inside one transaction, and everything
else about the post (competing conversations, their messages and photos) is
then retired. The retirement steps only read state that the first step
persisted, so they can be re-run for a post via ``resume`` after a crash.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from lostfound_chat.services.helpers import participant_name, request_photo_urls
from lostfound_chat.utils.errors import AlreadyProcessed, InvalidArgument, NotFound
from lostfound_chat.utils.notifications import NotificationPayload


logger = logging.getLogger(__name__)


@dataclass
class ResolutionOutcome:

    post_id: str
    resolution: Dict[str, Any]
    notified: List[str] = field(default_factory=list)
    conversations_deleted: List[str] = field(default_factory=list)
    photos_deleted: List[str] = field(default_factory=list)
    photos_failed: List[str] = field(default_factory=list)

    @property
    def media_cleanup_success(self) -> bool:
        return not self.photos_failed

    def summary(self) -> Dict[str, Any]:
        return {
            "post_id": self.post_id,
            "conversations_deleted": self.conversations_deleted,
            "notified": self.notified,
            "photos_deleted": len(self.photos_deleted),
            "photos_failed": len(self.photos_failed),
        }


def build_resolution_details(
    conversation: Dict[str, Any],
    message: Dict[str, Any],
    confirmer_id: str,
    confirmed_at: datetime,
) -> Dict[str, Any]:
    request = message.get("requestData") or {}
    requester_id = message["senderId"]
    requester = (conversation.get("participants") or {}).get(requester_id) or {}
    return {
        "kind": request.get("kind"),
        "requesterId": requester_id,
        "requesterName": requester.get("name") or message.get("senderName") or "Unknown User",
        "requesterProfilePicture": requester.get("photo") or message.get("senderProfilePicture"),
        "confirmerId": confirmer_id,
        "confirmerName": participant_name(conversation, confirmer_id),
        "reason": request.get("reason"),
        "requestText": message.get("text"),
        "idPhotoUrl": request.get("idPhotoUrl"),
        "ownerIdPhoto": request.get("ownerIdPhoto"),
        "photos": request.get("photos") or [],
        "preservedPhotos": request_photo_urls(request),
        "conversationId": conversation["_id"],
        "messageId": message["_id"],
        "requestedAt": request.get("requestedAt"),
        "confirmedAt": confirmed_at,
    }


class ResolutionService:

    def __init__(self, post_repo, conversation_repo, message_repo, media_store, dispatcher, events) -> None:
        self._posts = post_repo
        self._conversations = conversation_repo
        self._messages = message_repo
        self._media = media_store
        self._dispatcher = dispatcher
        self._events = events

    async def resolve(self, conversation: Dict[str, Any], message: Dict[str, Any], confirmer_id: str) -> ResolutionOutcome:
        post_id = conversation["postId"]
        post = await self._posts.get(post_id)
        if not post:
            raise NotFound(f"Post {post_id} not found")
        if post.get("status") == "resolved":
            raise AlreadyProcessed("This post has already been resolved")

        now = datetime.now(timezone.utc)
        async with self._conversations.transaction() as session:
            confirmed = await self._messages.transition_request(
                conversation["_id"],
                message["_id"],
                ["pending_confirmation"],
                {
                    "requestData.status": "accepted",
                    "requestData.idPhotoConfirmed": True,
                    "requestData.idPhotoConfirmedBy": confirmer_id,
                    "requestData.idPhotoConfirmedAt": now,
                },
                session=session,
            )
            if confirmed is None:
                raise AlreadyProcessed("This request has already been processed")
            details = build_resolution_details(conversation, confirmed, confirmer_id, now)
            if not await self._posts.mark_resolved(post_id, details, session=session):
                raise AlreadyProcessed("This post has already been resolved")

        logger.info("Post %s resolved by %s via %s request %s", post_id, confirmer_id, details["kind"], message["_id"])
        await self._events.publish(
            conversation.get("participantIds", []),
            "post.resolved",
            {"postId": post_id, "conversationId": conversation["_id"], "messageId": message["_id"]},
        )
        return await self._retire(post_id, details)

    async def resume(self, post_id: str) -> ResolutionOutcome:
        """Re-run the retirement of a resolved post; a no-op when nothing is left."""
        post = await self._posts.get(post_id)
        if not post:
            raise NotFound(f"Post {post_id} not found")
        if post.get("status") != "resolved" or not post.get("resolutionDetails"):
            raise InvalidArgument(f"Post {post_id} has not been resolved")
        return await self._retire(post_id, post["resolutionDetails"])

    async def _retire(self, post_id: str, details: Dict[str, Any]) -> ResolutionOutcome:
        outcome = ResolutionOutcome(post_id=post_id, resolution=details)
        conversations = await self._conversations.list_by_post(post_id)

        for conversation in conversations:
            if conversation["_id"] == details.get("conversationId") or conversation.get("retirementNotified"):
                continue
            outcome.notified.extend(await self._notify_losers(conversation, details))

        preserved = set(details.get("preservedPhotos") or [])
        photos: List[str] = []
        for conversation in conversations:
            for message in await self._messages.list_all(conversation["_id"]):
                photos.extend(u for u in request_photo_urls(message.get("requestData")) if u not in preserved)
        photos = list(dict.fromkeys(photos))
        if photos:
            media = await self._media.delete_many(photos)
            outcome.photos_deleted = media.deleted
            outcome.photos_failed = media.failed
            if not media.success:
                logger.warning("Post %s: %d of %d photos could not be deleted", post_id, len(media.failed), len(photos))

        for conversation in conversations:
            async with self._conversations.transaction() as session:
                await self._messages.delete_for_conversation(conversation["_id"], session=session)
                await self._conversations.delete(conversation["_id"], session=session)
            outcome.conversations_deleted.append(conversation["_id"])
            await self._events.publish(
                conversation.get("participantIds", []),
                "conversation.deleted",
                {"conversationId": conversation["_id"], "postId": post_id, "reason": "post_resolved"},
            )

        logger.info(
            "Post %s retired: %d conversations removed, %d users notified, %d photos deleted",
            post_id, len(outcome.conversations_deleted), len(outcome.notified), len(outcome.photos_deleted),
        )
        return outcome

    async def _notify_losers(self, conversation: Dict[str, Any], details: Dict[str, Any]) -> List[str]:
        confirmer_id = details.get("confirmerId")
        recipients = [uid for uid in conversation.get("participantIds", []) if uid != confirmer_id]
        if not recipients:
            return []
        kind = details.get("kind") or "handover"
        title = conversation.get("postTitle") or "this item"
        payload = NotificationPayload(
            type=f"{kind}_response",
            title=f"{kind.capitalize()} Request Rejected",
            body=(
                f"{details.get('confirmerName') or 'Another user'} has already completed the process "
                f"for \"{title}\". Your request cannot be processed."
            ),
            data={
                "postId": conversation.get("postId"),
                "conversationId": conversation["_id"],
                "status": "rejected",
                "reason": "another_request_confirmed",
            },
        )
        result = await self._dispatcher.notify(recipients, payload)
        if not result.success:
            logger.warning("Could not notify %s about resolution of %s", list(result.failed), conversation.get("postId"))
        await self._conversations.update_fields(conversation["_id"], {"retirementNotified": True})
        return result.delivered
