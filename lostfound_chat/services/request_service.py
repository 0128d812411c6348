import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from lostfound_chat.models.message import PROTECTED_MESSAGE_TYPES
from lostfound_chat.schemas.request import check_photo_url, parse_request
from lostfound_chat.services.helpers import (
    message_photo_urls,
    new_message_doc,
    participant_name,
    require_participant,
)
from lostfound_chat.services.resolution_service import ResolutionOutcome
from lostfound_chat.utils.errors import AlreadyProcessed, InvalidArgument, NotAuthorized, NotFound
from lostfound_chat.utils.notifications import NotificationPayload


logger = logging.getLogger(__name__)

RESPONSES = ("accepted", "rejected")


class RequestService:
    """Handover and claim requests carried as conversation messages.

    A request moves pending -> pending_confirmation -> confirmed, or to
    rejected from either of the first two states. Each transition is a
    conditional write on the current status, so of two concurrent
    responders exactly one wins and the other gets AlreadyProcessed.
    """

    def __init__(self, message_service, message_repo, conversation_repo, media_store, dispatcher, events, resolution) -> None:
        self._exchange = message_service
        self._messages = message_repo
        self._conversations = conversation_repo
        self._media = media_store
        self._dispatcher = dispatcher
        self._events = events
        self._resolution = resolution

    async def send_request(
        self,
        conversation_id: str,
        sender_id: str,
        sender_name: str,
        payload: Any,
        sender_profile_picture: Optional[str] = None,
    ) -> Dict[str, Any]:
        request = parse_request(payload)
        conversation = await require_participant(self._conversations, conversation_id, sender_id)
        if sender_id == conversation.get("postCreatorId"):
            raise NotAuthorized("You cannot send a request on your own post")

        kind = request.kind
        self._check_allowed(conversation, kind)
        now = datetime.now(timezone.utc)
        request_data = {
            "kind": kind,
            "postId": conversation["postId"],
            "postTitle": conversation.get("postTitle"),
            "reason": request.reason,
            "idPhotoUrl": request.id_photo_url,
            "photos": [{"url": p.url, "description": p.description, "uploadedAt": now} for p in request.photos],
            "status": "pending",
            "requestedAt": now,
        }
        text = f"{kind.capitalize()} Request: {request.reason}"
        doc = new_message_doc(
            conversation_id,
            sender_id,
            sender_name,
            text,
            sender_profile_picture,
            message_type=f"{kind}_request",
            request_data=request_data,
        )
        extra = {
            f"has{kind.capitalize()}Request": True,
            f"{kind}RequestId": doc["_id"],
            f"{kind}RequestStatus": "pending",
        }
        preview = f"New claim request from {sender_name}" if kind == "claim" else text

        notification = None
        if kind == "claim":
            notification = NotificationPayload(
                type="claim_request",
                title="New Claim Request",
                body=f"{sender_name} wants to claim your {conversation.get('postType', 'found')} item: {conversation.get('postTitle')}",
                data={"conversationId": conversation_id, "messageId": doc["_id"], "postId": conversation["postId"], "claimantId": sender_id},
            )
        saved = await self._exchange.append(conversation, doc, preview=preview[:200], extra=extra, notification=notification)
        logger.info("%s request %s sent in %s by %s", kind, doc["_id"], conversation_id, sender_id)
        return saved

    @staticmethod
    def _check_allowed(conversation: Dict[str, Any], kind: str) -> None:
        if kind == "handover" and conversation.get("postType") != "lost":
            raise InvalidArgument("Handover requests are only allowed for lost items")
        if kind == "claim":
            if conversation.get("postType") != "found":
                raise InvalidArgument("Claim requests are only allowed for found items")
            if conversation.get("foundAction") != "keep":
                raise InvalidArgument("Claim requests are only allowed for found items that are being kept")
        # a rejected request may be retried
        if conversation.get(f"has{kind.capitalize()}Request") and conversation.get(f"{kind}RequestStatus") != "rejected":
            raise AlreadyProcessed(f"A {kind} request already exists in this conversation")

    async def _load_request(self, conversation_id: str, message_id: str, user_id: str):
        conversation = await require_participant(self._conversations, conversation_id, user_id)
        message = await self._messages.get(conversation_id, message_id)
        if not message:
            raise NotFound(f"Message {message_id} not found")
        if message.get("messageType") not in PROTECTED_MESSAGE_TYPES or not message.get("requestData"):
            raise InvalidArgument("Message is not a handover or claim request")
        if message.get("senderId") == user_id:
            raise NotAuthorized("You cannot act on your own request")
        if user_id != conversation.get("postCreatorId"):
            raise NotAuthorized("Only the post owner can answer this request")
        return conversation, message

    async def respond(
        self,
        conversation_id: str,
        message_id: str,
        responder_id: str,
        status: str,
        owner_photo_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        if status not in RESPONSES:
            raise InvalidArgument(f"Invalid response status: {status}")
        conversation, message = await self._load_request(conversation_id, message_id, responder_id)
        kind = message["requestData"]["kind"]
        now = datetime.now(timezone.utc)

        if status == "accepted":
            owner_photo = check_photo_url(owner_photo_url, "owner_photo_url")
            updated = await self._messages.transition_request(
                conversation_id,
                message_id,
                ["pending"],
                {
                    "requestData.status": "pending_confirmation",
                    "requestData.ownerIdPhoto": owner_photo,
                    "requestData.respondedAt": now,
                    "requestData.responderId": responder_id,
                },
            )
            if updated is None:
                raise AlreadyProcessed("This request has already been processed")
            new_status = "pending_confirmation"
        else:
            updated = await self._messages.transition_request(
                conversation_id,
                message_id,
                ["pending", "pending_confirmation"],
                {
                    "requestData.status": "rejected",
                    "requestData.respondedAt": now,
                    "requestData.responderId": responder_id,
                },
            )
            if updated is None:
                raise AlreadyProcessed("This request has already been processed")
            updated = await self._discard_photos(conversation_id, updated)
            new_status = "rejected"

        await self._conversations.update_fields(conversation_id, {f"{kind}RequestStatus": new_status})
        await self._events.publish(
            conversation.get("participantIds", []),
            "request.updated",
            {"conversationId": conversation_id, "messageId": message_id, "status": new_status},
        )

        responder_name = participant_name(conversation, responder_id)
        result = await self._dispatcher.notify(
            [message["senderId"]],
            NotificationPayload(
                type=f"{kind}_response",
                title=f"{kind.capitalize()} Request {status.capitalize()}",
                body=f"{responder_name} {status} your {kind} request for \"{conversation.get('postTitle')}\"",
                data={"conversationId": conversation_id, "messageId": message_id, "postId": conversation["postId"], "status": new_status},
            ),
        )
        if not result.success:
            logger.warning("Could not notify %s about %s response: %s", message["senderId"], kind, result.failed)
        return updated

    async def _discard_photos(self, conversation_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
        """Delete a rejected request's photos and clear their URLs on the message."""
        urls = message_photo_urls(message)
        success = True
        if urls:
            media = await self._media.delete_many(urls)
            success = media.success
            if not success:
                logger.warning("Rejected request %s: %d photos could not be deleted", message["_id"], len(media.failed))

        request = message["requestData"]
        fields = {
            "requestData.idPhotoUrl": None,
            "requestData.ownerIdPhoto": None,
            "requestData.photos": [{**photo, "url": None} for photo in request.get("photos") or []],
            "requestData.photosDeleted": True,
            "requestData.cloudinaryDeletionSuccess": success,
        }
        await self._messages.update_fields(conversation_id, message["_id"], fields)
        request.update({key.split(".", 1)[1]: value for key, value in fields.items()})
        return message

    async def confirm(self, conversation_id: str, message_id: str, confirmer_id: str) -> ResolutionOutcome:
        conversation, message = await self._load_request(conversation_id, message_id, confirmer_id)
        request = message["requestData"]
        if request.get("idPhotoConfirmed") or request.get("status") != "pending_confirmation":
            raise AlreadyProcessed("Only a request awaiting confirmation can be confirmed")
        return await self._resolution.resolve(conversation, message, confirmer_id)

    async def pending_for(self, conversation_id: str, user_id: str) -> list:
        """Requests in the conversation still waiting on someone."""
        conversation = await require_participant(self._conversations, conversation_id, user_id)
        messages = await self._messages.list_all(conversation["_id"])
        return [
            m for m in messages
            if m.get("messageType") in PROTECTED_MESSAGE_TYPES
            and (m.get("requestData") or {}).get("status") in ("pending", "pending_confirmation")
        ]
