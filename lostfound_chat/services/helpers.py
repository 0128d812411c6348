from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

from lostfound_chat.utils.errors import NotAuthorized, NotFound


def new_id() -> str:
    return str(ObjectId())


def new_message_doc(
    conversation_id: str,
    sender_id: str,
    sender_name: str,
    text: str,
    sender_profile_picture: Optional[str] = None,
    message_type: str = "text",
    request_data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "_id": new_id(),
        "conversationId": conversation_id,
        "senderId": sender_id,
        "senderName": sender_name,
        "senderProfilePicture": sender_profile_picture,
        "text": text,
        "timestamp": datetime.now(timezone.utc),
        "messageType": message_type,
        "readBy": [sender_id],
    }
    if request_data is not None:
        doc["requestData"] = request_data
    return doc


def request_photo_urls(request_data: Optional[Dict[str, Any]]) -> List[str]:
    """Every photo URL a request references: requester ID, owner ID, item/evidence photos."""
    if not request_data:
        return []
    urls = [request_data.get("idPhotoUrl"), request_data.get("ownerIdPhoto")]
    urls.extend(photo.get("url") for photo in request_data.get("photos") or [])
    return [u for u in dict.fromkeys(urls) if u]


def message_photo_urls(message: Dict[str, Any]) -> List[str]:
    return request_photo_urls(message.get("requestData"))


def other_participants(conversation: Dict[str, Any], user_id: str) -> List[str]:
    return [uid for uid in conversation.get("participantIds", []) if uid != user_id]


def participant_name(conversation: Dict[str, Any], user_id: str, default: str = "Unknown User") -> str:
    info = (conversation.get("participants") or {}).get(user_id) or {}
    return info.get("name") or default


async def require_conversation(conversation_repo, conversation_id: str) -> Dict[str, Any]:
    conversation = await conversation_repo.get(conversation_id)
    if not conversation:
        raise NotFound(f"Conversation {conversation_id} not found")
    return conversation


async def require_participant(conversation_repo, conversation_id: str, user_id: str) -> Dict[str, Any]:
    conversation = await require_conversation(conversation_repo, conversation_id)
    if user_id not in conversation.get("participantIds", []):
        raise NotAuthorized("You are not a participant of this conversation")
    return conversation
