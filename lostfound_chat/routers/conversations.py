from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from lostfound_chat.schemas.conversation import OpenConversation, RespondToRequest, SendMessage
from lostfound_chat.services.conversation_service import ConversationService
from lostfound_chat.services.message_service import MessageService
from lostfound_chat.services.request_service import RequestService
from lostfound_chat.utils.dependencies import (
    get_conversation_service,
    get_current_user,
    get_message_service,
    get_request_service,
)
from lostfound_chat.utils.errors import InvalidArgument


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("", status_code=201)
async def open_conversation(payload: OpenConversation, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    conversation_id, created = await service.create_or_reuse_conversation(
        payload.post_id,
        payload.reporter_id,
        current_user,
        payload.requester_profile.model_dump(),
        payload.reporter_profile.model_dump(),
        payload.opening_text,
    )
    return {"conversation_id": conversation_id, "created": created}


@router.get("")
async def list_conversations(limit: int = Query(50, ge=1, le=100), current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    items = await service.list_conversations(current_user, limit=limit)
    return {"items": items}


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.get_conversation(conversation_id, current_user)


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.delete_conversation(conversation_id, current_user)


@router.post("/{conversation_id}/read")
async def mark_conversation_read(conversation_id: str, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    reset = await service.mark_conversation_read(conversation_id, current_user)
    marked = await service.mark_all_unread_messages_as_read(conversation_id, current_user) if reset else False
    return {"ok": reset, "messages_marked": marked}


@router.post("/{conversation_id}/refresh-post")
async def refresh_post(conversation_id: str, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.refresh_post_snapshot(conversation_id, current_user)


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: int = Query(50, ge=1, le=200), before: Optional[datetime] = None, current_user: str = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    items = await service.list_messages(conversation_id, current_user, limit=limit, before=before)
    return {"items": items}


@router.post("/{conversation_id}/messages", status_code=201)
async def send_message(conversation_id: str, payload: SendMessage, current_user: str = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return await service.send(conversation_id, current_user, payload.sender_name, payload.text, payload.sender_profile_picture)


@router.post("/{conversation_id}/messages/{message_id}/read")
async def mark_message_read(conversation_id: str, message_id: str, current_user: str = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return {"ok": await service.mark_message_read(conversation_id, message_id, current_user)}


@router.delete("/{conversation_id}/messages/{message_id}")
async def delete_message(conversation_id: str, message_id: str, current_user: str = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return await service.delete_message(conversation_id, message_id, current_user)


@router.get("/{conversation_id}/requests")
async def list_open_requests(conversation_id: str, current_user: str = Depends(get_current_user), service: RequestService = Depends(get_request_service)):
    return {"items": await service.pending_for(conversation_id, current_user)}


@router.post("/{conversation_id}/requests", status_code=201)
async def send_request(conversation_id: str, payload: Dict[str, Any] = Body(...), current_user: str = Depends(get_current_user), service: RequestService = Depends(get_request_service)):
    sender_name = payload.pop("sender_name", None)
    if not sender_name:
        raise InvalidArgument("sender_name is required")
    picture = payload.pop("sender_profile_picture", None)
    return await service.send_request(conversation_id, current_user, sender_name, payload, picture)


@router.post("/{conversation_id}/requests/{message_id}/respond")
async def respond_to_request(conversation_id: str, message_id: str, payload: RespondToRequest, current_user: str = Depends(get_current_user), service: RequestService = Depends(get_request_service)):
    return await service.respond(conversation_id, message_id, current_user, payload.status, payload.owner_photo_url)


@router.post("/{conversation_id}/requests/{message_id}/confirm")
async def confirm_request(conversation_id: str, message_id: str, current_user: str = Depends(get_current_user), service: RequestService = Depends(get_request_service)):
    outcome = await service.confirm(conversation_id, message_id, current_user)
    return outcome.summary()
