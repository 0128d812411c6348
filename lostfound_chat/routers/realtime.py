import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from lostfound_chat.services.conversation_service import ConversationService
from lostfound_chat.utils.dependencies import get_conversation_service, get_events
from lostfound_chat.utils.errors import ChatError
from lostfound_chat.utils.realtime_bus import EventPublisher, get_bus, user_channel
from lostfound_chat.utils.websocket_manager import manager


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/{user_id}")
async def realtime_socket(
    websocket: WebSocket,
    user_id: str,
    service: ConversationService = Depends(get_conversation_service),
    events: EventPublisher = Depends(get_events),
):
    await manager.connect(user_id, websocket)
    bus = await get_bus()
    subscriber = None
    sub_task = None
    if getattr(bus, "enabled", False):
        # events for this user published by any worker
        subscriber = await bus.subscribe(user_channel(user_id), websocket.send_text)
        sub_task = asyncio.create_task(subscriber.run())

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except ValueError:
                await websocket.send_text(json.dumps({"type": "error", "detail": "Invalid JSON"}))
                continue

            kind = msg.get("type")
            if kind == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
            elif kind in ("typing_start", "typing_stop"):
                conversation_id = msg.get("conversationId")
                try:
                    conversation = await service.get_conversation(conversation_id, user_id)
                except ChatError as exc:
                    await websocket.send_text(json.dumps({"type": "error", "detail": exc.message}))
                    continue
                others = [uid for uid in conversation["participantIds"] if uid != user_id]
                await events.publish(others, kind, {"conversationId": conversation_id, "userId": user_id})
            elif kind == "read":
                conversation_id = msg.get("conversationId")
                try:
                    if await service.mark_conversation_read(conversation_id, user_id):
                        await service.mark_all_unread_messages_as_read(conversation_id, user_id)
                except ChatError as exc:
                    await websocket.send_text(json.dumps({"type": "error", "detail": exc.message}))
            else:
                await websocket.send_text(json.dumps({"type": "error", "detail": f"Unknown event type: {kind}"}))
    except WebSocketDisconnect:
        logger.debug("Socket for %s closed", user_id)
    finally:
        manager.disconnect(user_id, websocket)
        if subscriber is not None:
            await subscriber.cancel()
        if sub_task is not None:
            sub_task.cancel()
