from fastapi import APIRouter, Depends

from lostfound_chat.repositories.device_repository import DeviceRepository
from lostfound_chat.repositories.notification_repository import NotificationRepository
from lostfound_chat.schemas.conversation import NotificationPreferences, RegisterDevice
from lostfound_chat.utils.dependencies import get_current_user, get_device_repo, get_notification_repo


router = APIRouter(tags=["push"])


@router.post("/devices/register")
async def register_device(payload: RegisterDevice, current_user: str = Depends(get_current_user), repo: DeviceRepository = Depends(get_device_repo)):
    doc = await repo.register(current_user, payload.platform, payload.token)
    return {"ok": True, "device": {"platform": doc["platform"], "token": doc["token"]}}


@router.get("/notifications/preferences")
async def get_preferences(current_user: str = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)):
    stored = await repo.get_preferences(current_user) or {}
    # unset flags mean "enabled"
    prefs = NotificationPreferences(**{k: v for k, v in stored.items() if k in NotificationPreferences.model_fields})
    return prefs.model_dump()


@router.put("/notifications/preferences")
async def update_preferences(payload: NotificationPreferences, current_user: str = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)):
    await repo.set_preferences(current_user, payload.model_dump())
    return payload.model_dump()
