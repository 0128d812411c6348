import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from pyfcm import FCMNotification


logger = logging.getLogger(__name__)

# notification type -> preference flag that can switch it off
CATEGORY_PREFERENCES = {
    "message": "messages",
    "claim_request": "claimUpdates",
    "claim_response": "claimResponses",
    "handover_response": "handoverResponses",
}


@dataclass
class NotificationPayload:

    type: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchResult:

    delivered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


class NoopPush:

    enabled = False

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: dict | None = None) -> None:
        return


class FcmPush:

    enabled = True

    def __init__(self, service_account_file: str, project_id: str) -> None:
        self._client = FCMNotification(service_account_file=service_account_file, project_id=project_id)

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: dict | None = None) -> None:
        # FCM data payloads only carry string values
        payload = {k: str(v) for k, v in (data or {}).items() if v is not None}
        for token in tokens:
            await asyncio.to_thread(
                self._client.notify,
                fcm_token=token,
                notification_title=title,
                notification_body=body,
                data_payload=payload,
            )


_push = None


async def get_push():
    global _push
    if _push is not None:
        return _push
    service_account_file = os.getenv("FCM_SERVICE_ACCOUNT_FILE")
    project_id = os.getenv("FCM_PROJECT_ID")
    if not service_account_file or not project_id:
        _push = NoopPush()
        return _push
    _push = FcmPush(service_account_file, project_id)
    return _push


class NotificationDispatcher:
    """Stores in-app notifications and pushes them to registered devices.

    Delivery is best-effort: every failure is captured in the returned
    DispatchResult and logged, never raised.
    """

    def __init__(self, notification_repo, device_repo, push=None) -> None:
        self._notifications = notification_repo
        self._devices = device_repo
        self._push = push or NoopPush()

    async def should_notify(self, user_id: str, category: str) -> bool:
        flag = CATEGORY_PREFERENCES.get(category)
        if flag is None:
            return True
        prefs = await self._notifications.get_preferences(user_id)
        if not prefs:
            return True
        return bool(prefs.get(flag, True))

    async def notify(self, user_ids: Iterable[str], payload: NotificationPayload) -> DispatchResult:
        result = DispatchResult()
        recipients: List[str] = []
        for user_id in dict.fromkeys(user_ids):
            try:
                if await self.should_notify(user_id, payload.type):
                    recipients.append(user_id)
                else:
                    result.skipped.append(user_id)
            except Exception as exc:
                logger.warning("Preference lookup failed for %s: %s", user_id, exc)
                result.failed[user_id] = str(exc)
        if not recipients:
            return result

        now = datetime.now(timezone.utc)
        docs = [
            {
                "userId": user_id,
                "type": payload.type,
                "title": payload.title,
                "body": payload.body,
                "data": dict(payload.data),
                "read": False,
                "createdAt": now,
            }
            for user_id in recipients
        ]
        try:
            await self._notifications.insert_many(docs)
        except Exception as exc:
            logger.warning("Failed to store %s notifications: %s", payload.type, exc)
            for user_id in recipients:
                result.failed[user_id] = str(exc)
            return result

        for user_id in recipients:
            if getattr(self._push, "enabled", False):
                try:
                    tokens = await self._devices.get_tokens(user_id, platform="fcm")
                    await self._push.send_fcm([t["token"] for t in tokens], payload.title, payload.body, payload.data)
                except Exception as exc:
                    logger.warning("Push to %s failed: %s", user_id, exc)
                    result.failed[user_id] = str(exc)
                    continue
            result.delivered.append(user_id)
        return result
