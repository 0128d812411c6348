from datetime import datetime
from typing import Any, Dict, Literal, TypedDict


NotificationType = Literal["message", "claim_request", "claim_response", "handover_response"]


class NotificationDocument(TypedDict, total=False):
    _id: str
    userId: str
    type: NotificationType
    title: str
    body: str
    data: Dict[str, Any]
    read: bool
    createdAt: datetime


class NotificationPreferencesDocument(TypedDict, total=False):
    # keyed by user id
    _id: str
    messages: bool
    claimUpdates: bool
    claimResponses: bool
    handoverResponses: bool
