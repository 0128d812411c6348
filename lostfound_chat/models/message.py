from datetime import datetime
from typing import List, Literal, Optional, TypedDict

from lostfound_chat.models.conversation import RequestStatus


MessageType = Literal["text", "handover_request", "claim_request"]
RequestKind = Literal["handover", "claim"]

PROTECTED_MESSAGE_TYPES = ("handover_request", "claim_request")


class RequestPhoto(TypedDict, total=False):
    url: Optional[str]
    description: Optional[str]
    uploadedAt: datetime


class RequestDataDocument(TypedDict, total=False):
    kind: RequestKind
    postId: str
    postTitle: str
    reason: str
    idPhotoUrl: Optional[str]
    # item photos for handovers, evidence photos for claims
    photos: List[RequestPhoto]
    status: RequestStatus
    requestedAt: datetime
    respondedAt: datetime
    responderId: str
    ownerIdPhoto: Optional[str]
    idPhotoConfirmed: bool
    idPhotoConfirmedBy: str
    idPhotoConfirmedAt: datetime
    photosDeleted: bool
    cloudinaryDeletionSuccess: bool


class MessageDocument(TypedDict, total=False):
    _id: str
    conversationId: str
    senderId: str
    senderName: str
    senderProfilePicture: Optional[str]
    text: str
    timestamp: datetime
    messageType: MessageType
    readBy: List[str]
    requestData: RequestDataDocument
