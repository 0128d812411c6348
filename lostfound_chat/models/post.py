from datetime import datetime
from typing import List, Literal, Optional, TypedDict

from lostfound_chat.models.message import RequestKind, RequestPhoto


PostStatus = Literal["pending", "resolved", "unclaimed"]
FoundAction = Literal["keep", "turnover to OSA", "turnover to Campus Security"]

FOUND_ACTIONS = ("keep", "turnover to OSA", "turnover to Campus Security")


class ResolutionDetails(TypedDict, total=False):
    kind: RequestKind
    requesterId: str
    requesterName: str
    requesterProfilePicture: Optional[str]
    confirmerId: str
    confirmerName: str
    reason: str
    requestText: str
    idPhotoUrl: Optional[str]
    ownerIdPhoto: Optional[str]
    photos: List[RequestPhoto]
    preservedPhotos: List[str]
    conversationId: str
    messageId: str
    requestedAt: Optional[datetime]
    confirmedAt: datetime


class PostDocument(TypedDict, total=False):
    _id: str
    title: str
    type: Literal["lost", "found"]
    status: PostStatus
    creatorId: str
    foundAction: Optional[FoundAction]
    resolutionDetails: ResolutionDetails
    updatedAt: datetime
