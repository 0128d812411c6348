from datetime import datetime
from typing import Dict, List, Literal, Optional, TypedDict


RequestStatus = Literal["pending", "accepted", "rejected", "pending_confirmation"]


class ParticipantInfo(TypedDict, total=False):
    name: str
    photo: Optional[str]
    joinedAt: datetime


class LastMessage(TypedDict):
    text: str
    senderId: str
    timestamp: datetime


class ConversationDocument(TypedDict, total=False):
    _id: str
    postId: str
    # snapshot of the post taken at creation, refreshed on demand
    postTitle: str
    postType: Literal["lost", "found"]
    postStatus: str
    postCreatorId: str
    foundAction: Optional[str]
    participants: Dict[str, ParticipantInfo]
    participantIds: List[str]
    # per-user unread counters (user_id -> count)
    unreadCounts: Dict[str, int]
    lastMessage: Optional[LastMessage]
    hasHandoverRequest: bool
    handoverRequestId: str
    handoverRequestStatus: RequestStatus
    hasClaimRequest: bool
    claimRequestId: str
    claimRequestStatus: RequestStatus
    createdAt: datetime
    updatedAt: datetime


class ConversationKeyDocument(TypedDict):
    # "<postId>:<requesterId>", unique by construction of _id
    _id: str
    conversationId: str
    createdAt: datetime
