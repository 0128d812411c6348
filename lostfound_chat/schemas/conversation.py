from typing import Literal, Optional

from pydantic import BaseModel, Field


class ParticipantProfile(BaseModel):

    name: str = Field(min_length=1)
    photo: Optional[str] = None


class OpenConversation(BaseModel):

    post_id: str
    reporter_id: str
    requester_profile: ParticipantProfile
    reporter_profile: ParticipantProfile
    opening_text: Optional[str] = None


class SendMessage(BaseModel):

    text: str
    sender_name: str
    sender_profile_picture: Optional[str] = None


class RespondToRequest(BaseModel):

    status: Literal["accepted", "rejected"]
    owner_photo_url: Optional[str] = None


class NotificationPreferences(BaseModel):

    messages: bool = True
    claimUpdates: bool = True
    claimResponses: bool = True
    handoverResponses: bool = True


class RegisterDevice(BaseModel):

    platform: Literal["fcm", "webpush"]
    token: str = Field(min_length=1)
