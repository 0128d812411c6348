from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, ValidationError, field_validator

from lostfound_chat.utils.errors import InvalidArgument


MAX_REQUEST_PHOTOS = 3

_http_url = TypeAdapter(HttpUrl)


def _check_url(value: str) -> str:
    # validate only; the stored value keeps the uploader's exact spelling
    try:
        _http_url.validate_python(value)
    except ValidationError as exc:
        raise ValueError("not a valid http(s) URL") from exc
    return value


class RequestPhotoIn(BaseModel):

    url: str
    description: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _url_is_http(cls, value: str) -> str:
        return _check_url(value)


class _RequestIn(BaseModel):

    reason: str
    id_photo_url: str
    photos: List[RequestPhotoIn] = Field(default_factory=list, max_length=MAX_REQUEST_PHOTOS)

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("reason cannot be empty")
        return value

    @field_validator("id_photo_url")
    @classmethod
    def _id_photo_is_http(cls, value: str) -> str:
        return _check_url(value)


class HandoverRequestIn(_RequestIn):

    kind: Literal["handover"]


class ClaimRequestIn(_RequestIn):

    kind: Literal["claim"]


RequestIn = Annotated[Union[HandoverRequestIn, ClaimRequestIn], Field(discriminator="kind")]

_request_adapter: TypeAdapter[RequestIn] = TypeAdapter(RequestIn)


def parse_request(payload: Any) -> Union[HandoverRequestIn, ClaimRequestIn]:
    """Validate a raw request payload, raising InvalidArgument on any problem."""
    if isinstance(payload, (HandoverRequestIn, ClaimRequestIn)):
        return payload
    try:
        return _request_adapter.validate_python(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "request"
        raise InvalidArgument(f"Invalid request payload ({where}): {first.get('msg')}") from exc


def check_photo_url(value: Optional[str], field: str) -> str:
    if not value:
        raise InvalidArgument(f"{field} is required")
    try:
        return _check_url(value)
    except ValueError as exc:
        raise InvalidArgument(f"{field} is not a valid URL") from exc
