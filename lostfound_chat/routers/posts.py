from fastapi import APIRouter, Depends, File, UploadFile

from lostfound_chat.services.resolution_service import ResolutionService
from lostfound_chat.utils.dependencies import get_current_user, get_media, get_resolution_service
from lostfound_chat.utils.errors import InvalidArgument


router = APIRouter(tags=["posts"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@router.post("/posts/{post_id}/resolution/resume")
async def resume_resolution(post_id: str, current_user: str = Depends(get_current_user), service: ResolutionService = Depends(get_resolution_service)):
    outcome = await service.resume(post_id)
    return outcome.summary()


@router.post("/media", status_code=201)
async def upload_media(file: UploadFile = File(...), current_user: str = Depends(get_current_user), media = Depends(get_media)):
    if file.content_type and not file.content_type.startswith("image/"):
        raise InvalidArgument("Only image uploads are accepted")
    data = await file.read()
    if not data:
        raise InvalidArgument("Uploaded file is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise InvalidArgument("Uploaded file is too large")
    url = await media.upload(data)
    return {"url": url}
