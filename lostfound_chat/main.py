import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lostfound_chat.app_logging import init_logging
from lostfound_chat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from lostfound_chat.repositories.conversation_repository import ConversationRepository
from lostfound_chat.repositories.message_repository import MessageRepository
from lostfound_chat.routers.conversations import router as conversations_router
from lostfound_chat.routers.devices import router as devices_router
from lostfound_chat.routers.posts import router as posts_router
from lostfound_chat.routers.realtime import router as realtime_router
from lostfound_chat.utils.errors import ChatError


logger = logging.getLogger("lostfound_chat")


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    try:
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title="Lost & Found Chat", lifespan=lifespan)
init_logging(app)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": exc.status, "error": type(exc).__name__, "detail": exc.message},
    )


app.include_router(conversations_router)
app.include_router(posts_router)
app.include_router(devices_router)
app.include_router(realtime_router)


@app.get("/")
async def root():

    try:
        db = get_database()
        collections = await db.list_collection_names()
    except Exception as exc:
        logger.warning("Health check could not reach MongoDB: %s", exc)
        return JSONResponse(status_code=503, content={"message": "MongoDB unavailable"})
    return {"message": "Connected to MongoDB!", "collections": collections}
