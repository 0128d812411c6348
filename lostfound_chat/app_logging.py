"""Application and access logging setup.

Application loggers live under the ``lostfound_chat`` namespace and write to
``app.log``; the access middleware writes one JSON line per request to
``access.log``. Both files rotate at midnight.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_RETENTION_DAYS,
LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from uuid import uuid4

from fastapi import FastAPI, Request


class JsonFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie"}


def _scrub(headers: dict) -> dict:
    return {k: ("***" if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}


def _install_access_logging(app: FastAPI) -> None:
    """Log every request except the health probe, echoing an X-Request-Id."""

    skip_paths = {"/"}
    access_logger = logging.getLogger("uvicorn.access")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in skip_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        start = time.time()

        response = await call_next(request)

        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and request.client is not None:
            client_ip = request.client.host
        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "client_ip": client_ip,
            "user_id": request.headers.get("X-User-Id"),
            "headers": _scrub(dict(request.headers)),
        }
        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(log_data, default=str))
        return response


def _rotating_handler(path: str, retention_days: int, rotate_utc: bool, formatter: logging.Formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=retention_days, utc=rotate_utc)
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    log_dir = os.getenv("LOG_DIR", "logs")
    log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    log_json = os.getenv("LOG_JSON", "false").lower() == "true"
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)
    formatter = _get_formatter(log_json)

    app_logger = logging.getLogger("lostfound_chat")
    if not app_logger.handlers:
        app_logger.addHandler(_rotating_handler(os.path.join(log_dir, "app.log"), retention_days, rotate_utc, formatter))
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        app_logger.addHandler(console)
    app_logger.setLevel(log_level)

    access_logger = logging.getLogger("uvicorn.access")
    access_logger.handlers.clear()
    access_logger.addHandler(_rotating_handler(os.path.join(log_dir, "access.log"), retention_days, rotate_utc, formatter))
    access_logger.setLevel(log_level)

    if app is not None:
        _install_access_logging(app)
