import logging
import logging.handlers
import contextvars
from pathlib import Path
from typing import Dict, List, Optional

from core.config import settings
from core.security import ACCESS_COOKIE, peek_subject
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

LOG_FORMAT = "%(levelname)s - %(asctime)s - %(user_id)s - %(api)s - %(name)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers whose records are also kept in auth.log
AUTH_LOGGERS = ("services.session_service", "api.dependencies", "core.security")
TIMING_LOGGER = "mediahub.timing"
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "fastapi")

user_id_var = contextvars.ContextVar("user_id", default="-")
api_var = contextvars.ContextVar("api", default="-")


def map_log_level(level_name: str) -> int:
    level = logging.getLevelName((level_name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = user_id_var.get()
        record.api = api_var.get()
        return True


def _daily_file(log_dir: Path, filename: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir / filename),
        when="midnight",
        interval=1,
        backupCount=max(int(settings.LOG_TTL_DAYS), 0),
        encoding="utf-8",
        utc=True,
        delay=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def _build_handlers(level: int, log_dir: Path) -> Dict[str, logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    console.addFilter(ContextFilter())

    handlers = {
        name: _daily_file(log_dir, f"{name}.log", level, formatter)
        for name in ("app", "access", "auth", "timing")
    }
    handlers["error"] = _daily_file(log_dir, "error.log", logging.WARNING, formatter)
    handlers["console"] = console
    return handlers


def _attach(name: Optional[str], handlers: List[logging.Handler], level: int, propagate: bool = False) -> logging.Logger:
    target = logging.getLogger(name)
    for h in list(target.handlers):
        target.removeHandler(h)
    for h in handlers:
        target.addHandler(h)
    target.setLevel(level)
    if name:
        target.propagate = propagate
    return target


def configure_logging(app_logger_name: Optional[str] = None) -> logging.Logger:
    """Set up console and daily-rotated file logging.

    Files live under LOG_DIR and keep LOG_TTL_DAYS days of history:
    app.log for everything, error.log for warnings and up, access.log for
    uvicorn access lines, auth.log for session and token activity and
    timing.log for service timings.
    """
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = map_log_level(settings.LOG_LEVEL)
    handlers = _build_handlers(level, log_dir)
    app_handlers = [handlers["app"], handlers["error"], handlers["console"]]

    _attach(None, app_handlers, level)
    app_logger = _attach(app_logger_name or "mediahub", app_handlers, level)

    # Propagating loggers reach app.log through the root logger
    for name in AUTH_LOGGERS:
        _attach(name, [handlers["auth"]], level, propagate=True)
    _attach(TIMING_LOGGER, [handlers["timing"]], level)

    for name in SERVER_LOGGERS:
        _attach(name, app_handlers, level)
    _attach("uvicorn.access", [handlers["access"], handlers["console"]], level)

    return app_logger


def _request_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return request.cookies.get(ACCESS_COOKIE)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag log records with the caller's user id and the API path"""

    async def dispatch(self, request: Request, call_next):
        user_token = user_id_var.set(peek_subject(_request_token(request)) or "-")
        api_token = api_var.set(f"{request.method} {request.url.path}")
        try:
            return await call_next(request)
        finally:
            user_id_var.reset(user_token)
            api_var.reset(api_token)
