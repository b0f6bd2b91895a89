"""Error taxonomy & structured logging helpers"""
from __future__ import annotations
import time, json, logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger("heybuddy.live")

PERMISSION_DENIED = "PERMISSION_DENIED"
TRANSPORT_ERROR = "TRANSPORT_ERROR"
DECODE_FAILURE = "DECODE_FAILURE"
PARSE_MISS = "PARSE_MISS"
BACKEND_UNREACHABLE = "BACKEND_UNREACHABLE"
CONFIG = "CONFIG"
PROTOCOL_VIOLATION = "PROTOCOL_VIOLATION"

# Connect-time failures end the attempt; the rest are absorbed by the session.
FATAL_CLOSE = {PERMISSION_DENIED, TRANSPORT_ERROR, CONFIG}
RECOVERABLE = {DECODE_FAILURE, PARSE_MISS, BACKEND_UNREACHABLE, PROTOCOL_VIOLATION}

ALL_CODES = FATAL_CLOSE | RECOVERABLE


class BuddyError(Exception):
    code = "INTERNAL"
    user_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if message:
            self.user_message = message


class PermissionDeniedError(BuddyError):
    code = PERMISSION_DENIED
    user_message = "Mic permission issue."


class TransportError(BuddyError):
    code = TRANSPORT_ERROR
    user_message = "Oops! Connection problem."


class DecodeError(BuddyError):
    code = DECODE_FAILURE
    user_message = "Could not decode audio chunk."


class BackendError(BuddyError):
    code = BACKEND_UNREACHABLE
    user_message = "AI failed"


class ConfigError(BuddyError):
    code = CONFIG
    user_message = "API Key missing!"


def log_event(event: str, **fields: Any) -> None:
    payload = {"ts": time.time(), "event": event, **fields}
    logger.info(json.dumps(payload, ensure_ascii=False, default=str))


def error_frame(code: str, message: str, recoverable: Optional[bool] = None) -> Dict[str, Any]:
    if recoverable is None:
        recoverable = code in RECOVERABLE
    return {"type": "error", "code": code, "message": message, "recoverable": recoverable}


async def emit_error(send_json: Callable[[Dict[str, Any]], Awaitable[None]], code: str, message: str, recoverable: bool | None = None):
    frame = error_frame(code, message, recoverable)
    await send_json(frame)
    log_event("error", code=code, recoverable=frame["recoverable"], message=message)
