"""WebSocket bridge between the browser and the live session manager"""
from __future__ import annotations
import asyncio
import json
import logging
import uuid
from typing import Any, Dict

from fastapi import WebSocket, WebSocketDisconnect

from .chat import ChatService
from .client_audio import ClientAudioDevices, Outbox
from .clip import ClipRecorder
from .config import SessionState, Settings
from .errors import PROTOCOL_VIOLATION, BuddyError, emit_error, log_event
from .history import ConversationStore
from .live import LiveConnector, LiveSessionManager
from .session import ClientSession, registry
from .transcript import Conversation, Role, Turn

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1


def history_frame(store: ConversationStore) -> Dict[str, Any]:
    return {"type": "history", "chats": [c.model_dump() for c in store.list()]}


def build_session(sid: str, settings: Settings, store: ConversationStore, chat: ChatService,
                  connector: LiveConnector) -> ClientSession:
    outbox = Outbox()
    devices = ClientAudioDevices(outbox)
    conversation = Conversation(store=store)
    manager = LiveSessionManager(settings, connector, devices, conversation=conversation, emit=outbox.put)
    clip = ClipRecorder(devices, chat, conversation, outbox.put,
                        seconds=settings.clip_seconds, sample_rate=settings.capture_sample_rate)
    return ClientSession(id=sid, outbox=outbox, devices=devices, conversation=conversation,
                         manager=manager, clip=clip)


async def text_turn(session: ClientSession, chat: ChatService, text: str) -> None:
    async def send(m):
        session.outbox.put(m)
    user_turn = Turn(Role.USER, text)
    session.conversation.append(user_turn)
    session.outbox.put({"type": "turn", **user_turn.as_dict()})
    try:
        raw = await chat.reply(text)
    except BuddyError as e:
        await emit_error(send, e.code, e.user_message)
        return
    turn = session.conversation.apply_model_reply(raw)
    session.outbox.put({"type": "turn", **turn.as_dict()})
    session.outbox.put({"type": "stats", **session.conversation.stats.as_dict()})


async def dispatch(session: ClientSession, msg: Dict[str, Any], settings: Settings,
                   store: ConversationStore, chat: ChatService) -> None:
    async def send(m):
        session.outbox.put(m)

    mtype = msg.get("type")
    manager = session.manager
    if mtype == "connect":
        if manager.state is SessionState.IDLE and session.clip.busy:
            await emit_error(send, PROTOCOL_VIOLATION, "Busy; wait for the recording to finish")
            return
        session.spawn(manager.toggle())
    elif mtype == "disconnect":
        session.spawn(manager.disconnect())
    elif mtype == "mic":
        granted = bool(msg.get("granted"))
        try:
            rate = int(msg.get("sample_rate") or settings.capture_sample_rate)
        except (TypeError, ValueError):
            rate = 0
        if granted and rate <= 0:
            await emit_error(send, PROTOCOL_VIOLATION, "Invalid sample_rate")
            return
        if not session.devices.answer(granted, rate, msg.get("reason")):
            await emit_error(send, PROTOCOL_VIOLATION, "No microphone request pending")
    elif mtype == "text":
        text = (msg.get("text") or "").strip()
        if text:
            session.spawn(text_turn(session, chat, text))
    elif mtype == "record":
        if manager.state is not SessionState.IDLE or session.clip.busy:
            await emit_error(send, PROTOCOL_VIOLATION, "Busy; disconnect the live session first")
        else:
            session.spawn(session.clip.run())
    elif mtype == "new_chat":
        session.conversation.reset()
        session.outbox.put({"type": "conversation", **session.conversation.snapshot()})
    elif mtype == "load_chat":
        chat_id = str(msg.get("id") or "")
        saved = store.get(chat_id)
        if saved is None:
            await emit_error(send, PROTOCOL_VIOLATION, f"Unknown chat {chat_id}")
            return
        try:
            session.conversation.load(saved)
        except ValueError as e:
            logger.warning(f"Saved chat {chat_id} is malformed: {e}")
            await emit_error(send, PROTOCOL_VIOLATION, f"Chat {chat_id} could not be loaded")
            return
        session.outbox.put({"type": "conversation", **session.conversation.snapshot()})
    elif mtype == "delete_chat":
        chat_id = str(msg.get("id") or "")
        store.delete(chat_id)
        if session.conversation.id == chat_id:
            session.conversation.reset()
            session.outbox.put({"type": "conversation", **session.conversation.snapshot()})
        session.outbox.put(history_frame(store))
    elif mtype == "history":
        session.outbox.put(history_frame(store))
    else:
        await emit_error(send, PROTOCOL_VIOLATION, "Unknown type")


async def handle(ws: WebSocket, settings: Settings, store: ConversationStore, chat: ChatService,
                 connector: LiveConnector):
    await ws.accept()
    sid = str(uuid.uuid4())
    session = build_session(sid, settings, store, chat, connector)
    writer = asyncio.create_task(session.outbox.drain(ws.send_json))
    registry.add(session)

    async def send(m):
        session.outbox.put(m)

    session.outbox.put({"type": "protocol", "version": PROTOCOL_VERSION})
    session.outbox.put({"type": "info", "message": "Session created", "session_id": sid,
                        "config": settings.as_dict()})
    session.outbox.put(history_frame(store))
    log_event("client_open", session_id=sid)
    try:
        while True:
            data = await ws.receive()
            if data.get("type") == "websocket.disconnect":
                break
            if data.get("bytes") is not None:
                chunk = data["bytes"]
                if len(chunk) > settings.max_frame_bytes:
                    await emit_error(send, PROTOCOL_VIOLATION, "Frame too large")
                    log_event("protocol_error", reason="frame_too_large", size=len(chunk), session_id=sid)
                    continue
                session.devices.feed(chunk)
            elif data.get("text") is not None:
                try:
                    msg = json.loads(data["text"])
                except json.JSONDecodeError:
                    await emit_error(send, PROTOCOL_VIOLATION, "Invalid JSON")
                    log_event("protocol_error", reason="invalid_json", session_id=sid)
                    continue
                if not isinstance(msg, dict):
                    await emit_error(send, PROTOCOL_VIOLATION, "Expected an object")
                    continue
                await dispatch(session, msg, settings, store, chat)
    except WebSocketDisconnect:
        pass
    finally:
        registry.remove(sid)
        await session.close()
        writer.cancel()
        log_event("client_close", session_id=sid)
