"""
Hey Buddy API
Fallback chat + TTS proxy over HTTP, and the /ws live audio bridge to Gemini
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, UploadFile, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from backend.buddy.chat import ChatService
from backend.buddy.config import Settings, load_settings
from backend.buddy.errors import BackendError, log_event
from backend.buddy.gemini_live import GeminiLiveConnector
from backend.buddy.history import ConversationStore
from backend.buddy.live import LiveConnector
from backend.buddy.session import registry
from backend.buddy.tts import TTSEngine, TTSError, build_tts
from backend.buddy.websocket import handle as buddy_ws_handle


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    text: str = ""


class TTSRequest(BaseModel):
    text: str = ""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Refuse to start without an API key; close sessions and TTS on the way out"""
    settings: Settings = app.state.settings
    settings.require_api_key()
    key = settings.gemini_api_key
    logger.info(f"Starting Hey Buddy API (key {key[:8]}..., chat model {settings.chat_model}, live model {settings.live_model})")

    yield

    logger.info("Shutting down Hey Buddy API")
    await registry.broadcast_shutdown()
    tts: Optional[TTSEngine] = app.state.tts
    if tts is not None:
        try:
            await tts.aclose()
        except Exception as e:
            logger.warning(f"Failed releasing TTS resources: {e}")
    logger.info("Shutdown cleanup completed")


def create_app(settings: Optional[Settings] = None, chat: Optional[ChatService] = None,
               connector: Optional[LiveConnector] = None, tts: Optional[TTSEngine] = None,
               store: Optional[ConversationStore] = None) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(
        title="Hey Buddy API",
        description="English coaching companion: Gemini chat, live audio and TTS proxy",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.chat = chat or ChatService(settings)
    app.state.connector = connector or GeminiLiveConnector(settings)
    app.state.tts = tts if tts is not None else build_tts(settings)
    app.state.store = store or ConversationStore(settings.history_path)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"message": "Hey Buddy API"}

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "active_sessions": len(registry)}

    @app.get("/api/config")
    async def get_config():
        return {"config": settings.as_dict()}

    @app.post("/chat")
    async def chat_route(req: ChatRequest):
        text = req.text.strip()
        if not text:
            return JSONResponse(status_code=400, content={"error": "Text is required"})
        try:
            reply = await app.state.chat.reply(text)
        except BackendError as e:
            return JSONResponse(status_code=500, content={"error": e.user_message})
        log_event("chat_reply", chars=len(reply))
        return {"reply": reply}

    @app.post("/voice")
    async def voice_route(audio: UploadFile = File(...)):
        data = await audio.read()
        if not data:
            return JSONResponse(status_code=400, content={"error": "Empty file"})
        try:
            reply = await app.state.chat.reply_audio(data, audio.content_type or "audio/webm")
        except BackendError as e:
            return JSONResponse(status_code=500, content={"error": e.user_message})
        return {"reply": reply}

    @app.post("/tts")
    async def tts_route(req: TTSRequest):
        engine: Optional[TTSEngine] = app.state.tts
        if engine is None or not engine.available:
            return JSONResponse(status_code=503, content={"error": "TTS unavailable"})
        if not req.text.strip():
            return JSONResponse(status_code=400, content={"error": "Text is required"})
        try:
            audio = await engine.synthesize(req.text)
        except TTSError as e:
            return PlainTextResponse(e.user_message, status_code=500)
        return Response(content=audio, media_type=engine.media_type)

    @app.get("/history")
    async def list_history():
        return {"chats": [c.model_dump() for c in app.state.store.list()]}

    @app.get("/history/{chat_id}")
    async def get_history(chat_id: str):
        saved = app.state.store.get(chat_id)
        if saved is None:
            return JSONResponse(status_code=404, content={"error": "Not found"})
        return saved.model_dump()

    @app.delete("/history/{chat_id}")
    async def delete_history(chat_id: str):
        return {"deleted": app.state.store.delete(chat_id)}

    @app.websocket("/ws")
    async def ws_primary(ws: WebSocket):
        await buddy_ws_handle(ws, settings, app.state.store, app.state.chat, app.state.connector)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
