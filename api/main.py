"""
FastAPI Application: HTTP surface of the voice relay.

Provides:
- POST /chat-audio/           upload a clip, get transcript + spoken reply
- GET  /download-audio/{file} fetch a synthesized reply
- GET  /health                liveness and in-flight request count
- GET  /api/v1/stats          per-stage latency statistics

Run: voice-relay   (or: uvicorn api.main:create_app --factory)
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import BackgroundTasks, FastAPI, File, Request, UploadFile
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from config.settings import Settings, get_settings
from core.errors import RelayError
from core.orchestrator import VoiceRelayOrchestrator, create_orchestrator
from core.workspace import discard_upload, stage_upload
from models.schemas import ErrorResponse, VoiceReply

logger = structlog.get_logger()

CHAT_AUDIO_PATH = "/chat-audio/"
MISSING_AUDIO = "No audio file uploaded in field 'audio'"


def _processing_failed(details: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Processing failed", details=details).model_dump(),
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[VoiceRelayOrchestrator] = None,
) -> FastAPI:
    """
    Build the application. Raises ConfigError when credentials or the
    persona are missing, so the server never starts half-configured.
    """
    settings = settings or get_settings()
    settings.validate()
    orchestrator = orchestrator or create_orchestrator(settings)

    storage = settings.storage
    for directory in (storage.upload_dir, storage.work_dir, storage.output_dir):
        Path(directory).mkdir(parents=True, exist_ok=True)
    output_dir = Path(storage.output_dir).resolve()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("voice_relay_started",
                    port=settings.server.port,
                    output_dir=str(output_dir))
        yield
        await orchestrator.aclose()
        logger.info("voice_relay_stopped")

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Voice in, voice out: transcription, LLM reply and speech synthesis",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # A non-file "audio" part fails form parsing before chat_audio runs
    @app.exception_handler(RequestValidationError)
    async def validation_failed(request: Request, exc: RequestValidationError):
        if request.url.path != CHAT_AUDIO_PATH:
            return await request_validation_exception_handler(request, exc)
        logger.error("chat_audio_failed", upload=None, error=str(exc.errors()))
        return _processing_failed(MISSING_AUDIO)

    # ══════════════════════════════════════════════════════════
    #  HEALTH & DIAGNOSTICS
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "active_requests": orchestrator.latency.active_requests,
        }

    @app.get("/api/v1/stats")
    async def get_stats():
        return orchestrator.stats()

    # ══════════════════════════════════════════════════════════
    #  VOICE
    # ══════════════════════════════════════════════════════════

    @app.post(CHAT_AUDIO_PATH, response_model=VoiceReply)
    async def chat_audio(
        background_tasks: BackgroundTasks,
        audio: Optional[UploadFile] = File(None),
    ):
        upload_path = None
        try:
            if audio is None:
                raise RelayError(MISSING_AUDIO, stage="upload")
            upload_path = await stage_upload(audio.file, storage.upload_dir, audio.filename or "")
            result = await orchestrator.process_voice_request(upload_path)
        except Exception as e:
            logger.error("chat_audio_failed",
                         upload=str(upload_path) if upload_path else None,
                         error=str(e))
            return _processing_failed(str(e))

        # Input is only removed once the success response has gone out
        background_tasks.add_task(discard_upload, upload_path)
        return result

    @app.get("/download-audio/{file}")
    async def download_audio(file: str):
        path = (output_dir / file).resolve()
        if path.parent != output_dir or not path.is_file():
            return JSONResponse(
                status_code=404,
                content=ErrorResponse(error="File not found").model_dump(exclude_none=True),
            )
        return FileResponse(path, filename=path.name)

    return app


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

def main() -> None:
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
    )


if __name__ == "__main__":
    main()
