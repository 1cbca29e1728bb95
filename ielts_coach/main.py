import os
import asyncio
import logging
import functools
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from ielts_coach.core.config import Settings, setup_logging
from ielts_coach.core.errors import SpeechCoachError, NoFileUploaded
from ielts_coach.routers import speech
from ielts_coach.services.external_client import ResilientCallClient, DEFAULT_POLICY
from ielts_coach.services.providers import get_adapter
from ielts_coach.services.speech_service import SpeechService, load_prompts
from ielts_coach.services.transcription import make_openai_client, transcribe_clip

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings = None,
    http_client: httpx.AsyncClient = None,
    sleep=asyncio.sleep,
    policy=DEFAULT_POLICY,
    transcriber=None,
) -> FastAPI:
    """Builds the app. Raises ConfigError when the settings are unusable."""
    settings = (settings or Settings.from_env()).validate()
    setup_logging(settings.LOG_LEVEL)

    prompts = load_prompts(settings.PROMPTS_PATH)
    adapter = get_adapter(settings)
    owns_client = http_client is None
    if owns_client:
        http_client = httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT)

    # One Whisper client for the app, closed with the http pool
    openai_client = make_openai_client(settings) if settings.OPENAI_API_KEY else None
    if transcriber is None:
        transcriber = functools.partial(transcribe_clip, settings=settings, client=openai_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(">>> SERVER STARTING UP <<<")
        logger.info(f"Config: {settings.describe()}")
        logger.info("Server is ready to accept requests.")
        yield
        logger.info(">>> SERVER SHUTTING DOWN <<<")
        if owns_client:
            await http_client.aclose()
        if openai_client is not None:
            await openai_client.close()

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.openai_client = openai_client
    app.state.speech_service = SpeechService(
        client=ResilientCallClient(http_client, sleep=sleep),
        adapter=adapter,
        prompts=prompts,
        settings=settings,
        policy=policy,
        transcriber=transcriber,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SpeechCoachError)
    async def speech_error_handler(request: Request, exc: SpeechCoachError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.url.path} failed: {type(exc).__name__}: {exc.detail or exc.message}")
        else:
            logger.warning(f"⚠️ {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # Only the upload fields are validated, e.g. `audio` sent as plain text
        logger.warning(f"⚠️ {request.url.path} invalid form: {exc.errors()}")
        return await speech_error_handler(request, NoFileUploaded())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"❌ Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error."})

    app.include_router(speech.router)

    @app.get("/health")
    async def health():
        return {
            "message": f"{settings.PROJECT_NAME} API is running!",
            "provider": settings.LLM_PROVIDER,
            "status": "OK",
        }

    # Frontend goes last so the API routes win
    if settings.STATIC_DIR:
        if os.path.isdir(settings.STATIC_DIR):
            app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")
            logger.info(f"📁 Serving static files from {settings.STATIC_DIR}")
        else:
            logger.warning(f"⚠️ STATIC_DIR '{settings.STATIC_DIR}' not found. Static files disabled.")

    return app


def main():
    settings = Settings.from_env()
    app = create_app(settings)
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    main()
