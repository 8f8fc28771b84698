from __future__ import annotations
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .audio import AudioTranscoder
from .cleanup import purge_stale_temp_files
from .db import create_schema, make_engine, make_session_factory
from .errors import (
	AttemptConflictError,
	AudioProcessingError,
	NotFoundError,
	TranscriptionUnavailable,
	ValidationError,
	VoiceError,
)
from .logging_config import setup_logging
from .routers import health, voice
from .scoring import PronunciationScorer
from .settings import Settings, get_settings
from .speech_client import GoogleSpeechTranscriber, SpeechTranscriber
from .storage import AudioStorage


logger = logging.getLogger(__name__)

ERROR_STATUS = {
	ValidationError: 400,
	NotFoundError: 404,
	AttemptConflictError: 409,
	AudioProcessingError: 422,
	TranscriptionUnavailable: 503,
}

# Kinds for errors raised by the framework itself (auth, routing)
HTTP_ERROR_KINDS = {
	400: "validation_error",
	401: "unauthorized",
	403: "forbidden",
	404: "not_found",
	405: "method_not_allowed",
}


def _error_body(kind: str, message: str) -> dict:
	return {"error": kind, "message": message}


async def _voice_error_handler(request: Request, exc: VoiceError) -> JSONResponse:
	status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
	if status >= 500:
		logger.error("%s on %s: %s", exc.kind, request.url.path, exc)
	return JSONResponse(status_code=status, content=_error_body(exc.kind, exc.public_message))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
	problems = []
	for err in exc.errors():
		# loc is ("body" | "query" | "path", field, ...)
		field = ".".join(str(part) for part in err.get("loc", ())[1:]) or "request"
		problems.append(f"{field}: {err.get('msg', 'invalid')}")
	return JSONResponse(
		status_code=ERROR_STATUS[ValidationError],
		content=_error_body(ValidationError.kind, "; ".join(problems) or "Invalid request"),
	)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
	kind = HTTP_ERROR_KINDS.get(exc.status_code, "http_error")
	return JSONResponse(
		status_code=exc.status_code,
		content=_error_body(kind, str(exc.detail)),
		headers=getattr(exc, "headers", None),
	)


async def _temp_purge_watcher(settings: Settings) -> None:
	# Run once at startup, then daily
	while True:
		try:
			await run_in_threadpool(purge_stale_temp_files, settings.temp_dir, settings.temp_max_age_hours)
		except Exception:
			logger.exception("Temp purge failed")
		await asyncio.sleep(24 * 60 * 60)


def create_app(
	settings: Optional[Settings] = None,
	*,
	transcriber: Optional[SpeechTranscriber] = None,
	transcoder: Optional[AudioTranscoder] = None,
) -> FastAPI:
	settings = settings or get_settings()
	setup_logging(settings.log_level)
	engine = make_engine(settings.database_url)

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		await run_in_threadpool(create_schema, engine)
		watcher = asyncio.create_task(_temp_purge_watcher(settings))
		try:
			yield
		finally:
			watcher.cancel()
			with suppress(asyncio.CancelledError):
				await watcher
			engine.dispose()

	app = FastAPI(title="Pronunciation Coach API", lifespan=lifespan)
	app.state.settings = settings
	app.state.engine = engine
	app.state.session_factory = make_session_factory(engine)
	app.state.transcoder = transcoder or AudioTranscoder(settings)
	app.state.transcriber = transcriber or GoogleSpeechTranscriber(settings)
	app.state.scorer = PronunciationScorer(settings.feedback_locale)
	app.state.storage = AudioStorage(settings)

	app.add_exception_handler(VoiceError, _voice_error_handler)
	app.add_exception_handler(RequestValidationError, _request_validation_handler)
	app.add_exception_handler(StarletteHTTPException, _http_error_handler)
	app.include_router(health.router)
	app.include_router(voice.router)

	# Stored attempt audio is served from its public base URL
	if settings.audio_base_url.startswith("/"):
		app.mount(
			settings.audio_base_url.rstrip("/"),
			StaticFiles(directory=Path(settings.audio_storage_dir)),
			name="audio",
		)
	return app


def run() -> None:
	import uvicorn

	uvicorn.run("pronunciation_coach.main:create_app", factory=True, host="0.0.0.0", port=8000)
