"""
Voice Practice Router
=====================

HTTP surface of the pronunciation pipeline. Handlers only unwrap the request,
build an ``AttemptRecorder`` and wrap its result; errors raised by the
pipeline are turned into structured responses by the handlers in ``main.py``.

API Endpoints:
- POST /voice/pronunciation/analyze: score a recording against a sentence
- GET  /voice/history: most recent attempts
- GET  /voice/progress: longitudinal progress report
- POST /voice/practice/session: pick sentences for a practice session
- POST /voice/samples, GET /voice/samples: free voice samples
- GET  /voice/attempts/{attempt_id}: stored analysis of one attempt
- GET  /voice/statistics: practice totals
- GET  /voice/sentences/{sentence_id}/audio: synthesized reference audio
- POST /voice/waveform: PNG waveform of an uploaded clip
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..audio import AudioTranscoder
from ..db import get_db
from ..models import User
from ..recorder import AttemptRecorder, VoiceStore
from ..schemas import VoiceSampleOut
from .auth import get_current_user


router = APIRouter(prefix="/voice", tags=["voice"])


class PracticeSessionRequest(BaseModel):
	difficulty: Optional[str] = "medium"


def get_recorder(request: Request, db: Session = Depends(get_db)) -> AttemptRecorder:
	state = request.app.state
	return AttemptRecorder(
		store=VoiceStore(db),
		transcoder=state.transcoder,
		transcriber=state.transcriber,
		scorer=state.scorer,
		storage=state.storage,
		settings=state.settings,
	)


def get_transcoder(request: Request) -> AudioTranscoder:
	return request.app.state.transcoder


@router.post("/pronunciation/analyze")
async def analyze_pronunciation(
	sentence_id: str = Form(...),
	audio: UploadFile = File(...),
	locale: Optional[str] = Form(default=None),
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	payload = await audio.read()
	result = await recorder.record_attempt(user.id, sentence_id, payload, locale=locale)
	return {"success": True, "result": result, "message": "Pronunciation analysis completed"}


@router.get("/history")
async def practice_history(
	limit: int = Query(default=20, ge=1, le=100),
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	history = await recorder.get_history(user.id, limit)
	return {"success": True, "history": history, "count": len(history)}


@router.get("/progress")
async def progress_report(
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	report = await recorder.get_progress_report(user.id)
	return {"success": True, "report": report, "message": "Progress report generated"}


@router.post("/practice/session")
async def practice_session(
	req: PracticeSessionRequest,
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	session = await recorder.generate_practice_session(user.id, req.difficulty or "medium")
	return {"success": True, "session": session, "message": "Practice session generated"}


@router.post("/samples")
async def save_voice_sample(
	sample_type: str = Form(...),
	audio: UploadFile = File(...),
	transcription: Optional[str] = Form(default=None),
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	payload = await audio.read()
	sample = await recorder.save_voice_sample(user.id, sample_type, payload, transcription)
	return {
		"success": True,
		"voice_sample": VoiceSampleOut.model_validate(sample),
		"message": "Voice sample saved successfully",
	}


@router.get("/samples")
async def list_voice_samples(
	sample_type: Optional[str] = None,
	limit: int = Query(default=20, ge=1, le=100),
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	samples = await recorder.list_voice_samples(user.id, sample_type, limit)
	return {
		"success": True,
		"samples": [VoiceSampleOut.model_validate(s) for s in samples],
		"count": len(samples),
	}


@router.get("/attempts/{attempt_id}")
async def attempt_detail(
	attempt_id: str,
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	detail = await recorder.get_attempt_detail(user.id, attempt_id)
	return {"success": True, "feedback": detail, "message": "Detailed feedback retrieved"}


@router.get("/statistics")
async def voice_statistics(
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	stats = await recorder.get_statistics(user.id)
	return {"success": True, "statistics": stats, "message": "Voice statistics retrieved"}


@router.get("/sentences/{sentence_id}/audio")
async def sentence_audio(
	sentence_id: str,
	voice: Optional[str] = None,
	user: User = Depends(get_current_user),
	recorder: AttemptRecorder = Depends(get_recorder),
):
	audio = await recorder.synthesize_sentence_audio(sentence_id, voice)
	return Response(content=audio, media_type="audio/mpeg")


@router.post("/waveform")
async def waveform(
	audio: UploadFile = File(...),
	width: int = Query(default=800, ge=50, le=4000),
	height: int = Query(default=200, ge=20, le=2000),
	user: User = Depends(get_current_user),
	transcoder: AudioTranscoder = Depends(get_transcoder),
):
	payload = await audio.read()
	image = await transcoder.render_waveform(payload, width, height)
	return Response(content=image, media_type="image/png")
