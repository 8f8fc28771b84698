"""
Shared fixtures: an in-memory database, seeded users and sentences, and
fakes for the codec tool and the speech provider.
"""
from datetime import datetime, timedelta
from typing import List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from pronunciation_coach.audio import assess_features
from pronunciation_coach.db import Base, make_engine
from pronunciation_coach.errors import AudioProcessingError, TranscriptionUnavailable
from pronunciation_coach.models import PronunciationAttempt, Sentence, User
from pronunciation_coach.schemas import AudioFeatures, QualityReport
from pronunciation_coach.settings import Settings


class FakeTranscoder:
	"""Stands in for ffmpeg: 'transcodes' by tagging the bytes."""

	def __init__(self, features: Optional[AudioFeatures] = None, fail_on: Optional[str] = None) -> None:
		self.features = features or AudioFeatures(
			duration=3.0,
			sample_rate=16000,
			channels=1,
			codec="pcm_s16le",
			bitrate=256000,
			approximate_size_bytes=96000,
		)
		self.fail_on = fail_on
		self.calls: List[str] = []
		self.probed: List[bytes] = []

	def _maybe_fail(self, operation: str) -> None:
		self.calls.append(operation)
		if self.fail_on == operation:
			raise AudioProcessingError(operation, "corrupt input")

	async def transcode(self, audio: bytes, format: str = "wav", sample_rate: int = 16000, channels: int = 1) -> bytes:
		self._maybe_fail("transcode")
		return b"PCM:" + audio

	async def extract_features(self, audio: bytes) -> AudioFeatures:
		self._maybe_fail("features")
		self.probed.append(audio)
		return self.features

	async def assess_quality(self, audio: bytes) -> QualityReport:
		self._maybe_fail("quality")
		self.probed.append(audio)
		return assess_features(self.features)

	async def render_waveform(self, audio: bytes, width: int = 800, height: int = 200) -> bytes:
		self._maybe_fail("waveform")
		return b"\x89PNG\r\n\x1a\nfake"

	async def normalize_loudness(self, audio: bytes, target_db: float = -20) -> bytes:
		self._maybe_fail("normalize")
		return audio


class FakeTranscriber:
	"""Returns a fixed transcript, optionally failing the first ``failures`` calls."""

	def __init__(self, transcript: str = "", failures: int = 0) -> None:
		self.transcript = transcript
		self.failures = failures
		self.transcribe_calls = 0
		self.synthesized: List[tuple] = []

	async def transcribe(self, audio: bytes, language_code: str, timeout: Optional[float] = None) -> str:
		self.transcribe_calls += 1
		if self.transcribe_calls <= self.failures:
			raise TranscriptionUnavailable("fake", "provider down")
		return self.transcript

	async def synthesize(self, text: str, language_code: str, voice_id: Optional[str] = None) -> bytes:
		self.synthesized.append((text, language_code, voice_id))
		return b"ID3fake-mp3"


@pytest.fixture
def settings(tmp_path):
	return Settings(
		database_url="sqlite://",
		temp_dir=str(tmp_path / "temp"),
		audio_storage_dir=str(tmp_path / "audio"),
		transcription_retry_backoff_seconds=0,
		feedback_locale="en",
		jwt_secret_key="test-secret",
	)


@pytest.fixture
def db():
	engine = make_engine("sqlite://")
	Base.metadata.create_all(bind=engine)
	session = sessionmaker(bind=engine, autoflush=False, future=True)()
	try:
		yield session
	finally:
		session.close()
		engine.dispose()


@pytest.fixture
def user(db):
	row = User(id="user-1", username="layla")
	db.add(row)
	db.commit()
	return row


@pytest.fixture
def other_user(db):
	row = User(id="user-2", username="omar")
	db.add(row)
	db.commit()
	return row


@pytest.fixture
def sentence(db):
	row = Sentence(
		id="sent-1",
		english_text="I am happy today",
		translation="أنا سعيد اليوم",
		audio_url_us="https://cdn.example.com/us/sent-1.mp3",
		cefr_level="A1",
	)
	db.add(row)
	db.commit()
	return row


def add_attempt(db, user_id: str, sentence_id: str, number: int, score: int, created_at: Optional[datetime] = None) -> PronunciationAttempt:
	"""Insert a finished attempt directly, bypassing the pipeline."""
	row = PronunciationAttempt(
		id=f"att-{user_id}-{sentence_id}-{number}",
		user_id=user_id,
		sentence_id=sentence_id,
		session_id="voice_test",
		attempt_number=number,
		target_text="I am happy today",
		user_transcript="i am happy today",
		overall_score=score,
		word_scores=[],
		created_at=created_at or datetime(2026, 1, 1) + timedelta(minutes=number),
	)
	db.add(row)
	db.commit()
	return row
