"""
Attempt Recording
=================

``VoiceStore`` is the content store: plain synchronous SQLAlchemy over one
Session. ``AttemptRecorder`` runs the scoring pipeline for one request and is
the only layer that decides what to retry:

	features/quality of the upload -> transcode -> transcribe (retried once) -> score -> persist

Nothing is written until scoring has completed. The attempt and its sibling
voice sample are committed together. Store calls on the write path run to
completion even when the request is cancelled, and stored audio is only
discarded when no committed row references it.

Attempt numbers are count(user, sentence) + 1, backed by a unique key on
(user, sentence, attempt_number). A writer that loses a race rolls back,
recounts and tries again, so numbers stay unique and gap-free.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .audio import AudioTranscoder
from .errors import AttemptConflictError, NotFoundError, TranscriptionUnavailable, ValidationError
from .models import PronunciationAttempt, Sentence, User, VoiceSample
from .schemas import (
	AttemptDetail,
	AttemptResult,
	ErrorAnalysis,
	HistoryEntry,
	PracticeSentence,
	PracticeSession,
	ProgressReport,
	TimingAnalysis,
	VoiceStatistics,
	WordScore,
)
from .scoring import PronunciationScorer, round_half_up, tokenize
from .settings import Settings
from .speech_client import SpeechTranscriber
from .storage import AudioStorage


logger = logging.getLogger(__name__)

DIFFICULTY_LEVELS: Dict[str, List[str]] = {
	"easy": ["A1", "A2"],
	"medium": ["B1", "B2"],
	"hard": ["C1", "C2"],
}
DEFAULT_LEVELS = ["A1", "A2"]

PRACTICE_INSTRUCTIONS: Dict[str, str] = {
	"easy": "Practice these simple sentences. Focus on clear pronunciation and correct stress.",
	"medium": "Practice these sentences with natural rhythm. Pay attention to linking sounds.",
	"hard": "Practice these challenging sentences. Focus on difficult sounds and intonation.",
}

PRACTICE_SESSION_SIZE = 10
RECENT_WINDOW = 10
LOW_SCORE = 70
LOW_SCORE_SHARE = 0.3


def generate_session_id() -> str:
	return f"voice_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _mean(values: List[int]) -> float:
	return sum(values) / len(values) if values else 0.0


def progress_trend(scores: List[int]) -> float:
	"""Mean of the last 10 scores minus the mean of the 10 before them."""
	recent = scores[-RECENT_WINDOW:]
	older = scores[-2 * RECENT_WINDOW:-RECENT_WINDOW]
	if not recent or not older:
		return 0.0
	return _mean(recent) - _mean(older)


def pronunciation_recommendations(scores: List[int]) -> List[str]:
	if not scores:
		return ["Start with basic pronunciation exercises to build confidence."]

	recommendations: List[str] = []
	average = _mean(scores)
	if average < 60:
		recommendations.append("Focus on basic pronunciation patterns and practice regularly.")
	elif average < 80:
		recommendations.append("Work on specific sounds that are challenging for Arabic speakers.")
	else:
		recommendations.append("Practice advanced pronunciation techniques and intonation.")

	low = [s for s in scores if s < LOW_SCORE]
	if len(low) > len(scores) * LOW_SCORE_SHARE:
		recommendations.append("Consider working with a pronunciation coach for personalized feedback.")
	return recommendations


class VoiceStore:
	def __init__(self, db: Session) -> None:
		self.db = db

	def get_user(self, user_id: str) -> Optional[User]:
		return self.db.get(User, user_id)

	def get_sentence(self, sentence_id: str) -> Optional[Sentence]:
		return self.db.get(Sentence, sentence_id)

	def count_attempts(self, user_id: str, sentence_id: str) -> int:
		stmt = select(func.count(PronunciationAttempt.id)).where(
			PronunciationAttempt.user_id == user_id,
			PronunciationAttempt.sentence_id == sentence_id,
		)
		return self.db.execute(stmt).scalar_one()

	def add_attempt(self, attempt: PronunciationAttempt, sample: VoiceSample) -> None:
		"""Commit an attempt and its sample atomically; rolls back and re-raises on failure."""
		self.db.add(attempt)
		self.db.add(sample)
		try:
			self.db.commit()
		except Exception:
			self.db.rollback()
			raise

	def add_sample(self, sample: VoiceSample) -> VoiceSample:
		self.db.add(sample)
		self.db.commit()
		self.db.refresh(sample)
		return sample

	def audio_in_use(self, audio_url: str) -> bool:
		"""True when a committed attempt or sample references ``audio_url``."""
		for model in (PronunciationAttempt, VoiceSample):
			stmt = select(func.count(model.id)).where(model.audio_file_url == audio_url)
			if self.db.execute(stmt).scalar_one():
				return True
		return False

	def get_attempt(self, attempt_id: str) -> Optional[PronunciationAttempt]:
		return self.db.get(PronunciationAttempt, attempt_id)

	def recent_attempts(self, user_id: str, limit: int) -> List[PronunciationAttempt]:
		stmt = (
			select(PronunciationAttempt)
			.where(PronunciationAttempt.user_id == user_id)
			.order_by(PronunciationAttempt.created_at.desc(), PronunciationAttempt.id.desc())
			.limit(limit)
		)
		return list(self.db.execute(stmt).unique().scalars())

	def score_history(self, user_id: str) -> List[tuple]:
		"""(overall_score, created_at) oldest first."""
		stmt = (
			select(PronunciationAttempt.overall_score, PronunciationAttempt.created_at)
			.where(PronunciationAttempt.user_id == user_id)
			.order_by(PronunciationAttempt.created_at.asc(), PronunciationAttempt.id.asc())
		)
		return [tuple(row) for row in self.db.execute(stmt)]

	def list_samples(self, user_id: str, sample_type: Optional[str], limit: int) -> List[VoiceSample]:
		stmt = select(VoiceSample).where(VoiceSample.user_id == user_id)
		if sample_type:
			stmt = stmt.where(VoiceSample.sample_type == sample_type)
		stmt = stmt.order_by(VoiceSample.created_at.desc()).limit(limit)
		return list(self.db.execute(stmt).scalars())

	def sample_features(self, user_id: str) -> List[Optional[dict]]:
		stmt = select(VoiceSample.audio_features).where(VoiceSample.user_id == user_id)
		return list(self.db.execute(stmt).scalars())

	def practice_sentences(self, levels: Iterable[str], limit: int) -> List[Sentence]:
		stmt = (
			select(Sentence)
			.where(Sentence.cefr_level.in_(list(levels)), Sentence.is_active.is_(True))
			.order_by(Sentence.usage_count.asc(), Sentence.id.asc())
			.limit(limit)
		)
		return list(self.db.execute(stmt).scalars())


class AttemptRecorder:
	def __init__(
		self,
		store: VoiceStore,
		transcoder: AudioTranscoder,
		transcriber: SpeechTranscriber,
		scorer: PronunciationScorer,
		storage: AudioStorage,
		settings: Settings,
	) -> None:
		self.store = store
		self.transcoder = transcoder
		self.transcriber = transcriber
		self.scorer = scorer
		self.storage = storage
		self.language_code = settings.speech_language_code
		self.sample_rate = settings.speech_sample_rate
		self.speech_timeout = settings.speech_timeout_seconds
		self.transcription_retries = max(0, settings.transcription_retries)
		self.retry_backoff = settings.transcription_retry_backoff_seconds
		self.number_retries = max(1, settings.attempt_number_retries)

	async def _db(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
		# Store calls are blocking; keep them off the event loop
		return await run_in_threadpool(fn, *args, **kwargs)

	async def _require_user(self, user_id: str) -> User:
		user = await self._db(self.store.get_user, user_id)
		if user is None:
			raise NotFoundError("user", user_id)
		return user

	async def _require_sentence(self, sentence_id: str) -> Sentence:
		sentence = await self._db(self.store.get_sentence, sentence_id)
		if sentence is None:
			raise NotFoundError("sentence", sentence_id)
		return sentence

	async def _transcribe(self, audio: bytes) -> str:
		retry = 0
		while True:
			try:
				return await self.transcriber.transcribe(audio, self.language_code, timeout=self.speech_timeout)
			except TranscriptionUnavailable as e:
				if retry >= self.transcription_retries:
					raise
				retry += 1
				delay = self.retry_backoff * retry
				logger.warning("Transcription unavailable (%s); retry %s in %.1fs", e, retry, delay)
				await asyncio.sleep(delay)

	async def _prepare(self, audio: bytes) -> tuple:
		"""Canonical PCM for the recognizer, plus feature and quality snapshots of the upload."""
		features = await self.transcoder.extract_features(audio)
		quality = await self.transcoder.assess_quality(audio)
		processed = await self.transcoder.transcode(audio, "wav", self.sample_rate, 1)
		return processed, features, quality

	async def _db_uninterrupted(self, fn: Callable[..., Any], *args: Any) -> Any:
		"""Like ``_db``, but the store call runs to completion even if the caller is cancelled."""
		task = asyncio.ensure_future(self._db(fn, *args))
		try:
			return await asyncio.shield(task)
		except asyncio.CancelledError:
			# The worker thread cannot be interrupted; wait for its outcome
			# so cleanup sees the committed state
			await asyncio.wait({task})
			if task.exception() is not None:
				logger.warning("Store call failed after the request was cancelled: %s", task.exception())
			raise

	async def _discard_unreferenced(self, audio_url: str) -> None:
		if not await self._db(self.store.audio_in_use, audio_url):
			await self._db(self.storage.delete, audio_url)

	async def record_attempt(self, user_id: str, sentence_id: str, audio: bytes, locale: Optional[str] = None) -> AttemptResult:
		if not audio:
			raise ValidationError("audio", "audio file is required")
		await self._require_user(user_id)
		sentence = await self._require_sentence(sentence_id)
		target_text = sentence.english_text or ""
		if not tokenize(target_text):
			raise ValidationError("target_text", "sentence has no words to practice")

		processed, features, quality = await self._prepare(audio)
		transcript = await self._transcribe(processed)
		outcome = self.scorer.evaluate(transcript, target_text, locale)

		session_id = generate_session_id()
		audio_url = await self._db(self.storage.save, processed, user_id, sentence_id)
		analysis_json = outcome.analysis.model_dump()
		attempt_id = uuid.uuid4().hex
		try:
			for tries in range(1, self.number_retries + 1):
				number = await self._db_uninterrupted(self.store.count_attempts, user_id, sentence_id) + 1
				attempt = PronunciationAttempt(
					id=attempt_id,
					user_id=user_id,
					sentence_id=sentence_id,
					session_id=session_id,
					attempt_number=number,
					target_text=target_text,
					user_transcript=transcript,
					overall_score=outcome.overall_score,
					analysis_results=analysis_json,
					word_scores=analysis_json["word_scores"],
					timing_analysis=analysis_json["timing"],
					error_analysis=outcome.error_analysis.model_dump(),
					quality_metrics=quality.model_dump(),
					audio_file_url=audio_url,
					feedback_text=outcome.feedback,
					feedback_locale=outcome.locale,
				)
				sample = VoiceSample(
					id=uuid.uuid4().hex,
					user_id=user_id,
					sentence_id=sentence_id,
					session_id=session_id,
					sample_type="pronunciation_attempt",
					audio_file_url=audio_url,
					transcription=transcript,
					audio_features=features.model_dump(),
					quality_metrics=quality.model_dump(),
				)
				try:
					await self._db_uninterrupted(self.store.add_attempt, attempt, sample)
					break
				except IntegrityError:
					logger.warning(
						"Attempt number %s for user %s / sentence %s already taken (try %s/%s)",
						number, user_id, sentence_id, tries, self.number_retries,
					)
			else:
				raise AttemptConflictError(user_id, sentence_id, self.number_retries)
		except BaseException:
			await self._discard_unreferenced(audio_url)
			raise

		logger.info(
			"Recorded attempt %s (#%s) for user %s: score %s",
			attempt_id, number, user_id, outcome.overall_score,
		)
		return AttemptResult(
			attempt_id=attempt_id,
			attempt_number=number,
			overall_score=outcome.overall_score,
			feedback=outcome.feedback,
			analysis=outcome.analysis,
			transcription=transcript,
		)

	async def get_history(self, user_id: str, limit: int = 20) -> List[HistoryEntry]:
		if limit < 1:
			raise ValidationError("limit", "must be at least 1")
		attempts = await self._db(self.store.recent_attempts, user_id, limit)
		return [
			HistoryEntry(
				id=a.id,
				sentence=a.sentence.english_text if a.sentence else a.target_text,
				translation=a.sentence.translation if a.sentence else None,
				score=a.overall_score,
				transcription=a.user_transcript,
				feedback=a.feedback_text,
				date=a.created_at,
			)
			for a in attempts
		]

	async def get_progress_report(self, user_id: str) -> ProgressReport:
		history = await self._db(self.store.score_history, user_id)
		if not history:
			return ProgressReport()
		scores = [score for score, _ in history]
		return ProgressReport(
			total_attempts=len(scores),
			average_score=round_half_up(_mean(scores)),
			best_score=max(scores),
			progress_trend=progress_trend(scores),
			recommendations=pronunciation_recommendations(scores),
		)

	async def select_practice_sentences(self, difficulty: str, recent_attempts: List[PronunciationAttempt]) -> List[Sentence]:
		levels = DIFFICULTY_LEVELS.get((difficulty or "").lower(), DEFAULT_LEVELS)
		return await self._db(self.store.practice_sentences, levels, PRACTICE_SESSION_SIZE)

	async def generate_practice_session(self, user_id: str, difficulty: str = "medium") -> PracticeSession:
		recent = await self._db(self.store.recent_attempts, user_id, RECENT_WINDOW)
		sentences = await self.select_practice_sentences(difficulty, recent)
		instructions = PRACTICE_INSTRUCTIONS.get((difficulty or "").lower(), PRACTICE_INSTRUCTIONS["medium"])
		return PracticeSession(
			session_id=generate_session_id(),
			sentences=[
				PracticeSentence(
					id=s.id,
					text=s.english_text,
					translation=s.translation,
					audio_url=s.audio_url_us or s.audio_url_uk,
				)
				for s in sentences
			],
			instructions=instructions,
		)

	async def save_voice_sample(
		self,
		user_id: str,
		sample_type: str,
		audio: bytes,
		transcription: Optional[str] = None,
	) -> VoiceSample:
		if not audio:
			raise ValidationError("audio", "audio file is required")
		if not (sample_type or "").strip():
			raise ValidationError("sample_type", "sample type is required")
		await self._require_user(user_id)

		processed, features, quality = await self._prepare(audio)
		audio_url = await self._db(self.storage.save, processed, user_id, sample_type)
		sample = VoiceSample(
			user_id=user_id,
			session_id=generate_session_id(),
			sample_type=sample_type.strip(),
			audio_file_url=audio_url,
			transcription=transcription or "",
			audio_features=features.model_dump(),
			quality_metrics=quality.model_dump(),
		)
		try:
			return await self._db_uninterrupted(self.store.add_sample, sample)
		except BaseException:
			await self._discard_unreferenced(audio_url)
			raise

	async def list_voice_samples(self, user_id: str, sample_type: Optional[str] = None, limit: int = 20) -> List[VoiceSample]:
		if limit < 1:
			raise ValidationError("limit", "must be at least 1")
		return await self._db(self.store.list_samples, user_id, sample_type, limit)

	async def get_attempt_detail(self, user_id: str, attempt_id: str) -> AttemptDetail:
		attempt = await self._db(self.store.get_attempt, attempt_id)
		# Other users' attempts are indistinguishable from missing ones
		if attempt is None or attempt.user_id != user_id:
			raise NotFoundError("attempt", attempt_id)
		return AttemptDetail(
			id=attempt.id,
			sentence_id=attempt.sentence_id,
			attempt_number=attempt.attempt_number,
			target_text=attempt.target_text,
			transcription=attempt.user_transcript,
			overall_score=attempt.overall_score,
			word_scores=[WordScore(**w) for w in attempt.word_scores or []],
			timing=TimingAnalysis(**attempt.timing_analysis) if attempt.timing_analysis else None,
			error_analysis=ErrorAnalysis(**attempt.error_analysis) if attempt.error_analysis else None,
			quality_metrics=attempt.quality_metrics,
			feedback=attempt.feedback_text,
			audio_file_url=attempt.audio_file_url,
			created_at=attempt.created_at,
		)

	async def get_statistics(self, user_id: str) -> VoiceStatistics:
		history = await self._db(self.store.score_history, user_id)
		features = await self._db(self.store.sample_features, user_id)
		seconds = sum(float((f or {}).get("duration") or 0) for f in features)
		if not history:
			return VoiceStatistics(total_practice_time=round(seconds / 60, 1))
		scores = [score for score, _ in history]
		return VoiceStatistics(
			total_attempts=len(scores),
			average_score=round_half_up(_mean(scores)),
			best_score=max(scores),
			practice_days=len({created.date() for _, created in history}),
			total_practice_time=round(seconds / 60, 1),
		)

	async def synthesize_sentence_audio(self, sentence_id: str, voice_id: Optional[str] = None) -> bytes:
		sentence = await self._require_sentence(sentence_id)
		return await self.transcriber.synthesize(sentence.english_text, self.language_code, voice_id)
