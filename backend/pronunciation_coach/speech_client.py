"""
Speech provider adapters.

The rest of the service only sees the ``SpeechTranscriber`` protocol; Google
request/response types stay inside ``GoogleSpeechTranscriber``. Provider
failures and missed deadlines both surface as ``TranscriptionUnavailable``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import speech_v1p1beta1 as speech
from google.cloud import texttospeech

from .errors import TranscriptionUnavailable, ValidationError
from .settings import Settings


logger = logging.getLogger(__name__)

PROVIDER = "google"


class SpeechTranscriber(Protocol):
	async def transcribe(self, audio: bytes, language_code: str, timeout: Optional[float] = None) -> str:
		"""Recognize canonical PCM audio; returns "" when nothing was recognized."""
		...

	async def synthesize(self, text: str, language_code: str, voice_id: Optional[str] = None) -> bytes:
		"""Render ``text`` as MP3 audio."""
		...


class GoogleSpeechTranscriber:
	"""Google Cloud Speech-to-Text / Text-to-Speech behind the SpeechTranscriber protocol.

	Clients are created lazily so the service can start (and be tested)
	without credentials; pass ``speech_client``/``tts_client`` to inject fakes.
	"""

	def __init__(self, settings: Settings, *, speech_client=None, tts_client=None) -> None:
		self.key_file = settings.google_cloud_key_file
		self.project = settings.google_cloud_project
		self.sample_rate = settings.speech_sample_rate
		self.automatic_punctuation = settings.speech_automatic_punctuation
		self.default_timeout = settings.speech_timeout_seconds
		self.default_voice = settings.tts_voice_name
		self._speech_client = speech_client
		self._tts_client = tts_client

	def _client_options(self) -> Optional[dict]:
		return {"quota_project_id": self.project} if self.project else None

	def _speech(self):
		if self._speech_client is None:
			try:
				if self.key_file:
					self._speech_client = speech.SpeechAsyncClient.from_service_account_file(
						self.key_file, client_options=self._client_options()
					)
				else:
					self._speech_client = speech.SpeechAsyncClient(client_options=self._client_options())
			except (GoogleAuthError, OSError) as e:
				raise TranscriptionUnavailable(PROVIDER, f"speech client unavailable: {e}") from e
		return self._speech_client

	def _tts(self):
		if self._tts_client is None:
			try:
				if self.key_file:
					self._tts_client = texttospeech.TextToSpeechAsyncClient.from_service_account_file(
						self.key_file, client_options=self._client_options()
					)
				else:
					self._tts_client = texttospeech.TextToSpeechAsyncClient(client_options=self._client_options())
			except (GoogleAuthError, OSError) as e:
				raise TranscriptionUnavailable(PROVIDER, f"text-to-speech client unavailable: {e}") from e
		return self._tts_client

	async def transcribe(self, audio: bytes, language_code: str, timeout: Optional[float] = None) -> str:
		if not audio:
			raise ValidationError("audio", "audio payload is empty")
		config = speech.RecognitionConfig(
			encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
			sample_rate_hertz=self.sample_rate,
			language_code=language_code,
			enable_word_time_offsets=True,
			enable_automatic_punctuation=self.automatic_punctuation,
		)
		request_audio = speech.RecognitionAudio(content=audio)
		deadline = timeout if timeout is not None else self.default_timeout
		client = self._speech()
		try:
			response = await asyncio.wait_for(
				client.recognize(config=config, audio=request_audio),
				timeout=deadline,
			)
		except asyncio.TimeoutError as e:
			logger.warning("Speech recognition timed out after %ss", deadline)
			raise TranscriptionUnavailable(PROVIDER, f"timed out after {deadline}s") from e
		except GoogleAPIError as e:
			logger.warning("Speech recognition failed: %s", e)
			raise TranscriptionUnavailable(PROVIDER, str(e)) from e

		# Long clips come back as several consecutive results
		parts = [
			result.alternatives[0].transcript.strip()
			for result in response.results
			if result.alternatives and result.alternatives[0].transcript
		]
		return " ".join(p for p in parts if p)

	async def synthesize(self, text: str, language_code: str, voice_id: Optional[str] = None) -> bytes:
		if not (text or "").strip():
			raise ValidationError("text", "text to synthesize is empty")
		client = self._tts()
		try:
			response = await asyncio.wait_for(
				client.synthesize_speech(
					input=texttospeech.SynthesisInput(text=text),
					voice=texttospeech.VoiceSelectionParams(
						language_code=language_code,
						name=voice_id or self.default_voice,
						ssml_gender=texttospeech.SsmlVoiceGender.MALE,
					),
					audio_config=texttospeech.AudioConfig(
						audio_encoding=texttospeech.AudioEncoding.MP3,
						speaking_rate=1.0,
						pitch=0.0,
					),
				),
				timeout=self.default_timeout,
			)
		except asyncio.TimeoutError as e:
			raise TranscriptionUnavailable(PROVIDER, f"synthesis timed out after {self.default_timeout}s") from e
		except GoogleAPIError as e:
			logger.warning("Speech synthesis failed: %s", e)
			raise TranscriptionUnavailable(PROVIDER, str(e)) from e
		return response.audio_content
