"""Error taxonomy for the voice pipeline.

Lower layers raise these and never swallow them; the HTTP layer maps each
``kind`` to a structured response (see ``main.py``).
"""

from typing import Optional


class VoiceError(Exception):
	"""Base exception for voice pipeline errors."""

	kind = "voice_error"

	@property
	def public_message(self) -> str:
		return str(self)


class AudioProcessingError(VoiceError):
	"""Raised when the codec tool fails or the input audio is unusable."""

	kind = "audio_processing_error"

	def __init__(self, operation: str, reason: Optional[str] = None):
		self.operation = operation
		self.reason = reason
		message = f"Audio processing failed during '{operation}'"
		if reason:
			message += f": {reason}"
		super().__init__(message)

	@property
	def public_message(self) -> str:
		# reason may carry codec stderr and temp paths
		return f"Audio processing failed during '{self.operation}'"


class TranscriptionUnavailable(VoiceError):
	"""Raised when the speech provider fails or misses its deadline."""

	kind = "transcription_unavailable"

	def __init__(self, provider: str, reason: Optional[str] = None):
		self.provider = provider
		self.reason = reason
		message = f"Speech service '{provider}' unavailable"
		if reason:
			message += f": {reason}"
		super().__init__(message)


class NotFoundError(VoiceError):
	"""Raised when a referenced sentence, user or attempt does not exist."""

	kind = "not_found"

	def __init__(self, resource: str, identifier: str):
		self.resource = resource
		self.identifier = identifier
		super().__init__(f"{resource} '{identifier}' not found")


class ValidationError(VoiceError):
	"""Raised when input validation fails."""

	kind = "validation_error"

	def __init__(self, field: str, reason: str):
		self.field = field
		self.reason = reason
		super().__init__(f"Validation error for '{field}': {reason}")


class AttemptConflictError(VoiceError):
	"""Raised when concurrent writers keep claiming the same attempt number."""

	kind = "attempt_conflict"

	def __init__(self, user_id: str, sentence_id: str, tries: int):
		self.user_id = user_id
		self.sentence_id = sentence_id
		self.tries = tries
		super().__init__(f"Could not allocate an attempt number after {tries} tries")
