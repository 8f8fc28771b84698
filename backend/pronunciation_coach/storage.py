from __future__ import annotations
import logging
import re
import time
import uuid
from pathlib import Path

from .settings import Settings


logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")


class AudioStorage:
	"""Local file store for processed audio, addressed by public URL."""

	def __init__(self, settings: Settings) -> None:
		self.root = Path(settings.audio_storage_dir)
		self.base_url = settings.audio_base_url.rstrip("/")
		self.root.mkdir(parents=True, exist_ok=True)

	def save(self, audio: bytes, user_id: str, identifier: str, extension: str = "wav") -> str:
		user_part = _UNSAFE.sub("", user_id)
		ident_part = _UNSAFE.sub("", identifier)
		filename = f"pronunciation_{user_part}_{ident_part}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}.{extension}"
		(self.root / filename).write_bytes(audio)
		return f"{self.base_url}/{filename}"

	def delete(self, url: str) -> None:
		"""Remove a file previously returned by ``save``."""
		path = self.root / url.rsplit("/", 1)[-1]
		try:
			path.unlink(missing_ok=True)
		except OSError as e:
			logger.warning("Failed to remove stored audio %s: %s", path.name, e)
