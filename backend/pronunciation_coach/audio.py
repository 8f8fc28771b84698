"""
Audio Transcoding
=================

Every operation follows the same shape: write the input bytes to a scratch
file, run ffmpeg/ffprobe against it, read the result back. Scratch files are
owned by a context manager and removed on every exit path, including codec
failures, timeouts and task cancellation.

Scratch names are ``<prefix>_<epoch-ms>_<random>.<ext>`` so concurrent
requests sharing the temp directory never collide.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .errors import AudioProcessingError, ValidationError
from .schemas import AudioFeatures, QualityReport
from .settings import Settings


logger = logging.getLogger(__name__)

HIGH_QUALITY_THRESHOLD = 80

# Encoder arguments per output container; others use ffmpeg's default codec
_CODEC_ARGS: Dict[str, List[str]] = {
	"wav": ["-acodec", "pcm_s16le"],
	"mp3": ["-acodec", "libmp3lame", "-b:a", "128k"],
}


def _to_int(value: Any) -> Optional[int]:
	try:
		if value is None or value == "N/A":
			return None
		return int(float(value))
	except (TypeError, ValueError):
		return None


def _to_float(value: Any) -> float:
	try:
		return float(value)
	except (TypeError, ValueError):
		return 0.0


def parse_probe(probe: Dict[str, Any]) -> AudioFeatures:
	"""Build an AudioFeatures snapshot from ffprobe's JSON output."""
	streams = probe.get("streams") or []
	audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
	if audio_stream is None:
		raise AudioProcessingError("probe", "No audio stream found")
	fmt = probe.get("format") or {}

	duration = _to_float(audio_stream.get("duration") or fmt.get("duration"))
	# Many containers only report bit_rate at the format level
	bitrate = _to_int(audio_stream.get("bit_rate")) or _to_int(fmt.get("bit_rate"))
	return AudioFeatures(
		duration=duration,
		sample_rate=_to_int(audio_stream.get("sample_rate")) or 0,
		channels=_to_int(audio_stream.get("channels")) or 0,
		codec=audio_stream.get("codec_name"),
		bitrate=bitrate,
		approximate_size_bytes=round(bitrate * duration / 8) if bitrate else 0,
	)


def quality_score(sample_rate: int, channels: int, bitrate: Optional[int]) -> int:
	"""Heuristic 0-100 rating of a clip's technical fitness for recognition."""
	score = 100

	if sample_rate < 16000:
		score -= 30
	elif sample_rate < 22050:
		score -= 20
	elif sample_rate < 44100:
		score -= 10

	if channels == 1:
		score -= 5
	elif channels > 2:
		score -= 10

	# Unknown bitrate carries no penalty
	if bitrate is not None:
		if bitrate < 64000:
			score -= 40
		elif bitrate < 128000:
			score -= 20
		elif bitrate < 192000:
			score -= 10

	return max(0, min(100, score))


def quality_recommendations(score: int, sample_rate: int, channels: int, bitrate: Optional[int]) -> List[str]:
	recommendations: List[str] = []
	if score < 60:
		recommendations.append("Low audio quality detected. Consider increasing sample rate and bitrate.")
	if sample_rate < 16000:
		recommendations.append("Increase sample rate to at least 16kHz for better quality.")
	elif sample_rate < 44100:
		recommendations.append("Record at 44.1kHz or higher for the best recognition results.")
	if bitrate is not None and bitrate < 128000:
		recommendations.append("Increase bitrate to at least 128kbps for better quality.")
	elif bitrate is not None and bitrate < 192000:
		recommendations.append("A bitrate of 192kbps or more gives the clearest recordings.")
	if channels == 1:
		recommendations.append("Consider using stereo audio for better quality (if applicable).")
	elif channels > 2:
		recommendations.append("Record in mono or stereo; extra channels do not help recognition.")
	return recommendations


def assess_features(features: AudioFeatures) -> QualityReport:
	score = quality_score(features.sample_rate, features.channels, features.bitrate)
	return QualityReport(
		quality_score=score,
		sample_rate=features.sample_rate,
		channels=features.channels,
		bitrate=features.bitrate,
		is_high_quality=score >= HIGH_QUALITY_THRESHOLD,
		recommendations=quality_recommendations(score, features.sample_rate, features.channels, features.bitrate),
	)


class AudioTranscoder:
	def __init__(self, settings: Settings) -> None:
		self.ffmpeg = settings.ffmpeg_binary
		self.ffprobe = settings.ffprobe_binary
		self.timeout = settings.codec_timeout_seconds
		self.temp_dir = Path(settings.temp_dir)
		self.temp_dir.mkdir(parents=True, exist_ok=True)

	def _temp_path(self, prefix: str, extension: str) -> Path:
		timestamp = int(time.time() * 1000)
		return self.temp_dir / f"{prefix}_{timestamp}_{uuid.uuid4().hex[:9]}.{extension}"

	@contextmanager
	def _scratch(self, *specs: Sequence[str]) -> Iterator[List[Path]]:
		paths = [self._temp_path(prefix, ext) for prefix, ext in specs]
		try:
			yield paths
		finally:
			for path in paths:
				try:
					path.unlink(missing_ok=True)
				except OSError as e:
					logger.warning("Failed to clean up temp file %s: %s", path.name, e)

	async def _run(self, operation: str, cmd: List[str]) -> bytes:
		"""Run a codec command; returns stdout, raises AudioProcessingError on failure."""
		try:
			process = await asyncio.create_subprocess_exec(
				*cmd,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
			)
		except OSError as e:
			raise AudioProcessingError(operation, f"cannot start {cmd[0]}: {e}") from e

		try:
			stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
		except asyncio.TimeoutError as e:
			await self._kill(process)
			raise AudioProcessingError(operation, f"timed out after {self.timeout}s") from e
		except asyncio.CancelledError:
			await self._kill(process)
			raise

		if process.returncode != 0:
			reason = stderr.decode("utf-8", errors="replace").strip()[-500:]
			logger.error("%s failed (exit %s): %s", operation, process.returncode, reason)
			raise AudioProcessingError(operation, reason or f"exit code {process.returncode}")
		return stdout

	@staticmethod
	async def _kill(process: asyncio.subprocess.Process) -> None:
		if process.returncode is None:
			try:
				process.kill()
			except ProcessLookupError:
				pass
			await process.wait()

	@staticmethod
	def _require_audio(audio: bytes) -> None:
		if not audio:
			raise ValidationError("audio", "audio payload is empty")

	@staticmethod
	def _read_output(operation: str, path: Path) -> bytes:
		try:
			data = path.read_bytes()
		except OSError as e:
			raise AudioProcessingError(operation, "codec produced no output") from e
		if not data:
			raise AudioProcessingError(operation, "codec produced empty output")
		return data

	async def transcode(
		self,
		audio: bytes,
		format: str = "wav",
		sample_rate: int = 16000,
		channels: int = 1,
	) -> bytes:
		"""Convert arbitrary uploaded audio to ``format`` at the given rate/channels."""
		self._require_audio(audio)
		fmt = format.lower()
		with self._scratch(("input", "bin"), ("output", fmt)) as (src, dst):
			src.write_bytes(audio)
			cmd = [
				self.ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
				"-i", str(src),
				"-ar", str(sample_rate),
				"-ac", str(channels),
				*_CODEC_ARGS.get(fmt, []),
				str(dst),
			]
			await self._run("transcode", cmd)
			return self._read_output("transcode", dst)

	async def _probe(self, operation: str, audio: bytes) -> AudioFeatures:
		self._require_audio(audio)
		with self._scratch((operation, "bin")) as (src,):
			src.write_bytes(audio)
			cmd = [
				self.ffprobe, "-v", "error",
				"-print_format", "json",
				"-show_streams", "-show_format",
				str(src),
			]
			stdout = await self._run(operation, cmd)
		try:
			probe = json.loads(stdout.decode("utf-8", errors="replace") or "{}")
		except json.JSONDecodeError as e:
			raise AudioProcessingError(operation, "unreadable probe output") from e
		try:
			return parse_probe(probe)
		except AudioProcessingError as e:
			raise AudioProcessingError(operation, e.reason) from e

	async def extract_features(self, audio: bytes) -> AudioFeatures:
		return await self._probe("features", audio)

	async def assess_quality(self, audio: bytes) -> QualityReport:
		return assess_features(await self._probe("quality", audio))

	async def render_waveform(self, audio: bytes, width: int = 800, height: int = 200) -> bytes:
		"""Render a PNG waveform of the clip."""
		self._require_audio(audio)
		if width <= 0 or height <= 0:
			raise ValidationError("size", "width and height must be positive")
		with self._scratch(("waveform-input", "bin"), ("waveform-output", "png")) as (src, dst):
			src.write_bytes(audio)
			cmd = [
				self.ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
				"-i", str(src),
				"-filter_complex", f"aformat=channel_layouts=mono,showwavespic=s={width}x{height}",
				"-frames:v", "1",
				str(dst),
			]
			await self._run("waveform", cmd)
			return self._read_output("waveform", dst)

	async def normalize_loudness(self, audio: bytes, target_db: float = -20) -> bytes:
		"""EBU R128 loudness normalization to ``target_db`` LUFS."""
		self._require_audio(audio)
		with self._scratch(("normalize-input", "bin"), ("normalize-output", "wav")) as (src, dst):
			src.write_bytes(audio)
			cmd = [
				self.ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
				"-i", str(src),
				"-af", f"loudnorm=I={target_db}:TP=-1.5:LRA=11",
				str(dst),
			]
			await self._run("normalize", cmd)
			return self._read_output("normalize", dst)
