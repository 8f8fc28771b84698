import asyncio
import json
import os
import time
from pathlib import Path

import pytest

from pronunciation_coach.audio import AudioTranscoder, assess_features, parse_probe, quality_score
from pronunciation_coach.errors import AudioProcessingError, ValidationError
from pronunciation_coach.schemas import AudioFeatures


PROBE = {
	"streams": [
		{"codec_type": "video", "codec_name": "png"},
		{
			"codec_type": "audio",
			"codec_name": "pcm_s16le",
			"sample_rate": "16000",
			"channels": 1,
			"duration": "2.500000",
			"bit_rate": "256000",
		},
	],
	"format": {"duration": "2.500000", "bit_rate": "256100"},
}


class TestParseProbe:
	def test_audio_stream(self):
		features = parse_probe(PROBE)
		assert features.sample_rate == 16000
		assert features.channels == 1
		assert features.codec == "pcm_s16le"
		assert features.duration == 2.5
		assert features.bitrate == 256000
		assert features.approximate_size_bytes == 80000

	def test_format_level_fallback(self):
		probe = {
			"streams": [{"codec_type": "audio", "codec_name": "opus", "sample_rate": "48000", "channels": 2}],
			"format": {"duration": "4.0", "bit_rate": "64000"},
		}
		features = parse_probe(probe)
		assert features.duration == 4.0
		assert features.bitrate == 64000

	def test_unknown_bitrate(self):
		probe = {"streams": [{"codec_type": "audio", "sample_rate": "44100", "channels": 2, "bit_rate": "N/A"}]}
		features = parse_probe(probe)
		assert features.bitrate is None
		assert features.approximate_size_bytes == 0

	def test_no_audio_stream(self):
		with pytest.raises(AudioProcessingError) as exc_info:
			parse_probe({"streams": [{"codec_type": "video"}]})
		assert exc_info.value.operation == "probe"


class TestQuality:
	def test_low_quality_clip(self):
		features = AudioFeatures(sample_rate=8000, channels=1, bitrate=32000)
		report = assess_features(features)
		assert report.quality_score <= 25
		assert report.quality_score == 25
		assert report.is_high_quality is False
		assert any("16kHz" in r for r in report.recommendations)
		assert any("128kbps" in r for r in report.recommendations)

	def test_studio_clip(self):
		assert quality_score(48000, 2, 320000) == 100
		assert assess_features(AudioFeatures(sample_rate=48000, channels=2, bitrate=320000)).recommendations == []

	def test_high_quality_threshold(self):
		# 44.1kHz stereo at 160kbps: -10 for bitrate only
		report = assess_features(AudioFeatures(sample_rate=44100, channels=2, bitrate=160000))
		assert report.quality_score == 90
		assert report.is_high_quality is True

	def test_unknown_bitrate_not_penalized(self):
		assert quality_score(44100, 2, None) == 100

	def test_score_floor(self):
		assert quality_score(8000, 6, 8000) == 20
		assert 0 <= quality_score(1, 99, 1) <= 100


@pytest.fixture
def transcoder(settings):
	return AudioTranscoder(settings)


def _temp_files(transcoder):
	return sorted(p.name for p in Path(transcoder.temp_dir).iterdir())


class TestTranscoderCleanup:
	@pytest.mark.asyncio
	async def test_transcode_success_leaves_no_files(self, transcoder):
		seen = []

		async def fake_run(operation, cmd):
			src, dst = Path(cmd[cmd.index("-i") + 1]), Path(cmd[-1])
			seen.extend([src.name, dst.name])
			assert src.read_bytes() == b"RIFFupload"
			dst.write_bytes(b"RIFFpcm")
			return b""

		transcoder._run = fake_run
		result = await transcoder.transcode(b"RIFFupload")

		assert result == b"RIFFpcm"
		assert seen[0].startswith("input_") and seen[0].endswith(".bin")
		assert seen[1].startswith("output_") and seen[1].endswith(".wav")
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_transcode_failure_leaves_no_files(self, transcoder):
		async def failing_run(operation, cmd):
			Path(cmd[-1]).write_bytes(b"partial")
			raise AudioProcessingError(operation, "Invalid data found when processing input")

		transcoder._run = failing_run
		with pytest.raises(AudioProcessingError) as exc_info:
			await transcoder.transcode(b"garbage")

		assert exc_info.value.operation == "transcode"
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_cancellation_leaves_no_files(self, transcoder):
		started = asyncio.Event()

		async def slow_run(operation, cmd):
			started.set()
			await asyncio.sleep(10)
			return b""

		transcoder._run = slow_run
		task = asyncio.create_task(transcoder.transcode(b"RIFFupload"))
		await started.wait()
		assert len(_temp_files(transcoder)) == 1
		task.cancel()
		with pytest.raises(asyncio.CancelledError):
			await task
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_empty_output_is_a_failure(self, transcoder):
		async def silent_run(operation, cmd):
			return b""

		transcoder._run = silent_run
		with pytest.raises(AudioProcessingError):
			await transcoder.transcode(b"RIFFupload")
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_extract_features(self, transcoder):
		async def probe_run(operation, cmd):
			assert cmd[0] == transcoder.ffprobe
			return json.dumps(PROBE).encode()

		transcoder._run = probe_run
		features = await transcoder.extract_features(b"RIFFpcm")
		assert features.sample_rate == 16000
		report = await transcoder.assess_quality(b"RIFFpcm")
		assert report.quality_score == 75
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_probe_without_audio_stream(self, transcoder):
		async def probe_run(operation, cmd):
			return json.dumps({"streams": []}).encode()

		transcoder._run = probe_run
		with pytest.raises(AudioProcessingError) as exc_info:
			await transcoder.extract_features(b"not audio")
		assert exc_info.value.operation == "features"

	@pytest.mark.asyncio
	async def test_empty_audio_rejected(self, transcoder):
		with pytest.raises(ValidationError):
			await transcoder.transcode(b"")
		with pytest.raises(ValidationError):
			await transcoder.render_waveform(b"")
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_waveform_size_validated(self, transcoder):
		with pytest.raises(ValidationError):
			await transcoder.render_waveform(b"RIFF", width=0)


class TestCodecProcess:
	@pytest.mark.asyncio
	async def test_missing_binary(self, settings):
		settings.ffmpeg_binary = "no-such-codec-binary-xyz"
		transcoder = AudioTranscoder(settings)
		with pytest.raises(AudioProcessingError) as exc_info:
			await transcoder.transcode(b"RIFFupload")
		assert "no-such-codec-binary-xyz" in str(exc_info.value)
		# Public message hides the reason
		assert "no-such-codec-binary-xyz" not in exc_info.value.public_message
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_non_zero_exit(self, settings):
		settings.ffmpeg_binary = "false"
		transcoder = AudioTranscoder(settings)
		with pytest.raises(AudioProcessingError) as exc_info:
			await transcoder.normalize_loudness(b"RIFFupload")
		assert exc_info.value.operation == "normalize"
		assert "exit code 1" in str(exc_info.value)
		assert _temp_files(transcoder) == []

	@pytest.mark.asyncio
	async def test_hung_codec_is_killed(self, settings, tmp_path):
		pid_file = tmp_path / "codec.pid"
		script = tmp_path / "hung-ffmpeg"
		script.write_text(f"#!/bin/sh\necho $$ > {pid_file}\nexec sleep 30\n")
		script.chmod(0o755)
		settings.ffmpeg_binary = str(script)
		settings.codec_timeout_seconds = 0.5
		transcoder = AudioTranscoder(settings)

		started = time.monotonic()
		with pytest.raises(AudioProcessingError) as exc_info:
			await transcoder.transcode(b"RIFFupload")

		assert time.monotonic() - started < 10
		assert exc_info.value.operation == "transcode"
		assert "timed out" in str(exc_info.value)
		assert _temp_files(transcoder) == []
		# Killed and reaped: the pid no longer exists, not even as a zombie
		pid = int(pid_file.read_text())
		with pytest.raises(ProcessLookupError):
			os.kill(pid, 0)
