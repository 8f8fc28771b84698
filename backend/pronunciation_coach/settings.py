from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
	# Database
	database_url: str = Field(default="sqlite:///./voice.db", validation_alias="DATABASE_URL")

	# Google Cloud speech providers (falls back to application default credentials)
	google_cloud_project: str | None = Field(default=None, validation_alias="GOOGLE_CLOUD_PROJECT")
	google_cloud_key_file: str | None = Field(default=None, validation_alias="GOOGLE_CLOUD_KEY_FILE")
	speech_language_code: str = Field(default="en-US", validation_alias="SPEECH_LANGUAGE_CODE")
	# Canonical PCM rate produced by the transcoder and declared to the recognizer
	speech_sample_rate: int = Field(default=16000, validation_alias="SPEECH_SAMPLE_RATE")
	# Off by default: scoring is punctuation-sensitive
	speech_automatic_punctuation: bool = Field(default=False, validation_alias="SPEECH_AUTOMATIC_PUNCTUATION")
	speech_timeout_seconds: float = Field(default=30.0, validation_alias="SPEECH_TIMEOUT_SECONDS")
	transcription_retries: int = Field(default=1, validation_alias="TRANSCRIPTION_RETRIES")
	transcription_retry_backoff_seconds: float = Field(default=0.5, validation_alias="TRANSCRIPTION_RETRY_BACKOFF")
	tts_voice_name: str = Field(default="en-US-Wavenet-D", validation_alias="TTS_VOICE_NAME")

	# Codec tool
	ffmpeg_binary: str = Field(default="ffmpeg", validation_alias="FFMPEG_BINARY")
	ffprobe_binary: str = Field(default="ffprobe", validation_alias="FFPROBE_BINARY")
	codec_timeout_seconds: float = Field(default=60.0, validation_alias="CODEC_TIMEOUT_SECONDS")

	# Working directories
	temp_dir: str = Field(default="./temp", validation_alias="TEMP_DIR")
	temp_max_age_hours: int = Field(default=24, validation_alias="TEMP_MAX_AGE_HOURS")
	audio_storage_dir: str = Field(default="./media/audio", validation_alias="AUDIO_STORAGE_DIR")
	audio_base_url: str = Field(default="/media/audio", validation_alias="AUDIO_BASE_URL")

	# Scoring / recording
	feedback_locale: str = Field(default="ar", validation_alias="FEEDBACK_LOCALE")
	attempt_number_retries: int = Field(default=3, validation_alias="ATTEMPT_NUMBER_RETRIES")

	# Bearer tokens are issued by the platform; we only verify them
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


@lru_cache
def get_settings() -> Settings:
	return Settings()
