from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AudioFeatures(BaseModel):
	"""Technical snapshot of a clip as reported by ffprobe."""
	duration: float = 0.0
	sample_rate: int = 0
	channels: int = 0
	codec: Optional[str] = None
	bitrate: Optional[int] = None
	approximate_size_bytes: int = 0


class QualityReport(BaseModel):
	quality_score: int = Field(ge=0, le=100)
	sample_rate: int
	channels: int
	bitrate: Optional[int] = None
	is_high_quality: bool
	recommendations: List[str] = Field(default_factory=list)


class WordScore(BaseModel):
	user_word: str
	target_word: str
	score: float = Field(ge=0.0, le=1.0)
	is_correct: bool


class TimingAnalysis(BaseModel):
	user_word_count: int
	target_word_count: int
	speed_ratio: float
	timing_accuracy: float


class PronunciationAnalysis(BaseModel):
	word_scores: List[WordScore]
	accuracy: float
	timing: TimingAnalysis


class PronunciationError(BaseModel):
	type: str
	word: Optional[str] = None
	issue: str
	suggestion: str


class ErrorAnalysis(BaseModel):
	errors: List[PronunciationError] = Field(default_factory=list)
	total_errors: int = 0
	severity: str = "low"


class AttemptResult(BaseModel):
	attempt_id: str
	attempt_number: int
	overall_score: int
	feedback: str
	analysis: PronunciationAnalysis
	transcription: str


class HistoryEntry(BaseModel):
	id: str
	sentence: str
	translation: Optional[str] = None
	score: int
	transcription: str
	feedback: Optional[str] = None
	date: datetime


class ProgressReport(BaseModel):
	total_attempts: int = 0
	average_score: int = 0
	best_score: int = 0
	progress_trend: float = 0.0
	recommendations: List[str] = Field(default_factory=list)


class PracticeSentence(BaseModel):
	id: str
	text: str
	translation: Optional[str] = None
	audio_url: Optional[str] = None


class PracticeSession(BaseModel):
	session_id: str
	sentences: List[PracticeSentence]
	instructions: str


class VoiceSampleOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: str
	session_id: str
	sample_type: str
	sentence_id: Optional[str] = None
	audio_file_url: str
	transcription: Optional[str] = None
	audio_features: Optional[dict] = None
	quality_metrics: Optional[dict] = None
	created_at: datetime


class AttemptDetail(BaseModel):
	id: str
	sentence_id: str
	attempt_number: int
	target_text: str
	transcription: str
	overall_score: int
	word_scores: List[WordScore]
	timing: Optional[TimingAnalysis] = None
	error_analysis: Optional[ErrorAnalysis] = None
	quality_metrics: Optional[dict] = None
	feedback: Optional[str] = None
	audio_file_url: Optional[str] = None
	created_at: datetime


class VoiceStatistics(BaseModel):
	total_attempts: int = 0
	average_score: int = 0
	best_score: int = 0
	practice_days: int = 0
	total_practice_time: float = 0.0  # minutes
