from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, Boolean, JSON, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from .db import Base


def _uuid() -> str:
	return uuid.uuid4().hex


class User(Base):
	__tablename__ = "users"
	id = Column(String(64), primary_key=True, default=_uuid)
	username = Column(String(128), unique=True, nullable=False, index=True)
	is_active = Column(Boolean, default=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Sentence(Base):
	"""Practice sentence; owned by the content catalog, read-only here."""
	__tablename__ = "sentences"
	id = Column(String(64), primary_key=True, default=_uuid)
	english_text = Column(Text, nullable=False)
	translation = Column(Text, nullable=True)
	audio_url_us = Column(String(512), nullable=True)
	audio_url_uk = Column(String(512), nullable=True)
	pronunciation_hint = Column(Text, nullable=True)
	cefr_level = Column(String(8), default="A1", nullable=False, index=True)
	is_active = Column(Boolean, default=True, nullable=False)
	usage_count = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PronunciationAttempt(Base):
	"""One scoring event. Append-only: rows are never updated or deleted."""
	__tablename__ = "pronunciation_attempts"
	# Serializes attempt numbering per (user, sentence); writers retry on conflict
	__table_args__ = (
		UniqueConstraint("user_id", "sentence_id", "attempt_number", name="uq_attempt_number"),
		Index("ix_attempts_user_created", "user_id", "created_at"),
	)
	id = Column(String(64), primary_key=True, default=_uuid)
	user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
	sentence_id = Column(String(64), ForeignKey("sentences.id"), nullable=False)
	session_id = Column(String(64), nullable=False)
	attempt_number = Column(Integer, nullable=False)
	target_text = Column(Text, nullable=False)
	user_transcript = Column(Text, nullable=False, default="")
	overall_score = Column(Integer, nullable=False, default=0)
	analysis_results = Column(JSON, nullable=True)
	word_scores = Column(JSON, nullable=True)
	timing_analysis = Column(JSON, nullable=True)
	error_analysis = Column(JSON, nullable=True)
	quality_metrics = Column(JSON, nullable=True)
	audio_file_url = Column(String(512), nullable=True)
	feedback_text = Column(Text, nullable=True)
	feedback_locale = Column(String(16), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	sentence = relationship("Sentence", lazy="joined")


class VoiceSample(Base):
	"""Captured audio context; sibling of an attempt, may have no sentence."""
	__tablename__ = "voice_samples"
	id = Column(String(64), primary_key=True, default=_uuid)
	user_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)
	sentence_id = Column(String(64), ForeignKey("sentences.id"), nullable=True)
	session_id = Column(String(64), nullable=False)
	sample_type = Column(String(64), nullable=False)
	audio_file_url = Column(String(512), nullable=False)
	transcription = Column(Text, nullable=True)
	audio_features = Column(JSON, nullable=True)
	quality_metrics = Column(JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
