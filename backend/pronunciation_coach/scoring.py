"""
Pronunciation Scoring
=====================

Word-by-word comparison of a recognized transcript against the target
sentence. Everything in this module is pure: the same inputs always give the
same output, and nothing here touches audio, the network or the database.

Algorithm:
1. Lowercase both strings and split on whitespace (punctuation is kept, so
   "today." and "today" are different words).
2. Compare position by position, padding the shorter side with "".
3. Similarity is 1 - levenshtein / max(len) per position; a word is correct
   when its similarity is strictly above 0.8.
4. Overall score = round((accuracy * 0.7 + timing_accuracy * 0.3) * 100).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import Levenshtein

from .errors import ValidationError
from .schemas import ErrorAnalysis, PronunciationAnalysis, PronunciationError, TimingAnalysis, WordScore


CORRECT_THRESHOLD = 0.8
WORD_WEIGHT = 0.7
TIMING_WEIGHT = 0.3
FAST_SPEED_RATIO = 1.5
SLOW_SPEED_RATIO = 0.5
MAX_FEEDBACK_WORDS = 3

DEFAULT_LOCALE = "en"

# Keyed by language tag. "improve" receives the comma-joined words.
FEEDBACK_TEMPLATES: Dict[str, Dict[str, str]] = {
	"ar": {
		"perfect": "ممتاز! نطقك دقيق جداً. استمر على هذا النحو!",
		"improve": "تحتاج إلى تحسين نطق الكلمات التالية: {words}. ركز على النطق الصحيح وحاول مرة أخرى.",
		"extra": "نطقت كلمات إضافية غير موجودة في الجملة. اقرأ الجملة المعروضة فقط وحاول مرة أخرى.",
	},
	"en": {
		"perfect": "Excellent! Your pronunciation is very accurate. Keep it up!",
		"improve": "You need to improve the pronunciation of these words: {words}. Focus on the correct pronunciation and try again.",
		"extra": "Extra words were detected that are not in the sentence. Read only the sentence shown and try again.",
	},
}


def levenshtein_distance(s1: str, s2: str) -> int:
	"""Classic edit distance (insert, delete, substitute all cost 1)."""
	return Levenshtein.distance(s1, s2)


def word_similarity(user_word: str, target_word: str) -> float:
	"""Normalized edit-distance similarity in [0, 1]."""
	if user_word == target_word:
		return 1.0
	if not user_word or not target_word:
		return 0.0
	distance = levenshtein_distance(user_word, target_word)
	return 1 - distance / max(len(user_word), len(target_word))


def tokenize(text: str) -> List[str]:
	return (text or "").lower().split()


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def resolve_locale(locale: Optional[str]) -> str:
	"""Map a language tag ("ar", "ar-EG", "en_US") onto a known template set."""
	if not locale:
		return DEFAULT_LOCALE
	tag = locale.replace("_", "-").lower()
	if tag in FEEDBACK_TEMPLATES:
		return tag
	primary = tag.split("-", 1)[0]
	return primary if primary in FEEDBACK_TEMPLATES else DEFAULT_LOCALE


@dataclass(frozen=True)
class ScoringOutcome:
	analysis: PronunciationAnalysis
	overall_score: int
	feedback: str
	locale: str
	error_analysis: ErrorAnalysis


class PronunciationScorer:
	def __init__(self, feedback_locale: str = DEFAULT_LOCALE) -> None:
		self.feedback_locale = resolve_locale(feedback_locale)

	def score(self, user_transcript: str, target_text: str) -> PronunciationAnalysis:
		target_words = tokenize(target_text)
		if not target_words:
			raise ValidationError("target_text", "must contain at least one word")
		user_words = tokenize(user_transcript)

		length = max(len(user_words), len(target_words))
		word_scores: List[WordScore] = []
		total = 0.0
		for i in range(length):
			user_word = user_words[i] if i < len(user_words) else ""
			target_word = target_words[i] if i < len(target_words) else ""
			similarity = word_similarity(user_word, target_word)
			word_scores.append(
				WordScore(
					user_word=user_word,
					target_word=target_word,
					score=similarity,
					is_correct=similarity > CORRECT_THRESHOLD,
				)
			)
			total += similarity

		return PronunciationAnalysis(
			word_scores=word_scores,
			accuracy=total / length,
			timing=self.analyze_timing(user_transcript, target_text),
		)

	def analyze_timing(self, user_transcript: str, target_text: str) -> TimingAnalysis:
		user_count = len((user_transcript or "").split())
		target_count = len((target_text or "").split())
		if target_count <= 0:
			raise ValidationError("target_text", "word count must be positive")
		# |1 - |delta| / target| exceeds 1 once the user says more than twice
		# the target's words; clamp so the overall score stays within 0..100
		raw = abs(1 - abs(user_count - target_count) / target_count)
		return TimingAnalysis(
			user_word_count=user_count,
			target_word_count=target_count,
			speed_ratio=user_count / target_count,
			timing_accuracy=min(1.0, max(0.0, raw)),
		)

	def overall_score(self, analysis: PronunciationAnalysis) -> int:
		combined = analysis.accuracy * WORD_WEIGHT + analysis.timing.timing_accuracy * TIMING_WEIGHT
		return max(0, min(100, round_half_up(combined * 100)))

	def feedback(self, analysis: PronunciationAnalysis, locale: Optional[str] = None) -> str:
		templates = FEEDBACK_TEMPLATES[resolve_locale(locale) if locale else self.feedback_locale]
		low_words = [ws.target_word for ws in analysis.word_scores if ws.score < CORRECT_THRESHOLD]
		if not low_words:
			return templates["perfect"]
		# Padding positions (user said extra words) have no target word to name
		named = [w for w in low_words if w][:MAX_FEEDBACK_WORDS]
		if not named:
			return templates["extra"]
		return templates["improve"].format(words=", ".join(named))

	def error_analysis(self, analysis: PronunciationAnalysis) -> ErrorAnalysis:
		errors: List[PronunciationError] = []
		for ws in analysis.word_scores:
			if ws.score < CORRECT_THRESHOLD:
				errors.append(
					PronunciationError(
						type="pronunciation",
						word=ws.target_word,
						issue="Incorrect pronunciation",
						suggestion="Practice this word slowly and listen to the correct pronunciation",
					)
				)

		speed_ratio = analysis.timing.speed_ratio
		if speed_ratio > FAST_SPEED_RATIO:
			errors.append(
				PronunciationError(
					type="speed",
					issue="Speaking too fast",
					suggestion="Slow down your speech for better clarity",
				)
			)
		elif speed_ratio < SLOW_SPEED_RATIO:
			errors.append(
				PronunciationError(
					type="speed",
					issue="Speaking too slow",
					suggestion="Try to speak with more natural rhythm",
				)
			)

		return ErrorAnalysis(errors=errors, total_errors=len(errors), severity=severity_for(len(errors)))

	def evaluate(self, user_transcript: str, target_text: str, locale: Optional[str] = None) -> ScoringOutcome:
		analysis = self.score(user_transcript, target_text)
		resolved = resolve_locale(locale) if locale else self.feedback_locale
		return ScoringOutcome(
			analysis=analysis,
			overall_score=self.overall_score(analysis),
			feedback=self.feedback(analysis, resolved),
			locale=resolved,
			error_analysis=self.error_analysis(analysis),
		)


def severity_for(error_count: int) -> str:
	if error_count > 3:
		return "high"
	if error_count >= 1:
		return "medium"
	return "low"
