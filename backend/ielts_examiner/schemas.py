"""
Data contracts shared by the session core, the collaborators and the API.
"""
from __future__ import annotations

import enum
import math
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .parts import TestPart


CRITERIA: Tuple[str, ...] = (
	"fluency_coherence",
	"lexical_resource",
	"grammatical_range",
	"pronunciation",
)


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def round_half_band(value: float) -> float:
	"""Round to the nearest half band; quarter points round up as in IELTS."""
	return math.floor(value * 2 + 0.5) / 2


class SpeakerRole(str, enum.Enum):
	CANDIDATE = "candidate"
	EXAMINER = "examiner"


class Utterance(BaseModel):
	model_config = ConfigDict(frozen=True)

	role: SpeakerRole
	text: str
	timestamp: datetime = Field(default_factory=utcnow)


# ============================================================================
# COLLABORATOR CONTRACTS
# ============================================================================

class DialogueRequest(BaseModel):
	model_config = ConfigDict(frozen=True)

	session_id: str
	generation: int
	part: TestPart
	latest_candidate_text: str
	transcript: Tuple[Utterance, ...]
	questions_asked: int
	total_questions: int
	time_remaining: int


class DialogueReply(BaseModel):
	examiner_text: str
	test_complete: bool = False


class ScoringRequest(BaseModel):
	model_config = ConfigDict(frozen=True)

	session_id: str
	generation: int
	part: TestPart
	transcript_text: str


class TranscriptionSegment(BaseModel):
	start: float
	end: float
	text: str


class TranscriptionResult(BaseModel):
	text: str
	language: Optional[str] = None
	duration: Optional[float] = None
	segments: List[TranscriptionSegment] = Field(default_factory=list)


# ============================================================================
# EVALUATION
# ============================================================================

class CriterionAnalysis(BaseModel):
	model_config = ConfigDict(frozen=True)

	assessment: str = ""
	strengths: List[str] = Field(default_factory=list)
	weaknesses: List[str] = Field(default_factory=list)


class BandScores(BaseModel):
	"""
	Four IELTS criterion bands plus their overall band.

	The overall band is always derived from the four criteria, whatever value
	the scoring model reported for it.
	"""
	model_config = ConfigDict(frozen=True)

	fluency_coherence: float = Field(ge=0, le=9)
	lexical_resource: float = Field(ge=0, le=9)
	grammatical_range: float = Field(ge=0, le=9)
	pronunciation: float = Field(ge=0, le=9)
	overall: float = Field(ge=0, le=9)

	@model_validator(mode="before")
	@classmethod
	def _derive_overall(cls, data: Any) -> Any:
		if not isinstance(data, dict):
			return data
		try:
			bands = [float(data[name]) for name in CRITERIA]
		except (KeyError, TypeError, ValueError):
			# Field validation reports the offending criterion
			return data
		if not all(math.isfinite(band) for band in bands):
			raise ValueError("Criterion bands must be finite numbers")
		if not all(0 <= band <= 9 for band in bands):
			return data
		return {**data, "overall": round_half_band(sum(bands) / len(bands))}


class DetailedAnalysis(BaseModel):
	model_config = ConfigDict(frozen=True)

	fluency_coherence: CriterionAnalysis = Field(default_factory=CriterionAnalysis)
	lexical_resource: CriterionAnalysis = Field(default_factory=CriterionAnalysis)
	grammatical_range: CriterionAnalysis = Field(default_factory=CriterionAnalysis)
	pronunciation: CriterionAnalysis = Field(default_factory=CriterionAnalysis)


class Evaluation(BaseModel):
	model_config = ConfigDict(frozen=True)

	scores: BandScores
	detailed_analysis: DetailedAnalysis = Field(default_factory=DetailedAnalysis)
	recommendations: List[str] = Field(default_factory=list)
	band_descriptor: str = ""
