"""Shared fixtures: an isolated SQLite database and in-process fake collaborators.

Environment variables are set before the package is imported because settings
and the database engine are created at import time.
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from typing import List, Optional

_tmpdir = tempfile.mkdtemp(prefix="ielts-examiner-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmpdir}/test.db"
os.environ["SPEAKING_CLOCK_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"

import pytest

from ielts_examiner.dialogue import DialogueCollaborator
from ielts_examiner.errors import DialogueFailure, SpeechFailure, TranscriptionFailure
from ielts_examiner.parts import TestPart
from ielts_examiner.question_bank import QuestionBank
from ielts_examiner.schemas import (
	DialogueReply,
	DialogueRequest,
	Evaluation,
	ScoringRequest,
	TranscriptionResult,
	TranscriptionSegment,
)
from ielts_examiner.scoring import ScoringCollaborator
from ielts_examiner.session import SpeakingSession
from ielts_examiner.speech import SpeechCollaborator
from ielts_examiner.transcription import TranscriptionCollaborator


def evaluation_payload(fc=6.0, lr=6.5, gr=7.0, pr=6.0, overall=9.0) -> dict:
	return {
		"scores": {
			"fluency_coherence": fc,
			"lexical_resource": lr,
			"grammatical_range": gr,
			"pronunciation": pr,
			"overall": overall,
		},
		"detailed_analysis": {
			"fluency_coherence": {"assessment": "Speaks at length", "strengths": ["few pauses"], "weaknesses": ["repetition"]},
			"lexical_resource": {"assessment": "Adequate range", "strengths": ["idioms"], "weaknesses": ["collocations"]},
			"grammatical_range": {"assessment": "Mixed structures", "strengths": ["conditionals"], "weaknesses": ["articles"]},
			"pronunciation": {"assessment": "Generally clear", "strengths": ["stress"], "weaknesses": ["intonation"]},
		},
		"recommendations": ["Use more linkers", "Extend answers", "Practise intonation"],
		"band_descriptor": "Competent user",
	}


def make_evaluation(**scores) -> Evaluation:
	return Evaluation.model_validate(evaluation_payload(**scores))


class FixedQuestionBank(QuestionBank):
	def pick(self, part: TestPart) -> str:
		return f"Question for part {part.value}"


class FakeDialogue(DialogueCollaborator):
	"""Replies "Follow-up N?"; the 1-based calls listed in ``fail_on`` raise."""
	def __init__(self, *, fail_on=(), complete_on=()) -> None:
		self.requests: List[DialogueRequest] = []
		self.fail_on = set(fail_on)
		self.complete_on = set(complete_on)
		self.gate: Optional[asyncio.Event] = None

	async def next_turn(self, request: DialogueRequest) -> DialogueReply:
		self.requests.append(request)
		call = len(self.requests)
		if self.gate is not None:
			await self.gate.wait()
		if call in self.fail_on:
			raise DialogueFailure("dialogue service down", code="api_error")
		return DialogueReply(examiner_text=f"Follow-up {call}?", test_complete=call in self.complete_on)


class FakeScoring(ScoringCollaborator):
	def __init__(self, *, evaluation: Optional[Evaluation] = None, error: Optional[Exception] = None) -> None:
		self.requests: List[ScoringRequest] = []
		self.evaluation = evaluation or make_evaluation()
		self.error = error

	async def evaluate(self, request: ScoringRequest) -> Evaluation:
		self.requests.append(request)
		await asyncio.sleep(0)
		if self.error is not None:
			raise self.error
		return self.evaluation


class FakeSpeech(SpeechCollaborator):
	def __init__(self, *, fail: bool = False) -> None:
		self.texts: List[str] = []
		self.fail = fail

	async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
		self.texts.append(text)
		if self.fail:
			raise SpeechFailure("tts down", code="api_error")
		return b"ID3-mp3-bytes"


class FakeTranscription(TranscriptionCollaborator):
	def __init__(self, *, text: str = "I live in a small coastal town.", fail: bool = False, formats=("audio/wav", "audio/webm")) -> None:
		self.calls: List[tuple] = []
		self.text = text
		self.fail = fail
		self.formats = set(formats)

	def supports_format(self, content_type: str) -> bool:
		return content_type.split(";")[0].strip() in self.formats

	async def transcribe(self, audio: bytes, content_type: str) -> TranscriptionResult:
		self.calls.append((audio, content_type))
		if self.fail:
			raise TranscriptionFailure("speech api down", code="api_error")
		return TranscriptionResult(
			text=self.text,
			language="en-US",
			duration=2.5,
			segments=[TranscriptionSegment(start=0.0, end=2.5, text=self.text)],
		)


@pytest.fixture
def anyio_backend():
	return "asyncio"


@pytest.fixture
def question_bank() -> FixedQuestionBank:
	return FixedQuestionBank()


@pytest.fixture
def dialogue() -> FakeDialogue:
	return FakeDialogue()


@pytest.fixture
def scoring() -> FakeScoring:
	return FakeScoring()


@pytest.fixture
def speech() -> FakeSpeech:
	return FakeSpeech()


@pytest.fixture
def transcription() -> FakeTranscription:
	return FakeTranscription()


@pytest.fixture
def make_session(question_bank, dialogue, scoring, speech, transcription):
	def _make(**overrides) -> SpeakingSession:
		kwargs = dict(
			question_bank=question_bank,
			dialogue=dialogue,
			scoring=scoring,
			transcription=transcription,
			speech=speech,
			owner="tester",
			clock_enabled=False,
		)
		kwargs.update(overrides)
		return SpeakingSession(**kwargs)
	return _make
