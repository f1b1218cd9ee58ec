"""
Speaking Test Module
====================

HTTP surface of the IELTS speaking examiner. Two ways to practise:

- Conversation mode: the candidate starts a timed session for one test part,
  answers examiner questions (typed text or recorded audio), receives
  follow-up questions, and gets band scores when the part ends on time or on
  question count.
- Single-answer mode: fetch a random question, transcribe one recording and
  score it directly.

API Endpoints:
- GET  /speaking/parts: part policies
- GET  /speaking/questions/{part}: random practice question
- POST /speaking/sessions: start a conversation session
- GET  /speaking/sessions/{session_id}: session snapshot
- POST /speaking/sessions/{session_id}/answer: record a text answer
- POST /speaking/sessions/{session_id}/audio: transcribe and record an audio answer
- POST /speaking/sessions/{session_id}/finish: end early and score
- POST /speaking/sessions/{session_id}/abort: end without scoring
- POST /speaking/transcribe: transcribe a single recording
- POST /speaking/evaluate: score a single transcription
- POST /speaking/speak: examiner text to MP3 audio
- GET  /speaking/last: the caller's last finished session
"""

from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import SessionLocal, get_db
from ..dialogue import DialogueCollaborator, GeminiDialogue
from ..errors import (
	CollaboratorFailure,
	EmptyUtteranceError,
	InvalidPartError,
	InvalidStateError,
	SpeakingError,
)
from ..models import SpeakingModule
from ..parts import TestPart
from ..question_bank import QuestionBank, StaticQuestionBank
from ..schemas import Evaluation, ScoringRequest, TranscriptionResult, Utterance, utcnow
from ..scoring import GeminiScoring, ScoringCollaborator
from ..session import SessionSnapshot, SpeakingSession
from ..settings import settings
from ..speech import GoogleSpeechSynthesis, SpeechCollaborator
from ..state_machine import SessionPhase
from ..transcription import GoogleSpeechTranscription, TranscriptionCollaborator
from .auth import User, get_current_user


router = APIRouter(prefix="/speaking", tags=["speaking"])

logger = logging.getLogger(__name__)

# ============================================================================
# COLLABORATORS AND SESSION REGISTRY
# ============================================================================

class Collaborators:
	"""External services a speaking session talks to; overridden in tests."""
	def __init__(
		self,
		*,
		question_bank: QuestionBank,
		dialogue: DialogueCollaborator,
		scoring: ScoringCollaborator,
		transcription: TranscriptionCollaborator,
		speech: SpeechCollaborator,
	) -> None:
		self.question_bank = question_bank
		self.dialogue = dialogue
		self.scoring = scoring
		self.transcription = transcription
		self.speech = speech


_question_bank = StaticQuestionBank()


def get_collaborators() -> Collaborators:
	return Collaborators(
		question_bank=_question_bank,
		dialogue=GeminiDialogue(),
		scoring=GeminiScoring(),
		transcription=GoogleSpeechTranscription(),
		speech=GoogleSpeechSynthesis(),
	)


# In-memory only; finished sessions are archived to the database and
# forgotten once FINISHED_SESSION_TTL_SECONDS has passed
_sessions: Dict[str, SpeakingSession] = {}
_active_by_user: Dict[str, str] = {}


def _http_error(exc: SpeakingError) -> HTTPException:
	if isinstance(exc, (InvalidPartError, EmptyUtteranceError)):
		return HTTPException(status_code=400, detail=str(exc))
	if isinstance(exc, InvalidStateError):
		return HTTPException(status_code=409, detail=str(exc))
	if isinstance(exc, CollaboratorFailure):
		return HTTPException(status_code=502, detail={"error": str(exc), "code": exc.code})
	return HTTPException(status_code=500, detail=str(exc))


def _owned_session(session_id: str, user: User) -> SpeakingSession:
	session = _sessions.get(session_id)
	if session is None or session.owner != user.username:
		raise HTTPException(status_code=404, detail="Session not found or expired")
	return session


async def _discard_previous(username: str) -> None:
	"""A user runs one session at a time; starting again drops the old one."""
	previous_id = _active_by_user.pop(username, None)
	previous = _sessions.pop(previous_id, None) if previous_id else None
	if previous is None:
		return
	if previous.phase is not SessionPhase.COMPLETED:
		try:
			await previous.abort()
		except InvalidStateError:
			pass
	await previous.close()


def _evict_finished(now: Optional[datetime] = None) -> int:
	"""Drop sessions that completed more than the TTL ago; `/last` still serves them."""
	cutoff = (now or utcnow()) - timedelta(seconds=settings.finished_session_ttl_seconds)
	stale = [
		session_id
		for session_id, session in _sessions.items()
		if session.completed_at is not None and session.completed_at <= cutoff
	]
	for session_id in stale:
		session = _sessions.pop(session_id)
		if _active_by_user.get(session.owner) == session_id:
			del _active_by_user[session.owner]
	if stale:
		logger.debug("Evicted %d finished session(s)", len(stale))
	return len(stale)


def _write_archive(owner: str, snapshot: SessionSnapshot) -> None:
	db = SessionLocal()
	try:
		row = db.get(SpeakingModule, owner) or SpeakingModule(username=owner)
		row.last_session_id = snapshot.session_id
		row.test_part = snapshot.part
		row.end_reason = snapshot.end_reason
		row.questions_asked = snapshot.questions_asked
		row.evaluation_status = snapshot.evaluation_status.value
		row.overall_band = snapshot.evaluation.scores.overall if snapshot.evaluation else None
		row.last_session_json = snapshot.model_dump_json()
		db.merge(row)
		db.commit()
	finally:
		db.close()


async def _archive(session: SpeakingSession) -> None:
	snapshot = session.snapshot()
	# Blocking SQLAlchemy work runs in the threadpool
	await run_in_threadpool(_write_archive, session.owner, snapshot)
	logger.info("Archived session %s for %s (%s)", snapshot.session_id, session.owner, snapshot.evaluation_status.value)


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class PartInfo(BaseModel):
	part: int
	title: str
	duration_seconds: int
	total_questions: int
	style: str


class QuestionResponse(BaseModel):
	part: int
	question: str


class StartSessionRequest(BaseModel):
	part: Union[int, str] = 1
	speak: bool = False


class AnswerRequest(BaseModel):
	text: str
	speak: bool = False


class TurnResponse(BaseModel):
	"""
	Session state after an event, plus what the examiner said in response.

	``examiner`` is empty when the event ended the part; the evaluation (or
	the reason there is none) is then in ``session``.
	"""
	session: SessionSnapshot
	examiner: Optional[Utterance] = None
	examiner_audio_base64: Optional[str] = None
	transcription: Optional[TranscriptionResult] = None


class EvaluateRequest(BaseModel):
	transcription: str
	part: Union[int, str] = 1


class SpeakRequest(BaseModel):
	text: str
	voice: Optional[str] = None


async def _turn_response(
	session: SpeakingSession,
	examiner: Optional[Utterance],
	*,
	speak: bool,
	transcription: Optional[TranscriptionResult] = None,
) -> TurnResponse:
	audio_b64: Optional[str] = None
	if speak and examiner is not None:
		audio = await session.synthesize(examiner.text)
		if audio:
			audio_b64 = base64.b64encode(audio).decode("ascii")
	return TurnResponse(
		session=session.snapshot(),
		examiner=examiner,
		examiner_audio_base64=audio_b64,
		transcription=transcription,
	)


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.get("/parts", response_model=List[PartInfo])
async def list_parts():
	return [
		PartInfo(
			part=part.value,
			title=part.policy.title,
			duration_seconds=part.policy.duration_seconds,
			total_questions=part.policy.total_questions,
			style=part.policy.style.value,
		)
		for part in TestPart
	]


@router.get("/questions/{part}", response_model=QuestionResponse)
async def random_question(part: str, user: User = Depends(get_current_user), collaborators: Collaborators = Depends(get_collaborators)):
	try:
		test_part = TestPart.parse(part)
	except InvalidPartError as e:
		raise _http_error(e)
	return QuestionResponse(part=test_part.value, question=collaborators.question_bank.pick(test_part))


@router.post("/sessions", response_model=TurnResponse)
async def start_session(
	req: StartSessionRequest,
	user: User = Depends(get_current_user),
	collaborators: Collaborators = Depends(get_collaborators),
):
	"""Start a timed conversation session for one test part.

	Any session the user still has open is aborted first. The response holds
	the examiner's greeting and first question; the part clock starts
	immediately.

	Raises:
		HTTPException: 400 if the part is not 1, 2 or 3
	"""
	try:
		test_part = TestPart.parse(req.part)
	except InvalidPartError as e:
		raise _http_error(e)
	_evict_finished()
	await _discard_previous(user.username)

	session = SpeakingSession(
		question_bank=collaborators.question_bank,
		dialogue=collaborators.dialogue,
		scoring=collaborators.scoring,
		transcription=collaborators.transcription,
		speech=collaborators.speech,
		owner=user.username,
		clock_enabled=settings.speaking_clock_enabled,
		on_finished=_archive,
	)
	opening = await session.start(test_part)
	_sessions[session.session_id] = session
	_active_by_user[user.username] = session.session_id
	return await _turn_response(session, opening, speak=req.speak)


@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(session_id: str, user: User = Depends(get_current_user)):
	return _owned_session(session_id, user).snapshot()


@router.post("/sessions/{session_id}/answer", response_model=TurnResponse)
async def answer(session_id: str, req: AnswerRequest, user: User = Depends(get_current_user)):
	"""Record the candidate's answer and return the examiner's reply.

	Raises:
		HTTPException: 400 for a blank answer, 409 while the examiner is still
			replying or after the session ended
	"""
	session = _owned_session(session_id, user)
	try:
		examiner = await session.record_candidate_utterance(req.text)
	except SpeakingError as e:
		raise _http_error(e)
	return await _turn_response(session, examiner, speak=req.speak)


@router.post("/sessions/{session_id}/audio", response_model=TurnResponse)
async def answer_audio(
	session_id: str,
	audio: UploadFile = File(...),
	speak: bool = False,
	user: User = Depends(get_current_user),
):
	"""Transcribe a recorded answer, then handle it like a text answer.

	A transcription failure is reported as 502 and leaves the session waiting
	for the same answer.
	"""
	session = _owned_session(session_id, user)
	payload = await audio.read()
	try:
		transcription, examiner = await session.submit_audio(payload, audio.content_type or "")
	except SpeakingError as e:
		raise _http_error(e)
	return await _turn_response(session, examiner, speak=speak, transcription=transcription)


@router.post("/sessions/{session_id}/finish", response_model=SessionSnapshot)
async def finish_session(session_id: str, user: User = Depends(get_current_user)):
	session = _owned_session(session_id, user)
	await session.finalize()
	return session.snapshot()


@router.post("/sessions/{session_id}/abort", response_model=SessionSnapshot)
async def abort_session(session_id: str, user: User = Depends(get_current_user)):
	session = _owned_session(session_id, user)
	try:
		await session.abort()
	except SpeakingError as e:
		raise _http_error(e)
	return session.snapshot()


@router.post("/transcribe", response_model=TranscriptionResult)
async def transcribe(
	audio: UploadFile = File(...),
	user: User = Depends(get_current_user),
	collaborators: Collaborators = Depends(get_collaborators),
):
	payload = await audio.read()
	try:
		return await collaborators.transcription.transcribe(payload, audio.content_type or "")
	except SpeakingError as e:
		raise _http_error(e)


@router.post("/evaluate", response_model=Evaluation)
async def evaluate(
	req: EvaluateRequest,
	user: User = Depends(get_current_user),
	collaborators: Collaborators = Depends(get_collaborators),
):
	"""Score a single transcribed answer outside of a conversation session."""
	text = (req.transcription or "").strip()
	try:
		test_part = TestPart.parse(req.part)
		if not text:
			raise EmptyUtteranceError("No transcription provided")
		return await collaborators.scoring.evaluate(
			ScoringRequest(session_id="single-answer", generation=0, part=test_part, transcript_text=text)
		)
	except SpeakingError as e:
		raise _http_error(e)


@router.post("/speak")
async def speak(
	req: SpeakRequest,
	user: User = Depends(get_current_user),
	collaborators: Collaborators = Depends(get_collaborators),
):
	try:
		audio = await collaborators.speech.synthesize(req.text, req.voice)
	except SpeakingError as e:
		raise _http_error(e)
	return Response(content=audio, media_type="audio/mpeg")


@router.get("/last")
async def last_session(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
	row = db.get(SpeakingModule, user.username)
	if row is None or not row.last_session_json:
		raise HTTPException(status_code=404, detail="No finished speaking session")
	return {
		"session_id": row.last_session_id,
		"part": row.test_part,
		"end_reason": row.end_reason,
		"questions_asked": row.questions_asked,
		"evaluation_status": row.evaluation_status,
		"overall_band": row.overall_band,
		"session": json.loads(row.last_session_json),
	}
