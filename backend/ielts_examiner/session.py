"""
Conversation-mode session driver.

Wraps a ``SessionStateMachine`` with the collaborators it needs and processes
events one at a time: candidate answers, clock ticks and collaborator replies
all mutate state under a single per-session lock. The lock is released while a
collaborator call is in flight, so the machine sits in its waiting phase and a
second answer is rejected rather than queued. Replies carry the generation of
the request that produced them; anything arriving after an abort or time
expiry is dropped by the state machine.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from pydantic import BaseModel

from .dialogue import DialogueCollaborator
from .errors import DialogueFailure, InvalidStateError, ScoringFailure, SpeechFailure, TranscriptionFailure
from .parts import TestPart
from .question_bank import QuestionBank
from .schemas import DialogueRequest, Evaluation, ScoringRequest, TranscriptionResult, Utterance
from .scoring import ScoringCollaborator
from .speech import SpeechCollaborator
from .state_machine import EvaluationStatus, SessionPhase, SessionStateMachine
from .transcription import TranscriptionCollaborator


logger = logging.getLogger(__name__)


class SessionSnapshot(BaseModel):
	session_id: str
	part: int
	part_title: str
	phase: SessionPhase
	started_at: datetime
	completed_at: Optional[datetime] = None
	time_remaining: int
	questions_asked: int
	total_questions: int
	transcript: List[Utterance]
	end_reason: Optional[str] = None
	evaluation_status: EvaluationStatus
	evaluation: Optional[Evaluation] = None
	scoring_error: Optional[str] = None


class SpeakingSession:
	def __init__(
		self,
		*,
		question_bank: QuestionBank,
		dialogue: DialogueCollaborator,
		scoring: ScoringCollaborator,
		transcription: Optional[TranscriptionCollaborator] = None,
		speech: Optional[SpeechCollaborator] = None,
		owner: Optional[str] = None,
		session_id: Optional[str] = None,
		clock_enabled: bool = True,
		tick_seconds: float = 1.0,
		on_finished: Optional[Callable[["SpeakingSession"], Awaitable[None]]] = None,
	) -> None:
		self.owner = owner
		self._machine = SessionStateMachine(question_bank, session_id=session_id)
		self._dialogue = dialogue
		self._scoring = scoring
		self._transcription = transcription
		self._speech = speech
		self._clock_enabled = clock_enabled
		self._tick_seconds = tick_seconds
		self._on_finished = on_finished
		self._lock = asyncio.Lock()
		self._clock_task: Optional[asyncio.Task] = None
		self._scoring_task: Optional[asyncio.Future] = None
		self._finished = False

	@property
	def session_id(self) -> str:
		return self._machine.session_id

	@property
	def machine(self) -> SessionStateMachine:
		return self._machine

	@property
	def phase(self) -> SessionPhase:
		return self._machine.phase

	@property
	def evaluation(self) -> Optional[Evaluation]:
		state = self._machine.state
		return state.evaluation if state is not None else None

	@property
	def completed_at(self) -> Optional[datetime]:
		state = self._machine.state
		return state.completed_at if state is not None else None

	# ------------------------------------------------------------------
	# Events
	# ------------------------------------------------------------------

	async def start(self, part: Union[TestPart, int, str]) -> Utterance:
		async with self._lock:
			opening = self._machine.start(part)
		if self._clock_enabled:
			self._clock_task = asyncio.create_task(self._run_clock())
		return opening

	async def tick(self) -> None:
		async with self._lock:
			request = self._machine.tick()
		await self._settle(request)

	async def record_candidate_utterance(self, text: str) -> Optional[Utterance]:
		"""Record an answer and return the examiner's next line.

		Returns ``None`` when the answer ended the part (scoring has already
		run by the time this returns) or when the reply was discarded because
		the session ended while it was being generated.
		"""
		async with self._lock:
			request = self._machine.record_candidate_utterance(text)
		if isinstance(request, DialogueRequest):
			return await self._request_examiner(request)
		await self._settle(request)
		return None

	async def submit_audio(self, audio: bytes, content_type: str) -> Tuple[TranscriptionResult, Optional[Utterance]]:
		"""Transcribe a recorded answer, then record it.

		Transcription failures propagate and leave the session untouched.
		"""
		if self._transcription is None:
			raise InvalidStateError("No transcription service configured for this session")
		if self.phase is not SessionPhase.AWAITING_CANDIDATE:
			raise InvalidStateError(f"Cannot accept audio while session is {self.phase.value}")
		if not self._transcription.supports_format(content_type):
			raise TranscriptionFailure(f"Unsupported audio format: {content_type}", code="unsupported_format")
		result = await self._transcription.transcribe(audio, content_type)
		examiner = await self.record_candidate_utterance(result.text)
		return result, examiner

	async def finalize(self) -> Optional[Evaluation]:
		"""End the session (if still running) and return its evaluation.

		Safe to call repeatedly or concurrently: scoring runs once and every
		caller receives the same stored Evaluation.
		"""
		async with self._lock:
			request = self._machine.finalize()
		self._stop_clock()
		return await self._settle(request)

	async def abort(self) -> None:
		async with self._lock:
			self._machine.abort()
		self._stop_clock()
		await self._notify_finished()

	async def synthesize(self, text: str, voice_id: Optional[str] = None) -> Optional[bytes]:
		"""Examiner audio for ``text``, or ``None`` when speech is unavailable."""
		if self._speech is None:
			return None
		try:
			return await self._speech.synthesize(text, voice_id)
		except SpeechFailure as e:
			logger.warning("Session %s: speech synthesis failed (%s); continuing without audio", self.session_id, e)
			return None

	async def close(self) -> None:
		self._stop_clock()

	def snapshot(self) -> SessionSnapshot:
		state = self._machine.state
		if state is None:
			raise InvalidStateError("Session has not started")
		return SessionSnapshot(
			session_id=state.session_id,
			part=state.part.value,
			part_title=state.part.policy.title,
			phase=state.phase,
			started_at=state.started_at,
			completed_at=state.completed_at,
			time_remaining=state.time_remaining,
			questions_asked=state.questions_asked,
			total_questions=state.total_questions,
			transcript=list(state.transcript),
			end_reason=state.end_reason.value if state.end_reason else None,
			evaluation_status=state.evaluation_status,
			evaluation=state.evaluation,
			scoring_error=state.scoring_error,
		)

	# ------------------------------------------------------------------
	# Internals
	# ------------------------------------------------------------------

	async def _run_clock(self) -> None:
		while self._machine.phase is not SessionPhase.COMPLETED:
			await asyncio.sleep(self._tick_seconds)
			await self.tick()

	def _stop_clock(self) -> None:
		task = self._clock_task
		if task is not None and not task.done() and task is not asyncio.current_task():
			task.cancel()

	async def _request_examiner(self, request: DialogueRequest) -> Optional[Utterance]:
		try:
			reply = await self._dialogue.next_turn(request)
		except DialogueFailure as e:
			logger.warning("Session %s: dialogue failed (%s); using fallback acknowledgement", self.session_id, e)
			async with self._lock:
				return self._machine.dialogue_failed(request.generation)
		except Exception:
			logger.exception("Session %s: unexpected dialogue error; using fallback acknowledgement", self.session_id)
			async with self._lock:
				return self._machine.dialogue_failed(request.generation)

		async with self._lock:
			state = self._machine.state
			before = len(state.transcript)
			scoring = self._machine.record_examiner_utterance(
				reply.examiner_text,
				test_complete=reply.test_complete,
				generation=request.generation,
			)
			examiner = state.transcript[-1] if len(state.transcript) > before else None
		await self._settle(scoring)
		return examiner

	async def _settle(self, request: Optional[ScoringRequest]) -> Optional[Evaluation]:
		if request is not None:
			self._scoring_task = asyncio.ensure_future(self._score(request))
		if self._scoring_task is not None:
			return await asyncio.shield(self._scoring_task)
		if self._machine.phase is SessionPhase.COMPLETED:
			await self._notify_finished()
		return self.evaluation

	async def _score(self, request: ScoringRequest) -> Optional[Evaluation]:
		try:
			evaluation = await self._scoring.evaluate(request)
		except ScoringFailure as e:
			logger.warning("Session %s: scoring failed [%s] %s", self.session_id, e.code, e)
			async with self._lock:
				self._machine.scoring_failed(request.generation, str(e))
		except Exception as e:
			logger.exception("Session %s: unexpected scoring error", self.session_id)
			async with self._lock:
				self._machine.scoring_failed(request.generation, f"Unexpected scoring error: {e}")
		else:
			async with self._lock:
				self._machine.store_evaluation(request.generation, evaluation)
		await self._notify_finished()
		return self.evaluation

	async def _notify_finished(self) -> None:
		if self._finished:
			return
		self._finished = True
		if self._on_finished is None:
			return
		try:
			await self._on_finished(self)
		except Exception:
			logger.exception("Session %s: on_finished callback failed", self.session_id)
