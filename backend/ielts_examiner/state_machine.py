"""
Speaking Session State Machine
==============================

Owns the state of one IELTS speaking part: time budget, answer count,
transcript and completion. Every transition is synchronous; operations that
need an external service return the request the caller must send (a
``DialogueRequest`` or ``ScoringRequest``) instead of performing I/O.

Lifecycle::

	NotStarted -> AwaitingCandidate <-> AwaitingExaminer -> Completed

A part ends on whichever comes first: the answer count reaching the part's
target, or the clock reaching zero. Finalisation (building the scoring
request) happens at most once per session whatever triggered it.

Replies from the dialogue and scoring services are matched against the
session's generation counter. The counter moves forward whenever a new
dialogue request is issued and when the session completes, so replies that
arrive late (after an abort or time expiry) are discarded.
"""
from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Union

from .errors import EmptyUtteranceError, InvalidStateError
from .parts import TestPart
from .question_bank import QuestionBank
from .schemas import (
	DialogueRequest,
	Evaluation,
	ScoringRequest,
	SpeakerRole,
	Utterance,
	utcnow,
)


logger = logging.getLogger(__name__)

FALLBACK_ACKNOWLEDGEMENT = "Thank you. Let's continue."


class SessionPhase(str, enum.Enum):
	NOT_STARTED = "not_started"
	AWAITING_CANDIDATE = "awaiting_candidate"
	AWAITING_EXAMINER = "awaiting_examiner"
	COMPLETED = "completed"


class EvaluationStatus(str, enum.Enum):
	NONE = "none"
	SKIPPED = "skipped"
	PENDING = "pending"
	SCORED = "scored"
	FAILED = "failed"


class EndReason(str, enum.Enum):
	QUESTIONS = "questions"
	TIME = "time"
	EXAMINER = "examiner"
	FINISHED = "finished"
	ABORTED = "aborted"


class SessionState:
	"""
	Mutable state of a started session.

	Attributes:
		session_id: Identifier shared with every request the session issues
		part: Active test part
		started_at: When the opening question was asked
		time_remaining: Seconds left on the part's clock, never negative
		questions_asked: Candidate answers recorded so far
		transcript: Examiner and candidate utterances in order
		phase: Current phase of the lifecycle
		end_reason: What completed the session, once completed
		generation: Counter used to reject stale collaborator replies
		finalized: Whether finalisation already ran
		evaluation_status: Progress of the scoring request
		evaluation: Stored evaluation once scoring succeeded
		scoring_error: Message of the scoring failure, if any
	"""
	def __init__(self, session_id: str, part: TestPart, started_at: datetime) -> None:
		policy = part.policy
		self.session_id: str = session_id
		self.part: TestPart = part
		self.started_at: datetime = started_at
		self.completed_at: Optional[datetime] = None
		self.time_remaining: int = policy.duration_seconds
		self.questions_asked: int = 0
		self._total_questions: int = policy.total_questions
		self.transcript: List[Utterance] = []
		self.phase: SessionPhase = SessionPhase.AWAITING_CANDIDATE
		self.end_reason: Optional[EndReason] = None
		self.generation: int = 0
		self.finalized: bool = False
		self.evaluation_status: EvaluationStatus = EvaluationStatus.NONE
		self.evaluation: Optional[Evaluation] = None
		self.scoring_error: Optional[str] = None

	@property
	def total_questions(self) -> int:
		return self._total_questions

	@property
	def completed(self) -> bool:
		return self.phase is SessionPhase.COMPLETED

	def candidate_text(self) -> str:
		return "\n".join(u.text for u in self.transcript if u.role is SpeakerRole.CANDIDATE)


class SessionStateMachine:
	def __init__(
		self,
		question_bank: QuestionBank,
		*,
		session_id: Optional[str] = None,
		clock: Callable[[], datetime] = utcnow,
	) -> None:
		self.session_id = session_id or uuid.uuid4().hex
		self._bank = question_bank
		self._clock = clock
		self._state: Optional[SessionState] = None

	@property
	def state(self) -> Optional[SessionState]:
		return self._state

	@property
	def phase(self) -> SessionPhase:
		if self._state is None:
			return SessionPhase.NOT_STARTED
		return self._state.phase

	# ------------------------------------------------------------------
	# Transitions
	# ------------------------------------------------------------------

	def start(self, part: Union[TestPart, int, str]) -> Utterance:
		"""Open the part and return the examiner's greeting plus first question.

		Raises:
			InvalidPartError: If ``part`` is not Part 1, 2 or 3
			InvalidStateError: If the session was already started
		"""
		if self._state is not None:
			raise InvalidStateError("Session already started")
		test_part = TestPart.parse(part)
		self._state = SessionState(self.session_id, test_part, self._clock())
		opening = self._append(SpeakerRole.EXAMINER, self._bank.opening(test_part))
		logger.info(
			"Session %s started: part %d, %d question(s), %ds",
			self.session_id, test_part.value, self._state.total_questions, self._state.time_remaining,
		)
		return opening

	def tick(self) -> Optional[ScoringRequest]:
		"""Advance the clock by one second; no-op unless the session is running."""
		state = self._state
		if state is None or state.completed:
			return None
		state.time_remaining = max(0, state.time_remaining - 1)
		if state.time_remaining == 0:
			return self._complete(EndReason.TIME)
		return None

	def record_candidate_utterance(self, text: str) -> Union[DialogueRequest, ScoringRequest, None]:
		"""Record an answer and return the follow-up request it triggers.

		Returns a ``DialogueRequest`` while the part continues, the
		``ScoringRequest`` when this answer was the last one, or ``None`` when
		the last answer leaves nothing to score.

		Raises:
			InvalidStateError: Unless the session is awaiting the candidate
			EmptyUtteranceError: If ``text`` is blank
		"""
		state = self._require_phase(SessionPhase.AWAITING_CANDIDATE, "record a candidate response")
		cleaned = (text or "").strip()
		if not cleaned:
			raise EmptyUtteranceError("Candidate response is empty")
		self._append(SpeakerRole.CANDIDATE, cleaned)
		state.questions_asked += 1
		if state.questions_asked >= state.total_questions:
			return self._complete(EndReason.QUESTIONS)
		state.phase = SessionPhase.AWAITING_EXAMINER
		state.generation += 1
		return DialogueRequest(
			session_id=state.session_id,
			generation=state.generation,
			part=state.part,
			latest_candidate_text=cleaned,
			transcript=tuple(state.transcript),
			questions_asked=state.questions_asked,
			total_questions=state.total_questions,
			time_remaining=state.time_remaining,
		)

	def record_examiner_utterance(
		self,
		text: str,
		*,
		test_complete: bool = False,
		generation: Optional[int] = None,
	) -> Optional[ScoringRequest]:
		"""Apply the examiner's reply to the last candidate answer.

		A reply tagged with an outdated ``generation`` is dropped without
		touching the session. When the dialogue service reports the test as
		complete the session completes and the scoring request is returned.
		"""
		if generation is not None and self._is_stale(generation):
			logger.debug("Session %s: dropping stale examiner reply (generation %s)", self.session_id, generation)
			return None
		state = self._require_phase(SessionPhase.AWAITING_EXAMINER, "record an examiner reply")
		self._append(SpeakerRole.EXAMINER, (text or "").strip() or FALLBACK_ACKNOWLEDGEMENT)
		if test_complete:
			return self._complete(EndReason.EXAMINER)
		state.phase = SessionPhase.AWAITING_CANDIDATE
		return None

	def dialogue_failed(self, generation: int) -> Optional[Utterance]:
		"""Stand in for a failed examiner reply with a generic acknowledgement."""
		if self._is_stale(generation):
			return None
		state = self._require_phase(SessionPhase.AWAITING_EXAMINER, "recover from a dialogue failure")
		utterance = self._append(SpeakerRole.EXAMINER, FALLBACK_ACKNOWLEDGEMENT)
		state.phase = SessionPhase.AWAITING_CANDIDATE
		return utterance

	def finalize(self) -> Optional[ScoringRequest]:
		"""Complete the session and build its scoring request, once.

		Later calls, aborted sessions and sessions without any candidate
		text return ``None``.
		"""
		state = self._state
		if state is None:
			raise InvalidStateError("Session has not started")
		if state.finalized or state.end_reason is EndReason.ABORTED:
			return None
		if not state.completed:
			self._mark_completed(EndReason.FINISHED)
		state.finalized = True
		transcript_text = state.candidate_text()
		if not transcript_text:
			state.evaluation_status = EvaluationStatus.SKIPPED
			logger.info("Session %s finalised without candidate speech; scoring skipped", self.session_id)
			return None
		state.evaluation_status = EvaluationStatus.PENDING
		return ScoringRequest(
			session_id=state.session_id,
			generation=state.generation,
			part=state.part,
			transcript_text=transcript_text,
		)

	def store_evaluation(self, generation: int, evaluation: Evaluation) -> bool:
		state = self._pending_scoring(generation)
		if state is None:
			return False
		state.evaluation = evaluation
		state.evaluation_status = EvaluationStatus.SCORED
		logger.info("Session %s scored: overall band %.1f", self.session_id, evaluation.scores.overall)
		return True

	def scoring_failed(self, generation: int, error: str) -> bool:
		state = self._pending_scoring(generation)
		if state is None:
			return False
		state.scoring_error = error
		state.evaluation_status = EvaluationStatus.FAILED
		return True

	def abort(self) -> None:
		"""End the session without scoring; in-flight replies become stale.

		Raises:
			InvalidStateError: If the session has not started or already completed
		"""
		state = self._state
		if state is None:
			raise InvalidStateError("Session has not started")
		if state.completed:
			raise InvalidStateError("Session already completed")
		self._mark_completed(EndReason.ABORTED)

	# ------------------------------------------------------------------
	# Helpers
	# ------------------------------------------------------------------

	def _append(self, role: SpeakerRole, text: str) -> Utterance:
		utterance = Utterance(role=role, text=text, timestamp=self._clock())
		self._state.transcript.append(utterance)
		return utterance

	def _require_phase(self, phase: SessionPhase, action: str) -> SessionState:
		state = self._state
		if state is None:
			raise InvalidStateError(f"Cannot {action}: session has not started")
		if state.phase is not phase:
			raise InvalidStateError(f"Cannot {action} while session is {state.phase.value}")
		return state

	def _is_stale(self, generation: int) -> bool:
		state = self._state
		return state is None or state.completed or generation != state.generation

	def _pending_scoring(self, generation: int) -> Optional[SessionState]:
		state = self._state
		if state is None or state.evaluation_status is not EvaluationStatus.PENDING:
			return None
		if generation != state.generation:
			return None
		return state

	def _mark_completed(self, reason: EndReason) -> None:
		state = self._state
		state.phase = SessionPhase.COMPLETED
		state.end_reason = reason
		state.completed_at = self._clock()
		state.generation += 1
		logger.info(
			"Session %s completed (%s) after %d/%d answer(s), %ds left",
			self.session_id, reason.value, state.questions_asked, state.total_questions, state.time_remaining,
		)

	def _complete(self, reason: EndReason) -> Optional[ScoringRequest]:
		self._mark_completed(reason)
		return self.finalize()
