"""
Examiner dialogue collaborator.

Turns the running transcript of a part into the examiner's next line using
Gemini. The prompt depends on the part's questioning style: short personal
follow-ups in Part 1, one rounding-off question after the Part 2 long turn,
abstract discussion questions in Part 3.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx

from .errors import DialogueFailure
from .gemini_client import GeminiClient
from .parts import PromptStyle
from .schemas import DialogueReply, DialogueRequest, SpeakerRole, Utterance
from .settings import settings


logger = logging.getLogger(__name__)

CLOSING_LINE = "Thank you. That concludes this part of your IELTS Speaking test."
EMPTY_REPLY_LINE = "Thank you for your response."


class DialogueCollaborator(ABC):
	@abstractmethod
	async def next_turn(self, request: DialogueRequest) -> DialogueReply:
		"""Return the examiner's next line; raise DialogueFailure on error."""


def _format_clock(seconds: int) -> str:
	minutes, secs = divmod(max(0, seconds), 60)
	return f"{minutes} minute(s) and {secs} second(s)"


def _format_transcript(transcript: Tuple[Utterance, ...]) -> str:
	lines = []
	for utterance in transcript:
		speaker = "Examiner" if utterance.role is SpeakerRole.EXAMINER else "Candidate"
		lines.append(f"{speaker}: {utterance.text}")
	return "\n".join(lines)


def build_dialogue_prompt(request: DialogueRequest) -> Tuple[str, str]:
	"""Build the (system, user) prompt pair for the next examiner turn."""
	style = request.part.policy.style
	progress = f"The candidate has answered {request.questions_asked} of {request.total_questions} questions."
	clock = f"There are {_format_clock(request.time_remaining)} remaining."
	is_last = request.questions_asked + 1 >= request.total_questions

	if style is PromptStyle.INTERVIEW:
		system = (
			"You are an IELTS Speaking examiner conducting Part 1 (Introduction and Interview). "
			"Ask natural, encouraging follow-up questions about familiar topics such as home, family, "
			"work, studies, hobbies and daily routine. Ask exactly one question at a time. "
			f"{progress} {clock}"
		)
		task = "Ask one natural follow-up question that encourages the candidate to say more."
	elif style is PromptStyle.MONOLOGUE_FOLLOWUP:
		system = (
			"You are an IELTS Speaking examiner conducting Part 2 (Individual Long Turn). "
			"The candidate has just finished a one to two minute talk on a cue card topic. "
			"Ask one brief rounding-off question related to what they said."
		)
		task = "Ask one brief, relevant rounding-off question."
	else:
		system = (
			"You are an IELTS Speaking examiner conducting Part 3 (Two-way Discussion). "
			"Ask thought-provoking questions about broader, abstract themes that require the candidate "
			"to analyse, compare, speculate and justify opinions. Ask exactly one question at a time. "
			f"{progress} {clock}"
		)
		task = "Ask one thought-provoking follow-up question that pushes for deeper analysis."

	if is_last:
		task += " This is the final question of the part, so make it clear the test is about to end."

	user = (
		f"Conversation so far:\n{_format_transcript(request.transcript)}\n\n"
		f"The candidate just said: \"{request.latest_candidate_text}\"\n\n"
		f"{task} Reply with the examiner's words only."
	)
	return system, user


class GeminiDialogue(DialogueCollaborator):
	def __init__(self, *, model: Optional[str] = None, temperature: float = 0.7, max_output_tokens: int = 150) -> None:
		self.model = model or settings.gemini_model_dialogue
		self.temperature = temperature
		self.max_output_tokens = max_output_tokens

	async def next_turn(self, request: DialogueRequest) -> DialogueReply:
		if request.questions_asked >= request.total_questions or request.time_remaining <= 0:
			return DialogueReply(examiner_text=CLOSING_LINE, test_complete=True)

		system, user = build_dialogue_prompt(request)
		try:
			client = GeminiClient(model=self.model)
		except ValueError as e:
			raise DialogueFailure(str(e), code="not_configured") from e
		try:
			raw = await client.generate(
				user,
				system=system,
				temperature=self.temperature,
				max_output_tokens=self.max_output_tokens,
			)
		except (httpx.HTTPError, RuntimeError) as e:
			logger.warning("Dialogue generation failed for session %s: %s", request.session_id, e)
			raise DialogueFailure(f"Examiner reply unavailable: {e}", code="api_error") from e
		finally:
			await client.aclose()

		text = (raw or "").strip().strip('"').strip()
		return DialogueReply(examiner_text=text or EMPTY_REPLY_LINE)
