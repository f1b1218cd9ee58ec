"""
Band scoring collaborator.

Sends a candidate's combined transcript to Gemini acting as an IELTS examiner
and converts the structured reply into an ``Evaluation``. Replies that are not
JSON, or JSON that does not match the evaluation shape (missing criteria,
bands outside 0-9), are rejected with ``ScoringParseError`` rather than
stored as a partial result.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .errors import ScoringFailure, ScoringParseError
from .gemini_client import GeminiClient
from .parts import TestPart
from .schemas import Evaluation, ScoringRequest


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an expert IELTS speaking examiner."


class ScoringCollaborator(ABC):
	@abstractmethod
	async def evaluate(self, request: ScoringRequest) -> Evaluation:
		"""Score a transcript; raise ScoringFailure or ScoringParseError on error."""


def _extract_json_block(text: str) -> Dict[str, Any]:
	"""Extract JSON object from LLM response text.

	Attempts to parse the entire text as JSON first, then searches for the
	outermost braces (models sometimes wrap JSON in markdown fences).

	Raises:
		ValueError: If no JSON object can be extracted from the text
	"""
	try:
		data = json.loads(text)
	except (TypeError, ValueError):
		match = re.search(r"\{[\s\S]*\}", text or "")
		if not match:
			raise ValueError("No JSON object in scoring output") from None
		try:
			data = json.loads(match.group(0))
		except ValueError:
			raise ValueError("Scoring output contains malformed JSON") from None
	if not isinstance(data, dict):
		raise ValueError("Scoring output is not a JSON object")
	return data


def parse_evaluation(raw: str) -> Evaluation:
	"""Validate raw scoring output into an Evaluation.

	Raises:
		ScoringParseError: If the output is not a conforming evaluation
	"""
	try:
		data = _extract_json_block(raw)
	except ValueError as e:
		raise ScoringParseError(str(e), raw=raw) from e
	try:
		return Evaluation.model_validate(data)
	except ValidationError as e:
		raise ScoringParseError(f"Scoring output does not match the evaluation schema: {e.error_count()} error(s)", raw=raw) from e


def build_scoring_prompt(transcript_text: str, part: TestPart) -> str:
	return f"""
Analyse the following answers from an IELTS Speaking test-taker and evaluate them against the four IELTS speaking criteria.

TEST PART: {part.value} ({part.policy.title})
RESPONSE:
\"\"\"
{transcript_text}
\"\"\"

Give each criterion a band from 0 to 9 in steps of 0.5. Consider whether the answers suit this test part.

Return STRICT JSON only, following exactly this schema:
{{
  "scores": {{
    "fluency_coherence": number,
    "lexical_resource": number,
    "grammatical_range": number,
    "pronunciation": number,
    "overall": number
  }},
  "detailed_analysis": {{
    "fluency_coherence": {{"assessment": string, "strengths": [string], "weaknesses": [string]}},
    "lexical_resource": {{"assessment": string, "strengths": [string], "weaknesses": [string]}},
    "grammatical_range": {{"assessment": string, "strengths": [string], "weaknesses": [string]}},
    "pronunciation": {{"assessment": string, "strengths": [string], "weaknesses": [string]}}
  }},
  "recommendations": [string, string, string],
  "band_descriptor": string
}}
""".strip()


class GeminiScoring(ScoringCollaborator):
	def __init__(self, *, model: Optional[str] = None, temperature: float = 0.3) -> None:
		self.model = model
		self.temperature = temperature

	async def evaluate(self, request: ScoringRequest) -> Evaluation:
		try:
			client = GeminiClient(model=self.model)
		except ValueError as e:
			raise ScoringFailure(str(e), code="not_configured") from e
		try:
			raw = await client.generate(
				build_scoring_prompt(request.transcript_text, request.part),
				system=SYSTEM_PROMPT,
				temperature=self.temperature,
				json_output=True,
			)
		except (httpx.HTTPError, RuntimeError) as e:
			logger.warning("Scoring request failed for session %s: %s", request.session_id, e)
			raise ScoringFailure(f"Scoring service unavailable: {e}", code="api_error") from e
		finally:
			await client.aclose()
		return parse_evaluation(raw)
