"""
Test part catalogue.

Each IELTS speaking part has a fixed time budget, a fixed number of candidate
answers before the part ends, and a questioning style that drives the examiner
prompts.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict

from .errors import InvalidPartError


class PromptStyle(str, enum.Enum):
	INTERVIEW = "interview"
	MONOLOGUE_FOLLOWUP = "monologue_followup"
	DISCUSSION = "discussion"


@dataclass(frozen=True)
class PartPolicy:
	duration_seconds: int
	total_questions: int
	style: PromptStyle
	title: str


class TestPart(enum.IntEnum):
	PART1 = 1
	PART2 = 2
	PART3 = 3

	# Keeps pytest from collecting the enum when tests import it
	__test__ = False

	@property
	def policy(self) -> PartPolicy:
		return PART_POLICIES[self]

	@classmethod
	def parse(cls, value: Any) -> "TestPart":
		"""Coerce 1/2/3, "2", "part3" or a TestPart into a TestPart.

		Raises:
			InvalidPartError: If the value names no known part
		"""
		if isinstance(value, cls):
			return value
		if isinstance(value, bool):
			raise InvalidPartError(f"Unknown test part: {value!r}")
		if isinstance(value, str):
			text = value.strip().lower().replace(" ", "")
			if text.startswith("part"):
				text = text[4:]
			if not text.isdigit():
				raise InvalidPartError(f"Unknown test part: {value!r}")
			value = int(text)
		try:
			return cls(value)
		except (ValueError, TypeError):
			raise InvalidPartError(f"Unknown test part: {value!r}") from None


PART_POLICIES: Dict[TestPart, PartPolicy] = {
	TestPart.PART1: PartPolicy(
		duration_seconds=300,
		total_questions=3,
		style=PromptStyle.INTERVIEW,
		title="Introduction & Interview",
	),
	TestPart.PART2: PartPolicy(
		duration_seconds=240,
		total_questions=1,
		style=PromptStyle.MONOLOGUE_FOLLOWUP,
		title="Individual Long Turn",
	),
	TestPart.PART3: PartPolicy(
		duration_seconds=300,
		total_questions=5,
		style=PromptStyle.DISCUSSION,
		title="Two-way Discussion",
	),
}
