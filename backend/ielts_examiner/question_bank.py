"""
Question bank for the three speaking parts.

The session core only needs two things from a bank: a question for a part and
the examiner's opening line for that part. Selection is random by default;
pass a seeded ``random.Random`` (or a custom bank) for deterministic runs.
"""
from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence

from .parts import TestPart


QUESTIONS: Dict[TestPart, List[str]] = {
	TestPart.PART1: [
		"Tell me about your hometown. What do you like most about it?",
		"Do you work or study? What do you enjoy most about your work or studies?",
		"What are your hobbies? How long have you been interested in them?",
		"Describe your daily routine. What's your favourite part of the day?",
		"Tell me about your family. Are you close to your family members?",
	],
	TestPart.PART2: [
		"Describe a memorable event from your childhood. You should say: what the event was, when it happened, who was involved, and explain why it was memorable.",
		"Talk about a person who has influenced you. You should say: who this person is, how you know them, what influence they had on you, and explain why this person is important to you.",
		"Describe a place you would like to visit. You should say: where it is, what you can do there, what it looks like, and explain why you want to visit this place.",
		"Talk about a skill you would like to learn. You should say: what the skill is, why you want to learn it, how you would learn it, and explain how this skill would be useful to you.",
	],
	TestPart.PART3: [
		"What role does technology play in modern education?",
		"How do you think social media affects relationships between people?",
		"What are the advantages and disadvantages of living in a big city?",
		"How important is it for people to learn about their cultural heritage?",
		"Do you think traditional skills are being lost in modern society? Why or why not?",
	],
}

GREETINGS: Dict[TestPart, str] = {
	TestPart.PART1: "Good morning. This is Part 1 of the IELTS Speaking test. I'd like to ask you some questions about yourself.",
	TestPart.PART2: "Now I'm going to give you a topic and I'd like you to talk about it for one to two minutes. You have one minute to think about what you are going to say.",
	TestPart.PART3: "This is Part 3 of the test. We're going to discuss some more general questions.",
}


class QuestionBank(ABC):
	"""Source of examiner prompts, polymorphic over test part."""

	@abstractmethod
	def pick(self, part: TestPart) -> str:
		"""Return one question for the given part."""

	def opening(self, part: TestPart) -> str:
		"""Greeting followed by the first question of the part."""
		return f"{GREETINGS[part]} {self.pick(part)}"


class StaticQuestionBank(QuestionBank):
	def __init__(
		self,
		questions: Optional[Mapping[TestPart, Sequence[str]]] = None,
		*,
		rng: Optional[random.Random] = None,
	) -> None:
		self._questions = {part: list(items) for part, items in (questions or QUESTIONS).items()}
		for part in TestPart:
			if not self._questions.get(part):
				raise ValueError(f"Question bank has no questions for {part.name}")
		self._rng = rng or random.Random()

	def pick(self, part: TestPart) -> str:
		return self._rng.choice(self._questions[part])
