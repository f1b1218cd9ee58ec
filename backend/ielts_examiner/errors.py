"""Exceptions raised by the speaking session core and its collaborators."""


class SpeakingError(Exception):
	"""Base exception for the speaking examiner."""
	pass


class InvalidPartError(SpeakingError, ValueError):
	"""Requested test part is not Part 1, 2 or 3."""
	pass


class InvalidStateError(SpeakingError):
	"""Operation attempted in the wrong session phase."""
	pass


class EmptyUtteranceError(SpeakingError, ValueError):
	"""Candidate response contained no text."""
	pass


class CollaboratorFailure(SpeakingError):
	"""An external AI service call failed."""

	def __init__(self, message: str, code: str = "service_error") -> None:
		super().__init__(message)
		self.code = code


class TranscriptionFailure(CollaboratorFailure):
	pass


class DialogueFailure(CollaboratorFailure):
	pass


class ScoringFailure(CollaboratorFailure):
	pass


class ScoringParseError(ScoringFailure):
	"""Scoring model returned output that is not a valid evaluation."""

	def __init__(self, message: str, raw: str = "") -> None:
		super().__init__(message, code="malformed_evaluation")
		self.raw = raw


class SpeechFailure(CollaboratorFailure):
	pass
