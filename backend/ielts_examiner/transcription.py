"""
Speech-to-text collaborator using Google Cloud Speech-to-Text.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import speech_v1p1beta1 as speech

from .errors import TranscriptionFailure
from .schemas import TranscriptionResult, TranscriptionSegment
from .settings import settings


logger = logging.getLogger(__name__)

_Encoding = speech.RecognitionConfig.AudioEncoding

# MIME base type -> (encoding, sample rate); None lets the API read it from the header
AUDIO_FORMATS: Dict[str, Tuple[Any, Optional[int]]] = {
	"audio/webm": (_Encoding.WEBM_OPUS, 48000),
	"video/webm": (_Encoding.WEBM_OPUS, 48000),
	"audio/ogg": (_Encoding.OGG_OPUS, 48000),
	"audio/wav": (_Encoding.LINEAR16, None),
	"audio/wave": (_Encoding.LINEAR16, None),
	"audio/x-wav": (_Encoding.LINEAR16, None),
	"audio/flac": (_Encoding.FLAC, None),
	"audio/mpeg": (_Encoding.MP3, 44100),
	"audio/mp3": (_Encoding.MP3, 44100),
}


def base_content_type(content_type: Optional[str]) -> str:
	"""Strip codec parameters: 'audio/webm;codecs=opus' -> 'audio/webm'."""
	return (content_type or "").split(";")[0].strip().lower()


def _seconds(value: Any) -> Optional[float]:
	if isinstance(value, timedelta):
		return value.total_seconds()
	return None


class TranscriptionCollaborator(ABC):
	@abstractmethod
	async def transcribe(self, audio: bytes, content_type: str) -> TranscriptionResult:
		"""Convert recorded audio to text; raise TranscriptionFailure on error."""

	def supports_format(self, content_type: str) -> bool:
		return True


def result_from_response(response: Any, default_language: Optional[str] = None) -> TranscriptionResult:
	"""Map a RecognizeResponse onto a TranscriptionResult with per-result segments."""
	segments: List[TranscriptionSegment] = []
	language: Optional[str] = None
	cursor = 0.0
	for result in response.results:
		if not result.alternatives:
			continue
		alternative = result.alternatives[0]
		text = (alternative.transcript or "").strip()
		if not text:
			continue
		words = list(alternative.words)
		start = _seconds(words[0].start_time) if words else None
		end = _seconds(getattr(result, "result_end_time", None))
		if end is None and words:
			end = _seconds(words[-1].end_time)
		start = cursor if start is None else start
		end = start if end is None else end
		segments.append(TranscriptionSegment(start=start, end=end, text=text))
		cursor = end
		language = language or (getattr(result, "language_code", None) or None)
	return TranscriptionResult(
		text=" ".join(s.text for s in segments).strip(),
		language=language or default_language,
		duration=segments[-1].end if segments else None,
		segments=segments,
	)


class GoogleSpeechTranscription(TranscriptionCollaborator):
	def __init__(self, *, language_code: Optional[str] = None, max_bytes: Optional[int] = None) -> None:
		self.language_code = language_code or settings.speech_language_code
		self.max_bytes = max_bytes or settings.max_audio_bytes

	def supports_format(self, content_type: str) -> bool:
		return base_content_type(content_type) in AUDIO_FORMATS

	async def transcribe(self, audio: bytes, content_type: str) -> TranscriptionResult:
		if not audio:
			raise TranscriptionFailure("Empty audio payload received", code="empty_audio")
		if len(audio) > self.max_bytes:
			raise TranscriptionFailure(
				f"Audio of {len(audio)} bytes exceeds maximum of {self.max_bytes}", code="file_too_large"
			)
		fmt = AUDIO_FORMATS.get(base_content_type(content_type))
		if fmt is None:
			raise TranscriptionFailure(f"Unsupported audio format: {content_type}", code="unsupported_format")
		encoding, sample_rate = fmt

		config_kwargs: Dict[str, Any] = {
			"encoding": encoding,
			"language_code": self.language_code,
			"enable_automatic_punctuation": True,
			"enable_word_time_offsets": True,
		}
		if sample_rate is not None:
			config_kwargs["sample_rate_hertz"] = sample_rate

		try:
			client = speech.SpeechAsyncClient()
			response = await client.recognize(
				config=speech.RecognitionConfig(**config_kwargs),
				audio=speech.RecognitionAudio(content=audio),
			)
		except (GoogleAPIError, GoogleAuthError) as e:
			logger.warning("Speech-to-Text request failed: %s", e)
			raise TranscriptionFailure(f"Transcription service error: {e}", code="api_error") from e
		return result_from_response(response, default_language=self.language_code)
