"""
Text-to-speech collaborator using Google Cloud Text-to-Speech.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import texttospeech

from .errors import SpeechFailure
from .settings import settings


logger = logging.getLogger(__name__)


class SpeechCollaborator(ABC):
	@abstractmethod
	async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
		"""Return MP3 audio for ``text``; raise SpeechFailure on error."""


class GoogleSpeechSynthesis(SpeechCollaborator):
	def __init__(self, *, voice_id: Optional[str] = None, language_code: Optional[str] = None) -> None:
		self.voice_id = voice_id or settings.tts_voice
		self.language_code = language_code or settings.tts_language_code

	async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
		if not (text or "").strip():
			raise SpeechFailure("No text provided", code="empty_text")
		voice_name = voice_id or self.voice_id
		# Voice names embed their locale, e.g. "en-GB-Neural2-B"
		language_code = "-".join(voice_name.split("-")[:2]) if voice_name.count("-") >= 2 else self.language_code
		try:
			client = texttospeech.TextToSpeechAsyncClient()
			response = await client.synthesize_speech(
				input=texttospeech.SynthesisInput(text=text),
				voice=texttospeech.VoiceSelectionParams(language_code=language_code, name=voice_name),
				audio_config=texttospeech.AudioConfig(audio_encoding=texttospeech.AudioEncoding.MP3),
			)
		except (GoogleAPIError, GoogleAuthError) as e:
			logger.warning("Text-to-Speech failed for voice %s: %s", voice_name, e)
			raise SpeechFailure(f"Speech synthesis failed: {e}", code="api_error") from e
		if not response.audio_content:
			raise SpeechFailure("Speech synthesis returned no audio", code="empty_audio")
		return response.audio_content
