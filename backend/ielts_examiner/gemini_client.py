from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
		self._openrouter_api_key = settings.openrouter_api_key
		self._fallback_client: Optional[httpx.AsyncClient] = None
		if self._openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)

	async def generate(
		self,
		prompt: str,
		*,
		system: Optional[str] = None,
		temperature: Optional[float] = None,
		max_output_tokens: Optional[int] = None,
		json_output: bool = False,
	) -> str:
		"""Send one user turn (plus optional system instruction) and return the reply text."""
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		if system:
			payload["systemInstruction"] = {"parts": [{"text": system}]}
		generation_config: Dict[str, Any] = {}
		if temperature is not None:
			generation_config["temperature"] = float(temperature)
		if max_output_tokens is not None:
			generation_config["maxOutputTokens"] = int(max_output_tokens)
		if json_output:
			generation_config["responseMimeType"] = "application/json"
		if generation_config:
			payload["generationConfig"] = generation_config
		try:
			return await self._post_payload(payload)
		except (httpx.HTTPError, RuntimeError) as primary_error:
			if self._fallback_client is None:
				raise
			logger.warning("Gemini call failed (%s); retrying through OpenRouter", primary_error)
			return await self._fallback_generate(prompt, system, primary_error)

	async def _post_payload(self, payload: Dict[str, Any]) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		r.raise_for_status()
		try:
			data = r.json()
			parts: List[Dict[str, Any]] = data["candidates"][0]["content"]["parts"]
		except (ValueError, KeyError, IndexError, TypeError):
			raise RuntimeError(f"Unexpected Gemini response: {r.text[:500]}") from None
		# Thinking models may interleave thought parts; keep only the answer text
		text = "".join(p.get("text", "") for p in parts if isinstance(p, dict) and not p.get("thought"))
		return text

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, prompt: str, system: Optional[str], primary_error: Exception) -> str:
		headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		messages: List[Dict[str, str]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append({"role": "user", "content": prompt})
		payload: Dict[str, Any] = {"model": settings.openrouter_model, "messages": messages}
		try:
			r = await self._fallback_client.post(settings.openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as fallback_err:
			raise RuntimeError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err
