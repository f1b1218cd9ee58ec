from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Optional: cheaper model for the examiner's follow-up questions
	gemini_model_dialogue: str | None = Field(default=None, validation_alias="GEMINI_MODEL_DIALOGUE")
	gemini_timeout_seconds: float = Field(default=30.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback for text-only prompts (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="IELTS Speaking Examiner", validation_alias="OPENROUTER_TITLE")

	# Google Cloud Speech-to-Text / Text-to-Speech
	speech_language_code: str = Field(default="en-US", validation_alias="SPEECH_LANGUAGE_CODE")
	max_audio_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_AUDIO_BYTES")
	tts_voice: str = Field(default="en-GB-Neural2-B", validation_alias="TTS_VOICE")
	tts_language_code: str = Field(default="en-GB", validation_alias="TTS_LANGUAGE_CODE")

	# Per-second countdown for conversation sessions; tests drive ticks by hand
	speaking_clock_enabled: bool = Field(default=True, validation_alias="SPEAKING_CLOCK_ENABLED")
	# Finished sessions stay readable in memory this long before eviction
	finished_session_ttl_seconds: int = Field(default=600, validation_alias="FINISHED_SESSION_TTL_SECONDS")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
