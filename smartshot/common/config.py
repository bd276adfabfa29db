"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_BACKENDS = [
    "on_device",
    "openai",
    "claude",
    "gemini",
    "grok",
    "deepseek",
    "google_vision",
    "textract",
]


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # OCR orchestration
    default_backend: str = Field(default="on_device", alias="OCR_DEFAULT_BACKEND")
    confidence_threshold: float = Field(default=0.5, ge=0, le=1, alias="OCR_CONFIDENCE_THRESHOLD")
    fallback_enabled: bool = Field(default=True, alias="OCR_FALLBACK_ENABLED")
    max_retries: int = Field(default=2, ge=0, alias="OCR_MAX_RETRIES")
    timeout_seconds: float = Field(default=30.0, gt=0, alias="OCR_TIMEOUT_SECONDS")
    retry_base_delay: float = Field(default=0.5, ge=0, alias="OCR_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=8.0, ge=0, alias="OCR_RETRY_MAX_DELAY")
    retry_after_cap: float = Field(default=60.0, ge=0, alias="OCR_RETRY_AFTER_CAP")
    remote_default_confidence: float = Field(default=0.95, ge=0, le=1, alias="OCR_REMOTE_DEFAULT_CONFIDENCE")
    max_tokens: int = Field(default=1000, gt=0, alias="OCR_MAX_TOKENS")
    temperature: float = Field(default=0.1, ge=0, alias="OCR_TEMPERATURE")
    language_hints: str = Field(default="", alias="OCR_LANGUAGE_HINTS")  # comma separated, e.g. "en,ja"

    # On-device (Tesseract)
    tesseract_path: Optional[str] = Field(default=None, alias="TESSERACT_PATH")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")
    openai_endpoint: str = Field(default="https://api.openai.com/v1/chat/completions", alias="OPENAI_ENDPOINT")

    # Anthropic Claude
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-sonnet-4-5", alias="ANTHROPIC_MODEL")
    anthropic_endpoint: Optional[str] = Field(default=None, alias="ANTHROPIC_ENDPOINT")

    # Google Gemini
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-1.5-flash", alias="GEMINI_MODEL")
    gemini_endpoint: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        alias="GEMINI_ENDPOINT",
    )

    # xAI Grok (OpenAI-compatible)
    grok_api_key: Optional[str] = Field(default=None, alias="GROK_API_KEY")
    grok_model: str = Field(default="grok-2-vision-1212", alias="GROK_MODEL")
    grok_endpoint: str = Field(default="https://api.x.ai/v1/chat/completions", alias="GROK_ENDPOINT")

    # DeepSeek (OpenAI-compatible)
    deepseek_api_key: Optional[str] = Field(default=None, alias="DEEPSEEK_API_KEY")
    deepseek_model: str = Field(default="deepseek-chat", alias="DEEPSEEK_MODEL")
    deepseek_endpoint: str = Field(default="https://api.deepseek.com/chat/completions", alias="DEEPSEEK_ENDPOINT")

    # Google Cloud Vision
    google_vision_api_key: Optional[str] = Field(default=None, alias="GOOGLE_VISION_API_KEY")
    google_vision_endpoint: str = Field(
        default="https://vision.googleapis.com/v1/images:annotate",
        alias="GOOGLE_VISION_ENDPOINT",
    )

    # AWS Textract (credentials come from the standard AWS chain)
    aws_textract_region: str = Field(default="us-east-1", alias="AWS_TEXTRACT_REGION")

    # Bulk processing
    bulk_concurrency: int = Field(default=4, ge=1, alias="BULK_CONCURRENCY")

    # History
    history_capacity: int = Field(default=100, ge=1, alias="HISTORY_CAPACITY")
    history_db_path: Optional[str] = Field(default=None, alias="HISTORY_DB_PATH")
    history_auto_tag: bool = Field(default=True, alias="HISTORY_AUTO_TAG")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("default_backend")
    @classmethod
    def validate_default_backend(cls, v):
        """Validate default backend name"""
        if v.lower() not in VALID_BACKENDS:
            raise ValueError(f"OCR_DEFAULT_BACKEND must be one of {VALID_BACKENDS}")
        return v.lower()

    @property
    def language_hint_list(self) -> List[str]:
        """Parsed OCR_LANGUAGE_HINTS"""
        return [part.strip() for part in self.language_hints.split(",") if part.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
