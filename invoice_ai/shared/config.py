"""Shared configuration management for the extraction pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_CONFIDENCE_FLOOR=0.2
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-ai-pipeline",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction provider configuration
    extraction_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description="Extraction provider: openai (cloud API), ollama (self-hosted vision LLM)",
    )
    openai_model: str = Field(
        default="gpt-4o",
        description="Vision-capable OpenAI model with structured output support",
    )
    extraction_max_tokens: int = Field(
        default=4096,
        description="Output token ceiling for one extraction call",
        gt=0,
    )
    extraction_timeout_seconds: float = Field(
        default=120.0,
        description="Deadline for a single model call",
        gt=0,
    )

    # Ollama configuration (for extraction_provider="ollama")
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="llama3.2-vision",
        description="Vision model served by Ollama (e.g., llama3.2-vision, qwen2.5vl:7b)",
    )

    # Document normalization
    max_dimension: int = Field(
        default=2048,
        description="Maximum raster dimension; composites are bounded on width only",
        gt=0,
    )
    max_pdf_pages: int = Field(
        default=5,
        description="Maximum number of PDF pages rendered into the raster",
        gt=0,
    )
    single_page_dpi: int = Field(
        default=300,
        description="Render DPI for single-page PDFs",
        gt=0,
    )
    composite_dpi: int = Field(
        default=200,
        description="Per-page render DPI for multi-page composites",
        gt=0,
    )
    raster_format: Literal["png", "jpeg", "webp"] = Field(
        default="png",
        description="Encoding of the normalized raster",
    )
    image_quality: int = Field(
        default=90,
        description="Encoder quality for single images and single-page PDFs",
        ge=1,
        le=100,
    )
    composite_quality: int = Field(
        default=85,
        description="Encoder quality for multi-page composites",
        ge=1,
        le=100,
    )

    # Orchestration
    confidence_floor: float = Field(
        default=0.15,
        description="Results below this overall confidence are rejected as illegible",
        ge=0,
        le=1,
    )

    # Persistence
    database_url: str = Field(
        default="sqlite:///./invoices.db",
        description="SQLAlchemy database URL",
    )
    database_isolation_level: str | None = Field(
        default=None,
        description="Optional engine isolation level (e.g., SERIALIZABLE)",
    )

    # Queue configuration (arq worker)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the extraction queue",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Maximum concurrent extraction jobs per worker",
        gt=0,
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Job timeout in seconds",
        gt=0,
    )

    # Observability
    metrics_enabled: bool = Field(
        default=False,
        description="Expose Prometheus metrics from the worker process",
    )
    metrics_port: int = Field(
        default=9100,
        description="Port for the Prometheus metrics exporter",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
