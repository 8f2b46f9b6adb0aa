"""Unit tests for configuration management."""

import os
from collections.abc import Generator

import pytest
from pydantic import ValidationError

from invoice_ai.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "invoice-ai-pipeline"
    assert settings.extraction_provider == "openai"


def test_normalization_defaults(clean_env: None) -> None:
    """Raster limits default to 2048px, five pages, 300/200 DPI."""
    settings = Settings(_env_file=None)

    assert settings.max_dimension == 2048
    assert settings.max_pdf_pages == 5
    assert settings.single_page_dpi == 300
    assert settings.composite_dpi == 200
    assert settings.raster_format == "png"
    assert settings.image_quality == 90
    assert settings.composite_quality == 85


def test_confidence_floor_default(clean_env: None) -> None:
    settings = Settings(_env_file=None)

    assert settings.confidence_floor == 0.15


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_CONFIDENCE_FLOOR"] = "0.3"
    os.environ["APP_MAX_PDF_PAGES"] = "3"
    os.environ["APP_EXTRACTION_PROVIDER"] = "ollama"

    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.confidence_floor == 0.3
    assert settings.max_pdf_pages == 3
    assert settings.extraction_provider == "ollama"


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings(_env_file=None)

    assert settings.log_level == "DEBUG"


def test_confidence_floor_out_of_range_rejected(clean_env: None) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, confidence_floor=1.5)


def test_unknown_raster_format_rejected(clean_env: None) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, raster_format="gif")


def test_get_settings_factory() -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service_name
