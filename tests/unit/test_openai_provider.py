"""Unit tests for OpenAIExtractionProvider.

Tests the OpenAI vision provider with a mocked SDK client.
"""

import json
from collections.abc import Callable
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APITimeoutError

from invoice_ai.extraction.base import ExtractionResponse
from invoice_ai.extraction.openai_provider import OpenAIExtractionProvider
from invoice_ai.normalizer.service import NormalizedRaster
from invoice_ai.shared.config import Settings
from invoice_ai.shared.errors import (
    ConfigurationError,
    ExtractionParseError,
    ExtractionTimeoutError,
    ModelRefusalError,
    ModelTruncationError,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, openai_model="gpt-4o", extraction_max_tokens=2048)


@pytest.fixture
def provider(settings: Settings) -> OpenAIExtractionProvider:
    return OpenAIExtractionProvider(settings)


@pytest.fixture
def raster() -> NormalizedRaster:
    return NormalizedRaster(
        data=b"\x89PNG fake",
        mime_type="image/png",
        width=100,
        height=200,
        source_kind="image",
        page_count=1,
        rendered_pages=1,
    )


@pytest.fixture
def reply_text(make_response: Callable[..., ExtractionResponse]) -> str:
    return json.dumps(make_response().raw)


def completion(
    content: str | None, finish_reason: str = "stop", refusal: str | None = None
) -> MagicMock:
    """Build a chat completion response as returned by the SDK."""
    response = MagicMock()
    choice = MagicMock()
    choice.finish_reason = finish_reason
    choice.message.content = content
    choice.message.refusal = refusal
    response.choices = [choice]
    response.model = "gpt-4o-2024-08-06"
    response.usage.prompt_tokens = 1500
    response.usage.completion_tokens = 420
    return response


def test_provider_name(provider: OpenAIExtractionProvider) -> None:
    assert provider.provider_name == "openai"


@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_is_available_with_api_key(provider: OpenAIExtractionProvider) -> None:
    assert provider.is_available() is True


@patch.dict("os.environ", {}, clear=True)
def test_missing_api_key_is_configuration_error(
    provider: OpenAIExtractionProvider, raster: NormalizedRaster
) -> None:
    assert provider.is_available() is False
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        provider.extract(raster)


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_extract_success(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    raster: NormalizedRaster,
    reply_text: str,
) -> None:
    """Test successful structured extraction."""
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion(reply_text)

    response = provider.extract(raster)

    assert response.data.vendor.name == "Acme Corp"
    assert response.data.total_amount == Decimal("150")
    assert response.raw == json.loads(reply_text)
    assert response.model == "gpt-4o-2024-08-06"
    assert response.provider == "openai"
    assert response.input_tokens == 1500
    assert response.output_tokens == 420


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_request_shape(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    raster: NormalizedRaster,
    reply_text: str,
) -> None:
    """Image goes inline, output is constrained by a strict schema, retries are off."""
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion(reply_text)

    provider.extract(raster)

    assert mock_openai_class.call_args.kwargs["max_retries"] == 0
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["max_completion_tokens"] == 2048
    assert kwargs["response_format"]["type"] == "json_schema"
    assert kwargs["response_format"]["json_schema"]["strict"] is True

    user_content = kwargs["messages"][1]["content"]
    image_part = next(part for part in user_content if part["type"] == "image_url")
    assert image_part["image_url"]["url"].startswith("data:image/png;base64,")


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_client_reused_across_calls(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    raster: NormalizedRaster,
    reply_text: str,
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion(reply_text)

    provider.extract(raster)
    provider.extract(raster)

    mock_openai_class.assert_called_once()


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_refusal_classified(
    mock_openai_class: MagicMock, provider: OpenAIExtractionProvider, raster: NormalizedRaster
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion(
        None, refusal="I can't help with that."
    )

    with pytest.raises(ModelRefusalError):
        provider.extract(raster)


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_content_filter_classified_as_refusal(
    mock_openai_class: MagicMock, provider: OpenAIExtractionProvider, raster: NormalizedRaster
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion(None, finish_reason="content_filter")

    with pytest.raises(ModelRefusalError):
        provider.extract(raster)


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_truncation_classified(
    mock_openai_class: MagicMock, provider: OpenAIExtractionProvider, raster: NormalizedRaster
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion(
        '{"vendor": {"name": "Ac', finish_reason="length"
    )

    with pytest.raises(ModelTruncationError, match="token limit"):
        provider.extract(raster)


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_timeout_classified(
    mock_openai_class: MagicMock, provider: OpenAIExtractionProvider, raster: NormalizedRaster
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.side_effect = APITimeoutError(
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )

    with pytest.raises(ExtractionTimeoutError):
        provider.extract(raster)

    mock_client.chat.completions.create.assert_called_once()


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_transient_error_not_retried(
    mock_openai_class: MagicMock, provider: OpenAIExtractionProvider, raster: NormalizedRaster
) -> None:
    """Errors propagate after a single attempt; retrying is the caller's decision."""
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.side_effect = RuntimeError("API connection failed")

    with pytest.raises(RuntimeError, match="API connection failed"):
        provider.extract(raster)

    assert mock_client.chat.completions.create.call_count == 1


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_empty_content_is_parse_error(
    mock_openai_class: MagicMock, provider: OpenAIExtractionProvider, raster: NormalizedRaster
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion("")

    with pytest.raises(ExtractionParseError):
        provider.extract(raster)


@patch("invoice_ai.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_close_releases_client(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    raster: NormalizedRaster,
    reply_text: str,
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = completion(reply_text)
    provider.extract(raster)

    provider.close()

    mock_client.close.assert_called_once()
    assert provider._client is None


def test_close_without_client_is_noop(provider: OpenAIExtractionProvider) -> None:
    provider.close()

    assert provider._client is None
