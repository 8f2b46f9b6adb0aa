"""OpenAI-based extraction provider for invoice field extraction.

Sends the normalized raster inline to a vision-capable OpenAI model and
constrains the reply with strict structured outputs, so a normal completion is
always schema-shaped JSON:
https://platform.openai.com/docs/guides/structured-outputs

Terminal conditions are classified instead of retried:
- refusal / content filter -> ModelRefusalError
- finish_reason "length" -> ModelTruncationError
- request deadline exceeded -> ExtractionTimeoutError
"""

import logging
import os
import threading
from typing import Any

from openai import APITimeoutError, OpenAI

from invoice_ai.extraction.base import ExtractionProvider, ExtractionResponse
from invoice_ai.extraction.prompts import SYSTEM_PROMPT, USER_PROMPT
from invoice_ai.extraction.schema import extraction_json_schema
from invoice_ai.normalizer.service import NormalizedRaster
from invoice_ai.shared.config import Settings
from invoice_ai.shared.errors import (
    ConfigurationError,
    ExtractionParseError,
    ExtractionTimeoutError,
    ModelRefusalError,
    ModelTruncationError,
)

logger = logging.getLogger(__name__)


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI vision extraction provider.

    Requires OPENAI_API_KEY environment variable. The SDK client is created on
    first use and reused for the lifetime of the provider.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None
        self._client_lock = threading.Lock()

    @property
    def provider_name(self) -> str:
        return "openai"

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return bool(os.getenv("OPENAI_API_KEY"))

    def _get_client(self) -> OpenAI:
        """Get or create the OpenAI client (lazy, thread-safe).

        Returns:
            Shared OpenAI client

        Raises:
            ConfigurationError: If OPENAI_API_KEY is not set
        """
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    api_key = os.getenv("OPENAI_API_KEY")
                    if not api_key:
                        raise ConfigurationError("OPENAI_API_KEY environment variable is not set")
                    # Retries are a caller decision, so the SDK's own retry loop is disabled.
                    self._client = OpenAI(
                        api_key=api_key,
                        timeout=self.settings.extraction_timeout_seconds,
                        max_retries=0,
                    )
                    logger.info(f"OpenAI client initialized for model {self.settings.openai_model}")
        return self._client

    def extract(self, raster: NormalizedRaster) -> ExtractionResponse:
        """Extract structured invoice data from a raster using OpenAI.

        Args:
            raster: Normalized document image

        Returns:
            ExtractionResponse with validated data, provider='openai'

        Raises:
            ConfigurationError: If no API key is configured
            ModelRefusalError: If the model refused the request
            ModelTruncationError: If the output hit the token ceiling
            ExtractionTimeoutError: If the call exceeded the configured deadline
            ExtractionParseError: If the reply is empty or off-schema
        """
        client = self._get_client()
        model = self.settings.openai_model

        try:
            response = client.chat.completions.create(
                model=model,
                max_completion_tokens=self.settings.extraction_max_tokens,
                temperature=0,
                messages=self._build_messages(raster),
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "invoice_extraction",
                        "strict": True,
                        "schema": extraction_json_schema(),
                    },
                },
            )
        except APITimeoutError as e:
            raise ExtractionTimeoutError(
                f"OpenAI call exceeded {self.settings.extraction_timeout_seconds}s deadline"
            ) from e

        if not response.choices:
            raise ExtractionParseError("OpenAI response contained no choices")

        choice = response.choices[0]
        message = choice.message

        if getattr(message, "refusal", None) or choice.finish_reason == "content_filter":
            raise ModelRefusalError("The model refused to process this document for safety reasons.")

        if choice.finish_reason == "length":
            raise ModelTruncationError(
                "Response was truncated due to token limit. The invoice may be too complex."
            )

        result, raw = self._parse_result(message.content)

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        logger.info(
            f"OpenAI extraction finished: model={response.model or model}, "
            f"tokens in={input_tokens} out={output_tokens}"
        )

        return ExtractionResponse(
            data=result,
            raw=raw,
            model=response.model or model,
            provider=self.provider_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    def _build_messages(self, raster: NormalizedRaster) -> list[dict[str, Any]]:
        """Build the system + user messages with the inline image.

        Args:
            raster: Normalized document image

        Returns:
            Chat messages for the completions API
        """
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {
                        "type": "image_url",
                        "image_url": {"url": raster.data_url(), "detail": "high"},
                    },
                    {"type": "text", "text": USER_PROMPT},
                ],
            },
        ]
