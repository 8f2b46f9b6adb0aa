"""Abstract base class for extraction providers.

Enables switching between vision-model backends (OpenAI, self-hosted Ollama)
while keeping one contract: a NormalizedRaster goes in, a schema-validated
ExtractionResult with provenance comes out, or a classified PipelineError is
raised.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ValidationError

from invoice_ai.extraction.schema import ExtractionResult
from invoice_ai.normalizer.service import NormalizedRaster
from invoice_ai.shared.config import Settings
from invoice_ai.shared.errors import ExtractionParseError


class ExtractionResponse(BaseModel):
    """Validated extraction plus provenance.

    Attributes:
        data: Schema-validated extraction result
        raw: Model output as received, kept for audit
        model: Model identifier that produced the output
        provider: Name of provider that performed extraction (e.g., 'openai')
        input_tokens: Prompt token count reported by the provider
        output_tokens: Completion token count reported by the provider
    """

    data: ExtractionResult
    raw: dict[str, Any]
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    Implementations do not retry; retry decisions belong to the caller.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def extract(self, raster: NormalizedRaster) -> ExtractionResponse:
        """Extract structured invoice data from a normalized raster.

        Args:
            raster: Bounded image produced by the DocumentNormalizer

        Returns:
            ExtractionResponse with validated data and token usage

        Raises:
            PipelineError: Classified refusal, truncation, timeout or parse failure
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics."""

    def close(self) -> None:
        """Release network resources held by the provider."""

    def _parse_result(self, text: str | None) -> tuple[ExtractionResult, dict[str, Any]]:
        """Validate the model's JSON reply against the extraction schema.

        Args:
            text: Raw JSON text returned by the model

        Returns:
            Tuple of (validated result, raw payload dict)

        Raises:
            ExtractionParseError: If the reply is empty or does not match the schema
        """
        if not text or not text.strip():
            raise ExtractionParseError(f"No text content in {self.provider_name} response")

        try:
            result = ExtractionResult.model_validate_json(text)
        except ValidationError as e:
            raise ExtractionParseError(
                f"{self.provider_name} response did not match extraction schema: {e}"
            ) from e

        return result, json.loads(text)
