"""Ollama-based extraction provider for self-hosted vision LLM inference.

Uses a local Ollama server for structured data extraction from document
images. Supports data sovereignty requirements by running entirely on-premises.

Structured output is requested by passing the extraction JSON schema as the
``format`` parameter of ``/api/chat``:
https://github.com/ollama/ollama/blob/main/docs/api.md#generate-a-chat-completion
"""

import logging

import httpx

from invoice_ai.extraction.base import ExtractionProvider, ExtractionResponse
from invoice_ai.extraction.prompts import SYSTEM_PROMPT, USER_PROMPT
from invoice_ai.extraction.schema import extraction_json_schema
from invoice_ai.normalizer.service import NormalizedRaster
from invoice_ai.shared.config import Settings
from invoice_ai.shared.errors import ExtractionTimeoutError, ModelTruncationError

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(ExtractionProvider):
    """Ollama-based extraction provider for self-hosted vision models.

    Uses a local Ollama server (default localhost:11434) serving a
    vision-capable model such as llama3.2-vision or qwen2.5vl.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=settings.extraction_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "ollama"

    def close(self) -> None:
        self._client.close()

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def extract(self, raster: NormalizedRaster) -> ExtractionResponse:
        """Extract structured invoice data from a raster using Ollama.

        Args:
            raster: Normalized document image

        Returns:
            ExtractionResponse with validated data, provider='ollama'

        Raises:
            ModelTruncationError: If generation stopped at the token ceiling
            ExtractionTimeoutError: If the server did not answer before the deadline
            ExtractionParseError: If the reply is empty or off-schema
            httpx.HTTPStatusError: If the server answered with an error status
        """
        try:
            response = self._client.post(
                f"{self._base_url}/api/chat",
                json={
                    "model": self._model,
                    "stream": False,
                    "format": extraction_json_schema(),
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": USER_PROMPT, "images": [raster.to_base64()]},
                    ],
                    "options": {
                        "temperature": 0,
                        "num_predict": self.settings.extraction_max_tokens,
                    },
                },
            )
        except httpx.TimeoutException as e:
            raise ExtractionTimeoutError(
                f"Ollama call exceeded {self.settings.extraction_timeout_seconds}s deadline"
            ) from e
        response.raise_for_status()
        body = response.json()

        if body.get("done_reason") == "length":
            raise ModelTruncationError(
                "Response was truncated due to token limit. The invoice may be too complex."
            )

        result, raw = self._parse_result(body.get("message", {}).get("content"))

        input_tokens = int(body.get("prompt_eval_count") or 0)
        output_tokens = int(body.get("eval_count") or 0)
        logger.info(
            f"Ollama extraction finished: model={self._model}, "
            f"tokens in={input_tokens} out={output_tokens}"
        )

        return ExtractionResponse(
            data=result,
            raw=raw,
            model=body.get("model") or self._model,
            provider=self.provider_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
