"""Classified errors raised by the pipeline stages.

The normalizer and extraction providers raise these; the orchestrator records
the class name and message on the invoice so failures can be diagnosed
without re-running the pipeline.
"""


class PipelineError(Exception):
    """Base class for classified pipeline failures."""

    retryable: bool = False

    @property
    def error_type(self) -> str:
        return type(self).__name__


class ConfigurationError(PipelineError):
    """Deployment cannot perform the operation (missing renderer, credential, provider)."""


class DocumentRenderError(PipelineError):
    """Source document is missing, unreadable or cannot be decoded."""


class ModelRefusalError(PipelineError):
    """The model declined to process the document."""


class ModelTruncationError(PipelineError):
    """The model output was cut off at the token ceiling."""


class ExtractionTimeoutError(PipelineError):
    """The model call did not complete before the configured deadline."""


class ExtractionParseError(PipelineError):
    """The model reply was missing or did not match the extraction schema."""


class InvoiceNotFoundError(PipelineError):
    """No invoice exists for the given identifier."""


class VendorConflictError(PipelineError):
    """A vendor rename would collide with another vendor's normalized name."""
