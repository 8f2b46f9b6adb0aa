"""Per-invoice extraction orchestration.

Runs normalize -> extract -> confidence gate -> persist for one invoice and
guarantees that the invoice leaves ``processing`` in exactly one terminal
state, ``review`` or ``failed``:

- Results below the confidence floor are a soft failure: status ``failed``,
  model output kept for audit, no vendor or line-item writes.
- Accepted results are persisted in one transaction (vendor reconciliation,
  invoice fields, full line-item replacement).
- Any exception is recorded on the invoice as ``{error, error_type, timestamp}``.

Re-running for the same invoice is safe: line items are replaced, never appended.
"""

import logging
import time
from pathlib import Path

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from invoice_ai.db.models import Invoice, InvoiceStatus, utcnow
from invoice_ai.db.models import LineItem as LineItemRecord
from invoice_ai.db.session import session_scope
from invoice_ai.extraction.base import ExtractionProvider, ExtractionResponse
from invoice_ai.extraction.factory import get_extraction_provider
from invoice_ai.normalizer.service import DocumentNormalizer
from invoice_ai.pipeline import metrics
from invoice_ai.shared.config import Settings
from invoice_ai.shared.errors import InvoiceNotFoundError, PipelineError
from invoice_ai.vendors.service import VendorRegistry

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_NOTE = "Document type unrecognized or illegible"
LOW_CONFIDENCE_ERROR_TYPE = "LowConfidence"
FAILURE_WRITE_ATTEMPTS = 2


class ExtractionOutcome(BaseModel):
    """Result of one orchestration run.

    Attributes:
        invoice_id: Invoice that was processed
        status: Terminal status written to the invoice (review or failed)
        confidence: Overall model confidence, if the model answered
        vendor_id: Vendor the invoice was attributed to
        line_item_count: Number of line items persisted
        model: Model identifier that produced the output
        error: Human-readable failure reason
        error_type: Failure classification (exception class or LowConfidence)
    """

    invoice_id: str
    status: InvoiceStatus
    confidence: float | None = None
    vendor_id: str | None = None
    line_item_count: int = 0
    model: str | None = None
    error: str | None = None
    error_type: str | None = None


class ExtractionOrchestrator:
    """Sequences normalization, extraction and persistence for invoices.

    Instances hold no per-invoice state and can serve concurrent runs for
    different invoices.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        normalizer: DocumentNormalizer | None = None,
        provider: ExtractionProvider | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            settings: Application settings
            session_factory: Factory for database sessions
            normalizer: Document normalizer (defaults to one built from settings)
            provider: Extraction provider (defaults to the process-wide provider)
        """
        self.settings = settings
        self.session_factory = session_factory
        self.normalizer = normalizer or DocumentNormalizer(settings)
        self._provider = provider

    @property
    def provider(self) -> ExtractionProvider:
        if self._provider is None:
            self._provider = get_extraction_provider(self.settings)
        return self._provider

    def close(self) -> None:
        """Release the provider's HTTP resources, if a provider was created."""
        if self._provider is not None:
            self._provider.close()

    def run(self, invoice_id: str, file_path: Path | str | None = None) -> ExtractionOutcome:
        """Run one extraction attempt for an invoice.

        The caller is expected to have set the invoice to ``processing``.

        Args:
            invoice_id: Invoice to extract
            file_path: Source document; defaults to the invoice's stored file path

        Returns:
            ExtractionOutcome describing the terminal state
        """
        logger.info(f"Starting extraction for invoice {invoice_id}")

        try:
            path = Path(file_path) if file_path else self._lookup_file_path(invoice_id)

            started = time.perf_counter()
            raster = self.normalizer.normalize(path)
            metrics.normalization_duration_seconds.labels(source_kind=raster.source_kind).observe(
                time.perf_counter() - started
            )
            logger.info(
                f"Invoice {invoice_id}: raster {raster.width}x{raster.height}, "
                f"{raster.rendered_pages}/{raster.page_count} pages"
            )

            provider = self.provider
            started = time.perf_counter()
            response = provider.extract(raster)
            metrics.model_call_duration_seconds.labels(provider=provider.provider_name).observe(
                time.perf_counter() - started
            )
            metrics.model_tokens_total.labels(provider=response.provider, direction="input").inc(
                response.input_tokens
            )
            metrics.model_tokens_total.labels(provider=response.provider, direction="output").inc(
                response.output_tokens
            )
            logger.info(
                f"Invoice {invoice_id}: model {response.model} answered with "
                f"confidence={response.data.confidence}"
            )

            if response.data.confidence < self.settings.confidence_floor:
                outcome = self._record_low_confidence(invoice_id, response)
            else:
                outcome = self._persist(invoice_id, response)
        except Exception as e:
            logger.exception(f"Extraction failed for invoice {invoice_id}: {e}")
            outcome = self._record_failure(invoice_id, e)

        metrics.extractions_total.labels(
            status=outcome.status.value, error_type=outcome.error_type or "none"
        ).inc()
        return outcome

    def _lookup_file_path(self, invoice_id: str) -> Path:
        with session_scope(self.session_factory) as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
            return Path(invoice.file_path)

    def _persist(self, invoice_id: str, response: ExtractionResponse) -> ExtractionOutcome:
        data = response.data

        with session_scope(self.session_factory) as session:
            invoice = session.get(Invoice, invoice_id, with_for_update=True)
            if invoice is None:
                raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")

            vendor = None
            vendor_outcome = "skipped"
            if data.vendor.name.strip():
                registry = VendorRegistry(session)
                vendor = registry.reconcile(data.vendor, data.total_amount)
                vendor_outcome = registry.last_outcome or "matched"

            invoice.status = InvoiceStatus.REVIEW
            invoice.vendor_id = vendor.id if vendor else None
            invoice.vendor_name = data.vendor.name
            invoice.invoice_number = data.invoice_number
            invoice.invoice_date = data.invoice_date
            invoice.due_date = data.due_date
            invoice.currency = data.currency
            invoice.subtotal = data.subtotal
            invoice.tax_amount = data.tax_amount
            invoice.discount_amount = data.discount_amount
            invoice.total_amount = data.total_amount
            invoice.overall_confidence = data.confidence
            invoice.field_confidences = data.field_confidences.model_dump()
            invoice.raw_extraction = response.raw
            invoice.extraction_model = response.model
            invoice.input_tokens = response.input_tokens
            invoice.output_tokens = response.output_tokens
            if invoice.review_notes == LOW_CONFIDENCE_NOTE:
                invoice.review_notes = None
            invoice.updated_at = utcnow()

            # Full replacement keeps manual retries from duplicating rows.
            invoice.line_items.clear()
            session.flush()
            for position, item in enumerate(data.line_items, start=1):
                invoice.line_items.append(
                    LineItemRecord(
                        position=position,
                        line_number=item.line_number if item.line_number is not None else position,
                        description=item.description,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        amount=item.amount,
                        tax_rate=item.tax_rate,
                        tax_amount=item.tax_amount,
                        category=item.category,
                        sku=item.sku,
                        unit=item.unit,
                        confidence=item.confidence if item.confidence is not None else data.confidence,
                    )
                )
            session.flush()

            vendor_id = vendor.id if vendor else None

        metrics.vendor_reconciliations_total.labels(outcome=vendor_outcome).inc()
        logger.info(
            f"Extraction completed for invoice {invoice_id}: {len(data.line_items)} line items, "
            f"total={data.total_amount}, vendor='{data.vendor.name}'"
        )
        return ExtractionOutcome(
            invoice_id=invoice_id,
            status=InvoiceStatus.REVIEW,
            confidence=data.confidence,
            vendor_id=vendor_id,
            line_item_count=len(data.line_items),
            model=response.model,
        )

    def _record_low_confidence(
        self, invoice_id: str, response: ExtractionResponse
    ) -> ExtractionOutcome:
        data = response.data

        with session_scope(self.session_factory) as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")

            invoice.status = InvoiceStatus.FAILED
            invoice.overall_confidence = data.confidence
            invoice.field_confidences = data.field_confidences.model_dump()
            invoice.raw_extraction = response.raw
            invoice.extraction_model = response.model
            invoice.input_tokens = response.input_tokens
            invoice.output_tokens = response.output_tokens
            invoice.review_notes = LOW_CONFIDENCE_NOTE
            invoice.updated_at = utcnow()

        logger.warning(
            f"Invoice {invoice_id}: confidence={data.confidence} < "
            f"{self.settings.confidence_floor}, marked as failed"
        )
        return ExtractionOutcome(
            invoice_id=invoice_id,
            status=InvoiceStatus.FAILED,
            confidence=data.confidence,
            model=response.model,
            error=LOW_CONFIDENCE_NOTE,
            error_type=LOW_CONFIDENCE_ERROR_TYPE,
        )

    def _record_failure(self, invoice_id: str, error: Exception) -> ExtractionOutcome:
        """Mark the invoice failed; never raises.

        The write is attempted twice, each time in a fresh session. If both
        attempts fail the invoice may remain in ``processing``; that is logged
        and the failed outcome is still returned.
        """
        error_type = error.error_type if isinstance(error, PipelineError) else type(error).__name__

        for attempt in range(1, FAILURE_WRITE_ATTEMPTS + 1):
            try:
                self._write_failure(invoice_id, str(error), error_type)
                break
            except Exception as write_error:
                if attempt < FAILURE_WRITE_ATTEMPTS:
                    logger.warning(
                        f"Recording failure for invoice {invoice_id} failed "
                        f"(attempt {attempt}), retrying: {write_error}"
                    )
                else:
                    logger.exception(
                        f"Could not record failure for invoice {invoice_id}; "
                        f"it may remain in processing: {write_error}"
                    )

        return ExtractionOutcome(
            invoice_id=invoice_id,
            status=InvoiceStatus.FAILED,
            error=str(error),
            error_type=error_type,
        )

    def _write_failure(self, invoice_id: str, message: str, error_type: str) -> None:
        with session_scope(self.session_factory) as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                logger.error(f"Cannot record failure: invoice {invoice_id} does not exist")
                return
            invoice.status = InvoiceStatus.FAILED
            invoice.raw_extraction = {
                "error": message,
                "error_type": error_type,
                "timestamp": utcnow().isoformat(),
            }
            invoice.updated_at = utcnow()
