"""Invoice record bookkeeping around an extraction run.

The orchestrator expects an invoice row in ``processing`` that points at the
stored upload; these helpers create that row or reset one for a manual retry.
"""

import logging
from pathlib import Path

from sqlalchemy.orm import Session

from invoice_ai.db.models import Invoice, InvoiceStatus, utcnow
from invoice_ai.shared.errors import InvoiceNotFoundError

logger = logging.getLogger(__name__)


def register_document(session: Session, file_path: Path, file_name: str | None = None) -> Invoice:
    """Create an invoice row for a stored upload, ready for extraction.

    Args:
        session: Open session; the caller commits
        file_path: Where the upload was stored
        file_name: Original file name (defaults to the stored file name)

    Returns:
        New Invoice in ``processing`` status
    """
    file_path = Path(file_path)
    file_type = "pdf" if file_path.suffix.lower() == ".pdf" else "image"

    invoice = Invoice(
        file_name=file_name or file_path.name,
        file_type=file_type,
        file_path=str(file_path),
        file_size=file_path.stat().st_size if file_path.exists() else None,
        status=InvoiceStatus.PROCESSING,
    )
    session.add(invoice)
    session.flush()

    logger.info(f"Registered {file_type} document {invoice.file_name} as invoice {invoice.id}")
    return invoice


def mark_processing(session: Session, invoice_id: str) -> Invoice:
    """Reset an existing invoice to ``processing`` before re-running extraction.

    Args:
        session: Open session; the caller commits
        invoice_id: Invoice to retry

    Returns:
        The updated Invoice

    Raises:
        InvoiceNotFoundError: If the invoice does not exist
    """
    invoice = session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")

    invoice.status = InvoiceStatus.PROCESSING
    invoice.updated_at = utcnow()
    session.flush()
    return invoice
