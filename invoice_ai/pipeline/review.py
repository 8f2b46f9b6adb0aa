"""Reviewer corrections to extracted invoice fields.

Only fields explicitly present in the update are applied. Correcting the
vendor name renames the attributed vendor and keeps the previous names as
aliases, so later extractions reporting the old spelling still match.
"""

import logging
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from invoice_ai.db.models import Invoice, Vendor, utcnow
from invoice_ai.shared.errors import InvoiceNotFoundError
from invoice_ai.vendors.service import VendorRegistry

logger = logging.getLogger(__name__)


class ReviewUpdate(BaseModel):
    """Reviewer-supplied field corrections."""

    model_config = ConfigDict(extra="forbid")

    vendor_name: str | None = Field(None, min_length=1, max_length=255)
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    currency: str | None = Field(None, pattern=r"^[A-Z]{3}$")
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    total_amount: Decimal | None = None
    review_notes: str | None = None


def apply_review_update(session: Session, invoice_id: str, update: ReviewUpdate) -> Invoice:
    """Apply reviewer corrections to an invoice within the caller's transaction.

    Args:
        session: Open session; the caller commits
        invoice_id: Invoice to update
        update: Corrections; unset fields are left untouched

    Returns:
        The updated Invoice

    Raises:
        InvoiceNotFoundError: If the invoice does not exist
    """
    invoice = session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")

    changes = update.model_dump(exclude_unset=True)

    new_vendor_name = changes.get("vendor_name")
    if new_vendor_name and invoice.vendor_id and invoice.vendor_name != new_vendor_name:
        vendor = session.get(Vendor, invoice.vendor_id, with_for_update=True)
        if vendor is not None:
            previous = [invoice.vendor_name] if invoice.vendor_name else []
            VendorRegistry(session).rename(vendor, new_vendor_name, previous_names=previous)

    for field, value in changes.items():
        setattr(invoice, field, value)
    invoice.updated_at = utcnow()
    session.flush()

    logger.info(f"Applied review update to invoice {invoice_id}: {sorted(changes)}")
    return invoice
