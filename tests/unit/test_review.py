"""Unit tests for reviewer corrections and document registration."""

from collections.abc import Callable
from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from invoice_ai.db.models import Invoice, InvoiceStatus, Vendor
from invoice_ai.db.session import session_scope
from invoice_ai.extraction.base import ExtractionResponse
from invoice_ai.pipeline.invoices import mark_processing, register_document
from invoice_ai.pipeline.orchestrator import ExtractionOrchestrator
from invoice_ai.pipeline.review import ReviewUpdate, apply_review_update
from invoice_ai.shared.config import Settings
from invoice_ai.shared.errors import InvoiceNotFoundError, VendorConflictError


@pytest.fixture
def extracted_invoice(
    db_settings: Settings,
    session_factory: sessionmaker[Session],
    make_response: Callable[..., ExtractionResponse],
    tmp_path: Path,
) -> Callable[[str], str]:
    """Run a mocked extraction reporting the given vendor name; return the invoice id."""

    def _extract(vendor_name: str = "Acme Inc") -> str:
        path = tmp_path / f"{vendor_name.replace(' ', '_')}.png"
        path.write_bytes(b"upload")
        with session_scope(session_factory) as session:
            invoice_id = register_document(session, path).id

        provider = MagicMock()
        provider.provider_name = "openai"
        provider.extract.return_value = make_response(vendor_name=vendor_name)
        ExtractionOrchestrator(
            db_settings, session_factory, normalizer=MagicMock(), provider=provider
        ).run(invoice_id)
        return invoice_id

    return _extract


class TestRegisterDocument:
    def test_pdf_registered_as_processing(self, session: Session, tmp_path: Path) -> None:
        path = tmp_path / "Invoice-42.PDF"
        path.write_bytes(b"%PDF-1.4")

        invoice = register_document(session, path, file_name="original.pdf")

        assert invoice.status == InvoiceStatus.PROCESSING
        assert invoice.file_type == "pdf"
        assert invoice.file_name == "original.pdf"
        assert invoice.file_path == str(path)
        assert invoice.file_size == 8

    def test_image_registered_with_stored_name(self, session: Session, tmp_path: Path) -> None:
        path = tmp_path / "receipt.jpeg"
        path.write_bytes(b"jpeg")

        invoice = register_document(session, path)

        assert invoice.file_type == "image"
        assert invoice.file_name == "receipt.jpeg"

    def test_mark_processing_resets_status(self, session: Session, tmp_path: Path) -> None:
        path = tmp_path / "receipt.png"
        path.write_bytes(b"png")
        invoice = register_document(session, path)
        invoice.status = InvoiceStatus.FAILED
        session.flush()

        assert mark_processing(session, invoice.id).status == InvoiceStatus.PROCESSING

    def test_mark_processing_unknown_invoice(self, session: Session) -> None:
        with pytest.raises(InvoiceNotFoundError):
            mark_processing(session, "missing")


class TestApplyReviewUpdate:
    def test_only_set_fields_applied(
        self, session_factory: sessionmaker[Session], extracted_invoice: Callable[[str], str]
    ) -> None:
        invoice_id = extracted_invoice("Acme Inc")

        with session_scope(session_factory) as session:
            apply_review_update(
                session,
                invoice_id,
                ReviewUpdate(total_amount=Decimal("175.25"), due_date=None),
            )

        with session_factory() as session:
            invoice = session.get(Invoice, invoice_id)
            assert invoice.total_amount == Decimal("175.25")
            assert invoice.due_date is None
            assert invoice.invoice_number == "INV-1001"
            assert invoice.invoice_date == date(2024, 3, 1)
            assert invoice.vendor_name == "Acme Inc"

    def test_vendor_rename_demotes_old_name(
        self, session_factory: sessionmaker[Session], extracted_invoice: Callable[[str], str]
    ) -> None:
        invoice_id = extracted_invoice("Acme Inc")

        with session_scope(session_factory) as session:
            apply_review_update(session, invoice_id, ReviewUpdate(vendor_name="Acme Corporation"))

        with session_factory() as session:
            invoice = session.get(Invoice, invoice_id)
            vendor = session.get(Vendor, invoice.vendor_id)
            assert invoice.vendor_name == "Acme Corporation"
            assert vendor.name == "Acme Corporation"
            assert "Acme Inc" in vendor.alias_names

    def test_old_name_rematches_after_rename(
        self, session_factory: sessionmaker[Session], extracted_invoice: Callable[[str], str]
    ) -> None:
        first_id = extracted_invoice("Acme Inc")
        with session_scope(session_factory) as session:
            apply_review_update(session, first_id, ReviewUpdate(vendor_name="Acme Corporation"))

        second_id = extracted_invoice("Acme Inc")

        with session_factory() as session:
            first = session.get(Invoice, first_id)
            second = session.get(Invoice, second_id)
            assert second.vendor_id == first.vendor_id
            vendor = session.get(Vendor, first.vendor_id)
            assert vendor.name == "Acme Corporation"
            assert vendor.total_invoices == 2

    def test_rename_is_idempotent(
        self, session_factory: sessionmaker[Session], extracted_invoice: Callable[[str], str]
    ) -> None:
        invoice_id = extracted_invoice("Acme Inc")

        for _ in range(2):
            with session_scope(session_factory) as session:
                apply_review_update(session, invoice_id, ReviewUpdate(vendor_name="Acme Corporation"))

        with session_factory() as session:
            vendor = session.get(Vendor, session.get(Invoice, invoice_id).vendor_id)
            assert vendor.alias_names.count("Acme Inc") == 1

    def test_rename_onto_existing_vendor_rejected(
        self, session_factory: sessionmaker[Session], extracted_invoice: Callable[[str], str]
    ) -> None:
        invoice_id = extracted_invoice("Acme Inc")
        extracted_invoice("Globex")

        with pytest.raises(VendorConflictError):
            with session_scope(session_factory) as session:
                apply_review_update(
                    session,
                    invoice_id,
                    ReviewUpdate(vendor_name="globex", review_notes="wrong vendor"),
                )

        with session_factory() as session:
            invoice = session.get(Invoice, invoice_id)
            vendor = session.get(Vendor, invoice.vendor_id)
            assert invoice.vendor_name == "Acme Inc"
            assert invoice.review_notes is None
            assert vendor.name == "Acme Inc"

    def test_unknown_invoice(self, session: Session) -> None:
        with pytest.raises(InvoiceNotFoundError):
            apply_review_update(session, "missing", ReviewUpdate(review_notes="checked"))

    def test_invalid_currency_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ReviewUpdate(currency="euro")
