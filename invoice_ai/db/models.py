"""Relational schema for invoices, line items and the vendor registry.

PostgreSQL is the production target; SQLite works for tests and local runs.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
MONEY = Numeric(14, 2)


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, enum.Enum):
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    REVIEW = "review"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False, index=True)
    # Unique so concurrent extractions cannot create two rows for one vendor.
    normalized_name = Column(String(255), nullable=False, unique=True)
    tax_id = Column(String(64), index=True)
    address = Column(Text)
    email = Column(String(255))
    phone = Column(String(32))
    total_invoices = Column(Integer, nullable=False, default=0)
    total_spend = Column(MONEY, nullable=False, default=0)
    average_invoice_amount = Column(MONEY, nullable=False, default=0)
    last_invoice_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    aliases = relationship(
        "VendorAlias",
        back_populates="vendor",
        order_by="VendorAlias.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    invoices = relationship("Invoice", back_populates="vendor")

    @property
    def alias_names(self) -> list[str]:
        return [alias.alias for alias in self.aliases]

    def __repr__(self) -> str:
        return f"<Vendor {self.id} {self.name!r}>"


class VendorAlias(Base):
    """One historical display name of a vendor, in insertion order."""

    __tablename__ = "vendor_aliases"
    __table_args__ = (UniqueConstraint("vendor_id", "alias", name="uq_vendor_aliases_vendor_alias"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor_id = Column(
        String(36), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    alias = Column(String(255), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    vendor = relationship("Vendor", back_populates="aliases")


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("invoices_status_idx", "status"),
        Index("invoices_vendor_id_idx", "vendor_id"),
        Index("invoices_invoice_number_idx", "invoice_number"),
        Index("invoices_created_at_idx", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)

    # File metadata
    file_name = Column(String(512), nullable=False)
    file_type = Column(String(16), nullable=False)  # "pdf" | "image"
    file_path = Column(Text, nullable=False)
    file_size = Column(Integer)

    status = Column(
        Enum(
            InvoiceStatus,
            name="invoice_status",
            native_enum=False,
            length=16,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=InvoiceStatus.UPLOADING,
    )

    vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="SET NULL"))

    # Extracted fields
    vendor_name = Column(String(255))
    invoice_number = Column(String(128))
    invoice_date = Column(Date)
    due_date = Column(Date)
    currency = Column(String(8), default="USD")
    subtotal = Column(MONEY)
    tax_amount = Column(MONEY)
    discount_amount = Column(MONEY)
    total_amount = Column(MONEY)

    # Model output
    overall_confidence = Column(Float)
    field_confidences = Column(JSON_TYPE)
    raw_extraction = Column(JSON_TYPE)
    extraction_model = Column(String(64))
    input_tokens = Column(Integer)
    output_tokens = Column(Integer)

    # Review
    reviewed_by = Column(String(255))
    reviewed_at = Column(DateTime(timezone=True))
    review_notes = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    vendor = relationship("Vendor", back_populates="invoices")
    line_items = relationship(
        "LineItem",
        back_populates="invoice",
        order_by="LineItem.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.status.value if self.status else None}>"


class LineItem(Base):
    __tablename__ = "line_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    invoice_id = Column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Order as reported by the model; line_number may repeat or be absent on the document.
    position = Column(Integer, nullable=False)
    line_number = Column(Integer)
    description = Column(Text)
    quantity = Column(Numeric(12, 4))
    unit_price = Column(MONEY)
    amount = Column(MONEY)
    tax_rate = Column(Numeric(6, 4))
    tax_amount = Column(MONEY)
    category = Column(String(128))
    sku = Column(String(64))
    unit = Column(String(32))
    confidence = Column(Float)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    invoice = relationship("Invoice", back_populates="line_items")
