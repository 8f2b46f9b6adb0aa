"""Invoice extraction models for structured vision-model output.

The pydantic models validate the model reply; ``extraction_json_schema`` is the
closed JSON schema the model is constrained to. Both reject unknown fields at
every nesting level.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

LINE_ITEM_CATEGORIES = (
    "Software",
    "Travel",
    "Meals",
    "Services",
    "Office Supplies",
    "Utilities",
    "Equipment",
    "Other",
)


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class VendorInfo(StrictModel):
    """Vendor block as printed on the document."""

    name: str = Field(..., description="Vendor/supplier name as printed")
    address: str | None = Field(None, description="Vendor address")
    tax_id: str | None = Field(None, description="Vendor tax identifier (VAT, EIN, ABN)")
    email: str | None = Field(None, description="Vendor contact email")
    phone: str | None = Field(None, description="Vendor contact phone")


class LineItem(StrictModel):
    """Single line of the invoice, in document order."""

    line_number: int | None = Field(None, description="Line number printed on the document")
    description: str = Field(..., description="Line item description")
    quantity: Decimal | None = Field(None, description="Quantity")
    unit_price: Decimal | None = Field(None, description="Price per unit")
    amount: Decimal = Field(..., description="Line total")
    tax_rate: Decimal | None = Field(None, description="Tax rate as a fraction or percentage")
    tax_amount: Decimal | None = Field(None, description="Tax for this line")
    # Best-effort hint; the model may answer outside LINE_ITEM_CATEGORIES.
    category: str | None = Field(None, description="Expense category")
    sku: str | None = Field(None, description="SKU or product code")
    unit: str | None = Field(None, description="Unit of measure")
    confidence: float | None = Field(None, description="Per-item confidence (0-1)", ge=0, le=1)


class FieldConfidences(StrictModel):
    """Per-field confidence scores reported by the model."""

    vendor_name: float = Field(..., ge=0, le=1)
    invoice_number: float = Field(..., ge=0, le=1)
    invoice_date: float = Field(..., ge=0, le=1)
    due_date: float = Field(..., ge=0, le=1)
    subtotal: float = Field(..., ge=0, le=1)
    tax_amount: float = Field(..., ge=0, le=1)
    total_amount: float = Field(..., ge=0, le=1)
    line_items: float = Field(..., ge=0, le=1)


class ExtractionResult(StrictModel):
    """Structured invoice data extracted from one document.

    ``confidence`` is the model's weighted aggregate of the field confidences;
    it is not recomputed locally and is the gating signal for persistence.
    """

    vendor: VendorInfo
    invoice_number: str | None = Field(None, description="Invoice identifier")
    invoice_date: date | None = Field(None, description="Date invoice was issued")
    due_date: date | None = Field(None, description="Payment due date")
    currency: str = Field("USD", description="Currency code (ISO 4217)", pattern=r"^[A-Z]{3}$")
    subtotal: Decimal | None = Field(None, description="Subtotal before tax")
    tax_amount: Decimal | None = Field(None, description="Tax amount")
    discount_amount: Decimal | None = Field(None, description="Discount amount")
    total_amount: Decimal = Field(..., description="Total amount including tax")
    line_items: list[LineItem] = Field(default_factory=list)
    confidence: float = Field(..., description="Overall extraction confidence (0-1)", ge=0, le=1)
    field_confidences: FieldConfidences

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> Any:
        if value is None:
            return "USD"
        if isinstance(value, str):
            return value.strip().upper() or "USD"
        return value

    @field_validator("invoice_date", "due_date", mode="before")
    @classmethod
    def _blank_date_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def _nullable(json_type: str, **extra: Any) -> dict[str, Any]:
    return {"type": [json_type, "null"], **extra}


def _closed_object(properties: dict[str, Any]) -> dict[str, Any]:
    # Strict structured output requires every property to be listed as required;
    # optional fields are expressed as nullable instead.
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def extraction_json_schema() -> dict[str, Any]:
    """Get the closed JSON schema describing ExtractionResult.

    Returns:
        JSON schema dict suitable for strict structured output
    """
    confidence = {"type": "number", "minimum": 0, "maximum": 1}

    vendor = _closed_object(
        {
            "name": {"type": "string"},
            "address": _nullable("string"),
            "tax_id": _nullable("string"),
            "email": _nullable("string"),
            "phone": _nullable("string"),
        }
    )
    line_item = _closed_object(
        {
            "line_number": _nullable("integer"),
            "description": {"type": "string"},
            "quantity": _nullable("number"),
            "unit_price": _nullable("number"),
            "amount": {"type": "number"},
            "tax_rate": _nullable("number"),
            "tax_amount": _nullable("number"),
            "category": _nullable("string"),
            "sku": _nullable("string"),
            "unit": _nullable("string"),
            "confidence": _nullable("number", minimum=0, maximum=1),
        }
    )
    field_confidences = _closed_object(
        {name: dict(confidence) for name in FieldConfidences.model_fields}
    )

    return _closed_object(
        {
            "vendor": vendor,
            "invoice_number": _nullable("string"),
            "invoice_date": _nullable("string", format="date"),
            "due_date": _nullable("string", format="date"),
            "currency": {"type": "string"},
            "subtotal": _nullable("number"),
            "tax_amount": _nullable("number"),
            "discount_amount": _nullable("number"),
            "total_amount": {"type": "number"},
            "line_items": {"type": "array", "items": line_item},
            "confidence": dict(confidence),
            "field_confidences": field_confidences,
        }
    )
