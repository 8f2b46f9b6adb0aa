"""Shared fixtures: in-memory database and extraction payload builders."""

from collections.abc import Callable, Generator
from typing import Any

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from invoice_ai.db.session import create_db_engine, create_session_factory, init_db
from invoice_ai.extraction.base import ExtractionResponse
from invoice_ai.extraction.schema import ExtractionResult
from invoice_ai.shared.config import Settings


@pytest.fixture
def db_settings() -> Settings:
    """Settings pointing at a private in-memory SQLite database."""
    return Settings(database_url="sqlite://", extraction_provider="openai")


@pytest.fixture
def engine(db_settings: Settings) -> Generator[Engine, None, None]:
    engine = create_db_engine(db_settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


def build_payload(
    vendor_name: str = "Acme Corp",
    total_amount: float = 150.0,
    confidence: float = 0.92,
    line_items: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a schema-shaped model reply."""
    if line_items is None:
        line_items = [
            {"description": "Consulting", "quantity": 2, "unit_price": 50, "amount": 100},
            {"description": "Travel", "quantity": 1, "unit_price": 30, "amount": 30},
            {"description": "Meals", "quantity": 1, "unit_price": 20, "amount": 20},
        ]
    return {
        "vendor": {"name": vendor_name, "address": "1 Main St", "tax_id": None},
        "invoice_number": "INV-1001",
        "invoice_date": "2024-03-01",
        "due_date": "2024-03-31",
        "currency": "USD",
        "subtotal": 150,
        "tax_amount": 0,
        "total_amount": total_amount,
        "line_items": line_items,
        "confidence": confidence,
        "field_confidences": {
            "vendor_name": 0.95,
            "invoice_number": 0.9,
            "invoice_date": 0.9,
            "due_date": 0.8,
            "subtotal": 0.9,
            "tax_amount": 0.9,
            "total_amount": 0.95,
            "line_items": 0.85,
        },
    }


@pytest.fixture
def make_response() -> Callable[..., ExtractionResponse]:
    """Factory for provider responses built from ``build_payload`` arguments."""

    def _make(**kwargs: Any) -> ExtractionResponse:
        payload = build_payload(**kwargs)
        return ExtractionResponse(
            data=ExtractionResult.model_validate(payload),
            raw=payload,
            model="gpt-4o-2024-08-06",
            provider="openai",
            input_tokens=1200,
            output_tokens=340,
        )

    return _make
