#!/usr/bin/env python3
"""Run the extraction pipeline on a local invoice or receipt.

Two modes:
- ``--dry-run``: normalize and extract only, print the structured result
- default: register the document in the database, run the orchestrator and
  print the terminal outcome

Usage:
    python scripts/extract_document.py path/to/invoice.pdf --dry-run
    python scripts/extract_document.py path/to/receipt.jpg --init-db

Requirements:
    - OPENAI_API_KEY environment variable set for the OpenAI provider
    - poppler-utils installed for PDF input
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from invoice_ai.db.session import (
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from invoice_ai.extraction.factory import create_extraction_provider
from invoice_ai.normalizer.service import DocumentNormalizer
from invoice_ai.pipeline.invoices import register_document
from invoice_ai.pipeline.orchestrator import ExtractionOrchestrator
from invoice_ai.shared.config import get_settings
from invoice_ai.shared.errors import PipelineError

logger = logging.getLogger(__name__)


def dry_run(file_path: Path) -> int:
    """Normalize and extract without touching the database."""
    settings = get_settings()
    raster = DocumentNormalizer(settings).normalize(file_path)
    logger.info(
        f"Normalized {file_path.name}: {raster.width}x{raster.height} {raster.mime_type}, "
        f"{raster.rendered_pages}/{raster.page_count} pages"
    )

    provider = create_extraction_provider(settings)
    try:
        response = provider.extract(raster)
    finally:
        provider.close()
    print(
        json.dumps(
            {
                "model": response.model,
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
                "result": response.data.model_dump(mode="json"),
            },
            indent=2,
        )
    )
    return 0


def persisted_run(file_path: Path, init: bool) -> int:
    """Register the document and run the full orchestrated extraction."""
    settings = get_settings()
    engine = create_db_engine(settings)
    if init:
        init_db(engine)
    session_factory = create_session_factory(engine)

    with session_scope(session_factory) as session:
        invoice_id = register_document(session, file_path).id

    orchestrator = ExtractionOrchestrator(settings, session_factory)
    try:
        outcome = orchestrator.run(invoice_id)
    finally:
        orchestrator.close()
        engine.dispose()
    print(outcome.model_dump_json(indent=2))
    return 0 if outcome.error is None else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Extract structured data from an invoice")
    parser.add_argument("file", type=Path, help="PDF or image to extract")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only normalize and extract; do not write to the database",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create database tables before running",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if not args.file.exists():
        logger.error(f"File not found: {args.file}")
        return 2

    if args.dry_run:
        try:
            return dry_run(args.file)
        except PipelineError as e:
            logger.error(f"{e.error_type}: {e}")
            return 1
    return persisted_run(args.file, args.init_db)


if __name__ == "__main__":
    sys.exit(main())
