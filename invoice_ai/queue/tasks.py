"""Background extraction jobs.

Uses arq (async Redis queue) so uploads return immediately while the slow
model call runs in a worker. The orchestrator is synchronous (blocking SDK and
database calls), so each job hands it to a thread.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
from typing import Any

from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from invoice_ai.db.session import create_db_engine, create_session_factory, init_db
from invoice_ai.pipeline.orchestrator import ExtractionOrchestrator
from invoice_ai.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

RESULT_TTL_SECONDS = 86400


def job_id_for(invoice_id: str) -> str:
    return f"extract:{invoice_id}"


async def extract_invoice(
    ctx: dict[str, Any], invoice_id: str, file_path: str | None = None
) -> dict[str, Any]:
    """Run one extraction attempt for an invoice.

    The orchestrator records every failure on the invoice itself, so the job
    always completes; its return value mirrors the invoice's terminal state.

    Args:
        ctx: arq context (contains redis connection and shared services)
        invoice_id: Invoice to extract
        file_path: Source document; defaults to the invoice's stored path

    Returns:
        ExtractionOutcome as dict
    """
    orchestrator: ExtractionOrchestrator = ctx["orchestrator"]

    logger.info(f"Processing extraction job for invoice {invoice_id}")
    outcome = await asyncio.to_thread(orchestrator.run, invoice_id, file_path)

    redis = ctx.get("redis")
    if redis is not None:
        await redis.set(
            f"extraction:{invoice_id}", outcome.model_dump_json(), ex=RESULT_TTL_SECONDS
        )

    logger.info(f"Extraction job for invoice {invoice_id} finished with status: {outcome.status.value}")
    return outcome.model_dump(mode="json")


async def enqueue_extraction(
    redis: ArqRedis, invoice_id: str, file_path: str | None = None
) -> Job | None:
    """Queue an extraction for an invoice already in ``processing``.

    The job id is derived from the invoice id, so a second enqueue while the
    first is still pending is ignored by arq.

    Returns:
        The queued Job, or None if one is already pending for this invoice
    """
    job = await redis.enqueue_job(
        "extract_invoice", invoice_id, file_path, _job_id=job_id_for(invoice_id)
    )
    if job is None:
        logger.info(f"Extraction for invoice {invoice_id} is already queued")
    return job


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize shared services.

    Called once when worker starts so jobs reuse one engine and one provider.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    engine = create_db_engine(settings)
    init_db(engine)
    ctx["settings"] = settings
    ctx["engine"] = engine
    ctx["orchestrator"] = ExtractionOrchestrator(settings, create_session_factory(engine))
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    orchestrator = ctx.get("orchestrator")
    if orchestrator is not None:
        orchestrator.close()
    engine = ctx.get("engine")
    if engine is not None:
        engine.dispose()


def get_redis_settings(settings: Settings | None = None) -> RedisSettings:
    """Build arq Redis settings from configuration."""
    settings = settings or get_settings()
    return RedisSettings.from_dsn(settings.redis_url)


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout and concurrency
    """

    functions = [extract_invoice]
    on_startup = startup
    on_shutdown = shutdown

    # Extraction failures are recorded on the invoice; arq must not re-run jobs.
    max_tries = 1
    # Results live on the invoice row; dropping arq results lets a retry reuse the job id.
    keep_result = 0

    # These will be set from environment
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300
