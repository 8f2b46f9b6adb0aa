"""arq worker runner.

Run with: python -m invoice_ai.queue.worker
Or: arq invoice_ai.queue.tasks.WorkerSettings

This module configures and runs the extraction worker.
"""

import logging

from arq import run_worker

from invoice_ai.pipeline.metrics import start_metrics_server
from invoice_ai.queue.tasks import WorkerSettings, get_redis_settings
from invoice_ai.shared.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Extraction provider: {settings.extraction_provider}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")

    if settings.metrics_enabled:
        start_metrics_server(settings.metrics_port)
        logger.info(f"Metrics exporter listening on :{settings.metrics_port}")

    # Update worker settings from config
    WorkerSettings.redis_settings = get_redis_settings(settings)
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout

    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
