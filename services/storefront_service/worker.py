"""ARQ worker for payment reconciliation, refund retries and replenishment."""

from arq import cron
from libs.common.arq_config import get_redis_settings, worker_queue_options
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def task_reconcile_pending_payments(ctx: dict):
    from services.storefront_service.tasks import reconcile_pending_payments

    logger.info("Running: reconcile_pending_payments")
    await reconcile_pending_payments()


async def task_retry_failed_refunds(ctx: dict):
    from services.storefront_service.tasks import retry_failed_refunds

    logger.info("Running: retry_failed_refunds")
    await retry_failed_refunds()


async def task_process_restocked_products(ctx: dict):
    from services.storefront_service.tasks import process_restocked_products

    logger.info("Running: process_restocked_products")
    await process_restocked_products()


async def startup(ctx: dict):
    configure_logging()
    logger.info("Storefront worker started")


class WorkerSettings:
    redis_settings = get_redis_settings()
    queue_name = worker_queue_options()["queue_name"]
    job_timeout = worker_queue_options()["job_timeout"]
    max_jobs = worker_queue_options()["max_jobs"]
    on_startup = startup

    functions = [
        task_reconcile_pending_payments,
        task_retry_failed_refunds,
        task_process_restocked_products,
    ]

    cron_jobs = [
        cron(
            task_reconcile_pending_payments,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
        cron(
            task_retry_failed_refunds,
            minute={2, 12, 22, 32, 42, 52},
        ),
        cron(
            task_process_restocked_products,
            minute={7, 17, 27, 37, 47, 57},
        ),
    ]
