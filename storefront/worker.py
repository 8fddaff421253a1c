"""
ARQ Background Worker for the webhook queue.

Drains the delivery queue on a cron schedule, and on demand when a
trigger asks for an immediate drain.

Run with: arq storefront.worker.WorkerSettings
"""
from arq import cron
from arq.connections import RedisSettings

from storefront.config import settings
from storefront.logging_config import configure_logging, get_logger
from storefront.sentry_config import configure_sentry
from storefront.services.webhook_service import WebhookWorker


log = get_logger(component="arq_worker")

DRAIN_JOB = "process_webhook_queue"

# Cron granularity is one minute
DRAIN_MINUTES = set(range(0, 60, max(1, settings.WEBHOOK_DRAIN_INTERVAL_SECONDS // 60)))


async def process_webhook_queue(ctx: dict) -> dict:
    """Process one batch of due webhook queue entries."""
    worker = ctx.get("webhook_worker") or WebhookWorker()
    result = await worker.drain()
    if result.processed or result.skipped:
        log.info("webhook_queue_drained", job_try=ctx.get("job_try", 1), **result.to_dict())
    return result.to_dict()


async def startup(ctx: dict):
    configure_logging()
    configure_sentry()
    ctx["webhook_worker"] = WebhookWorker()
    log.info("webhook_worker_started", redis_url=settings.REDIS_URL)


async def enqueue_queue_drain() -> bool:
    """Ask the worker to drain the queue now instead of waiting for the cron tick."""
    from arq import create_pool

    try:
        redis = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        try:
            await redis.enqueue_job(DRAIN_JOB)
        finally:
            await redis.close()
        return True
    except Exception as e:
        # The cron drain still picks the entry up
        log.warning("webhook_drain_enqueue_failed", error=str(e))
        return False


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq storefront.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = 300
    max_tries = 1
    functions = [process_webhook_queue]
    cron_jobs = [
        cron(process_webhook_queue, minute=DRAIN_MINUTES, second=0, unique=True, run_at_startup=True),
    ]
    on_startup = startup
