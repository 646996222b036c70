from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from autopay.core.config import settings

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job:
    """
    Enqueue a task to the arq worker.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task

    Returns:
        Job object from arq
    """
    pool = await get_redis_pool()
    try:
        job = await pool.enqueue_job(task_name, *args, **kwargs)
        return job  # type: ignore[return-value]
    finally:
        await pool.close()


async def enqueue_reconcile_subscriptions() -> Job:
    """Enqueue a batch reconciliation of every open subscription."""
    return await enqueue_task("reconcile_subscriptions_task")


async def enqueue_reconcile_subscription(merchant_subscription_id: str) -> Job:
    return await enqueue_task("reconcile_subscription_task", merchant_subscription_id)


async def enqueue_redemption_status_check(merchant_order_id: str) -> Job:
    """Enqueue a status poll for a redemption left PENDING."""
    return await enqueue_task("check_redemption_status_task", merchant_order_id)
