"""Redis connection and queue options for the storefront arq worker."""

from typing import Optional
from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings


def get_redis_settings(url: Optional[str] = None) -> RedisSettings:
    """Build RedisSettings from ``url`` or REDIS_URL.

    ``rediss://`` enables TLS; credentials and the database index are read
    from the URL.
    """
    parsed = urlparse(url or get_settings().REDIS_URL)
    if parsed.scheme not in ("redis", "rediss"):
        raise ValueError(f"Unsupported Redis URL scheme: {parsed.scheme!r}")

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        username=parsed.username,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
    )


def worker_queue_options() -> dict:
    """Queue name and job limits shared by the worker and any enqueuer."""
    settings = get_settings()
    return {
        "queue_name": settings.WORKER_QUEUE_NAME,
        "job_timeout": settings.WORKER_JOB_TIMEOUT_SECONDS,
        "max_jobs": settings.WORKER_MAX_JOBS,
    }
