import logging
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import after_setup_logger
from proescrow.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "proescrow",
    broker=_redis_url,
    backend=_redis_url,
    include=["proescrow.tasks.jobs"],
)

celery.conf.timezone = "UTC"


@after_setup_logger.connect
def _configure_logging(logger, **kwargs):
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))


celery.conf.beat_schedule = {
    "run-due-jobs-every-30-seconds": {
        "task": "proescrow.tasks.jobs.run_due_jobs",
        "schedule": 30.0,
    },
    "process-notification-queue-every-minute": {
        "task": "proescrow.tasks.jobs.process_notification_queue",
        "schedule": 60.0,
        "kwargs": {"limit": settings.NOTIFICATION_BATCH_SIZE},
    },
}
