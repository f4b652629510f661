from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import worker_ready

from stayledger.core.config import settings
from stayledger.core.logging import configure_logging


def broker_url(url: str, cert_reqs: str = "CERT_REQUIRED") -> str:
    """Broker/backend URL for the job queue; TLS URLs carry an explicit ssl_cert_reqs."""
    if urlparse(url or "").scheme.lower() != "rediss":
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    qs.setdefault("ssl_cert_reqs", [cert_reqs])
    return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))


_redis_url = broker_url(settings.REDIS_URL, settings.REDIS_SSL_CERT_REQS)

celery = Celery(
    "stayledger",
    broker=_redis_url,
    backend=_redis_url,
    include=["stayledger.tasks.jobs"],
)

celery.conf.timezone = settings.CELERY_TIMEZONE


# Release stale holds right away instead of waiting for the first beat tick
@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    configure_logging()
    from stayledger.tasks.jobs import expire_pending_bookings
    expire_pending_bookings.delay()


celery.conf.beat_schedule = {
    "expire-pending-bookings-every-minute": {
        "task": "stayledger.tasks.jobs.expire_pending_bookings",
        "schedule": 60.0,
    },
    "expire-customer-promotions-hourly": {
        "task": "stayledger.tasks.jobs.expire_customer_promotions",
        "schedule": 3600.0,
    },
    "upgrade-customer-tiers-daily": {
        "task": "stayledger.tasks.jobs.upgrade_customer_tiers",
        "schedule": 86400.0,
    },
}
