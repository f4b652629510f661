from stayledger.tasks.celery_app import celery
from stayledger.tasks import worker_jobs


@celery.task(name="stayledger.tasks.jobs.expire_pending_bookings")
def expire_pending_bookings():
    return worker_jobs.expire_pending_bookings()


@celery.task(name="stayledger.tasks.jobs.expire_customer_promotions")
def expire_customer_promotions():
    return worker_jobs.expire_customer_promotions()


@celery.task(name="stayledger.tasks.jobs.upgrade_customer_tiers")
def upgrade_customer_tiers():
    return worker_jobs.upgrade_customer_tiers()
