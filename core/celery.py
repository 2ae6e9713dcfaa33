from celery import Celery
from celery.signals import beat_init

from core.config import settings

# Use Redis for production/development
broker_url = settings.REDIS_URL
backend_url = settings.REDIS_URL

# Create Celery app
celery_app = Celery(
    "storefront",
    broker=broker_url,
    backend=backend_url,
    include=["tasks.maintenance"],
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    task_always_eager=settings.TESTING,
    task_eager_propagates=False,
)

SCHEDULED_TASKS = {
    "sweep-expired-orders": ("tasks.maintenance.sweep_expired_orders", settings.EXPIRED_ORDERS_SWEEP_INTERVAL_SECONDS),
    "purge-unverified-users": ("tasks.maintenance.purge_unverified_users", settings.UNVERIFIED_USERS_PURGE_INTERVAL_SECONDS),
    "refresh-exchange-rates": ("tasks.maintenance.refresh_exchange_rates", settings.EXCHANGE_RATES_REFRESH_INTERVAL_SECONDS),
}

celery_app.conf.beat_schedule = {
    name: {"task": task, "schedule": float(interval)} for name, (task, interval) in SCHEDULED_TASKS.items()
}


@beat_init.connect
def run_scheduled_tasks_on_startup(sender=None, **kwargs):
    """Beat waits a full interval before the first run; kick every job off once now."""
    for task, _ in SCHEDULED_TASKS.values():
        celery_app.send_task(task)
