from celery import Celery
from kombu import Queue

from core.env import env_str
from core.logging import setup_logging
from services.schedule_loader import as_celery_schedule, load_schedule_config, scheduler_timezone

setup_logging()

CELERY_BROKER_URL = env_str("CELERY_BROKER_URL", "redis://redis:6379/0") or "redis://redis:6379/0"
CELERY_RESULT_BACKEND = env_str("CELERY_RESULT_BACKEND", "redis://redis:6379/1") or "redis://redis:6379/1"
ALERTS_QUEUE = env_str("ALERTS_QUEUE", "alerts") or "alerts"

app = Celery(
    "subtrack",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["worker.tasks"],
)

# One job at a time: the delivery ledger's check-then-insert is not atomic.
app.conf.update(
    task_track_started=True,
    timezone="UTC",
    task_default_queue=ALERTS_QUEUE,
    task_queues=(Queue(ALERTS_QUEUE),),
    task_routes={"alerts.*": {"queue": ALERTS_QUEUE}},
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={},
)

_, yaml_entries, _ = load_schedule_config()
schedule_from_yaml = as_celery_schedule(yaml_entries, default_queue=ALERTS_QUEUE) if yaml_entries else {}
if schedule_from_yaml:
    app.conf.beat_schedule.update(schedule_from_yaml)
# Shared with the monthly evaluator so the summary period matches the firing month.
app.conf.update(timezone=scheduler_timezone())
current_tz = getattr(app.conf, "timezone", None) or "UTC"
app.conf.enable_utc = str(current_tz).upper() == "UTC"
