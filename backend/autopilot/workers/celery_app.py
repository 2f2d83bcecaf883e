from celery import Celery
from autopilot.config import get_settings

settings = get_settings()

celery_app = Celery(
    "dispute_autopilot",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["autopilot.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes max per task
    task_soft_time_limit=540,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "autopilot.workers.tasks.sweep_disputes": {"queue": "disputes.submit"},
        "autopilot.workers.tasks.optimize_all_merchants": {"queue": "disputes.policy"},
        "autopilot.workers.tasks.optimize_merchant_reasons": {"queue": "disputes.policy"},
    },
    beat_schedule={
        "sweep-open-disputes": {
            "task": "autopilot.workers.tasks.sweep_disputes",
            "schedule": float(settings.sweep_interval_seconds),
        },
        "optimize-reason-policies": {
            "task": "autopilot.workers.tasks.optimize_all_merchants",
            "schedule": float(settings.optimizer_interval_seconds),
        },
    },
)
