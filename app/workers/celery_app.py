from __future__ import annotations

from celery import Celery

from app.core.config import settings
from app.core.logging import configure_logging

configure_logging()

celery = Celery(
    "visitas_feedback",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks_dispatch"],
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_always_eager=settings.CELERY_ALWAYS_EAGER,
    beat_schedule={
        "visit-reminders": {"task": "sweeps.visit_reminders", "schedule": 15 * 60.0},
        "feedback-followups": {"task": "sweeps.feedback_followups", "schedule": 60 * 60.0},
        "dispatch-drain": {"task": "dispatch.drain_pending", "schedule": 5 * 60.0},
    },
)
