"""
Celery application: broker and result backend from settings.
Tasks are in creditjobs.workers.tasks (job execution and reconciliation).
"""
from celery import Celery
from celery.schedules import crontab

from creditjobs.core.config import settings

celery_app = Celery(
    "creditjobs",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "creditjobs.workers.tasks.execute_job",
        "creditjobs.workers.tasks.reconciliation",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Jobs spend their time waiting on providers. Threads also keep the
    # shutdown signal in the process that runs them.
    worker_pool="threads",
    worker_concurrency=settings.celery_worker_concurrency,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    beat_schedule={
        "resume-detached-jobs": {
            "task": "creditjobs.workers.tasks.reconciliation.resume_detached_jobs",
            "schedule": 30.0,
        },
        "sweep-orphaned-reservations": {
            "task": "creditjobs.workers.tasks.reconciliation.sweep_orphaned_reservations",
            "schedule": crontab(minute="*/5"),
        },
    },
)

celery_app.conf.task_routes = {
    "creditjobs.workers.tasks.execute_job.execute_job": {"queue": "jobs"},
}
