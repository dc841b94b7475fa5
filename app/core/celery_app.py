import ssl

from celery import Celery
from celery.schedules import crontab

import app.db.base  # noqa: F401  register all models so relationships resolve
from app.core.config import settings

_uses_tls = settings.REDIS_URL.startswith("rediss://")

celery_app = Celery(
    "certificates",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    task_track_started=True,
    result_expires=3600,
    beat_schedule={
        "retry-failed-certificates-nightly": {
            "task": "app.certificates.tasks.retry_failed_certificates_task",
            "schedule": crontab(hour=2, minute=30),
            "kwargs": {"max_retries": settings.CERTIFICATE_RETRY_MAX_ATTEMPTS},
        },
        "send-certificate-reminders-weekly": {
            "task": "app.certificates.tasks.send_certificate_reminders_task",
            "schedule": crontab(hour=9, minute=0, day_of_week="mon"),
            "kwargs": {"days_old": settings.CERTIFICATE_REMINDER_DAYS},
        },
    },
)

if _uses_tls:
    celery_app.conf.update(
        broker_use_ssl={"ssl_cert_reqs": ssl.CERT_NONE},
        redis_backend_use_ssl={"ssl_cert_reqs": ssl.CERT_NONE},
    )

celery_app.autodiscover_tasks(["app.certificates"])
