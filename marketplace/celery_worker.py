# marketplace/celery_worker.py
from celery import Celery

from marketplace.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery(
    "marketplace",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks live outside this module, import them so the worker registers them
celery_app.conf.imports = ("marketplace.services.notification_service",)

celery_app.conf.task_serializer = "json"
celery_app.conf.timezone = "UTC"
