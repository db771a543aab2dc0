"""
Celery application for the order lifecycle engine.

DJANGO_SETTINGS_MODULE is set before the app is created so that the
worker and beat processes read ``CELERY_*`` values (including the weekly
settlement schedule) from the Django settings.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("order_lifecycle")

app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up modules/<app>/tasks.py (settlement lock/unlock jobs)
app.autodiscover_tasks()
