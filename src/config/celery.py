"""
Celery configuration for the pre-order engine.

``DJANGO_SETTINGS_MODULE`` is set before the app is instantiated so Celery
reads the Django settings (``CELERY_`` prefix), including the beat schedule
for the overdue sweep and the outbox relay.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("preorders")

# Read configuration from Django settings with the CELERY_ prefix
app.config_from_object("django.conf:settings", namespace="CELERY")

# Discover tasks.py in every installed app
app.autodiscover_tasks()
