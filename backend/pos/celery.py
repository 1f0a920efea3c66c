"""
Celery application for the POS backend.

Workers are started with:
    celery -A pos worker -l info
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'pos.settings')

app = Celery('pos')

# All celery settings live in Django settings with the CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
