import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'grumming_project.settings')

app = Celery('grumming_project')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

# Beat schedule - runs same logic as the management commands
app.conf.beat_schedule = {
    'run-scheduled-payouts-hourly': {
        'task': 'settlement.tasks.run_scheduled_payouts_task',
        'schedule': crontab(minute=5),  # Every hour
    },
    'sync-processing-payouts': {
        'task': 'settlement.tasks.sync_processing_payouts_task',
        'schedule': crontab(minute='*/15'),
    },
}

app.conf.timezone = 'UTC'
