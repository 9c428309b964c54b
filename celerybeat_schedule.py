"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Replay failed webhook deliveries whose backoff has elapsed
    'retry-failed-webhooks': {
        'task': 'tasks.retry_failed_webhooks',
        'schedule': crontab(minute='*/5'),
    },
}
