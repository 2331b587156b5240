"""
Scheduled tasks configuration for Celery Beat
"""

from celery.schedules import crontab
from competition_core.celery_app import celery
from competition_core.core.config import settings
from competition_core.tasks.rounds import process_round_qualifications  # noqa: F401

celery.conf.beat_schedule = {
    'process-round-qualifications': {
        'task': 'competition_core.tasks.rounds.process_round_qualifications',
        'schedule': crontab(minute=f'*/{settings.qualification_schedule_minutes}'),
    },
}
