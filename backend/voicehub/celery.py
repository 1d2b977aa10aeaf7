import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'voicehub.settings')

app = Celery('voicehub')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

PAYMENT_TASKS = (
    "payments.tasks.process_webhook_retry_queue",
    "payments.tasks.retry_webhook_item",
    "payments.tasks.expire_stale_webhooks",
)

app.conf.task_routes = {name: {"queue": "payments"} for name in PAYMENT_TASKS}
app.conf.task_routes['*'] = {'queue': 'default'}
app.conf.task_default_queue = 'default'

app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    # Webhook replays must survive a worker crash mid-task
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_queues={
        'default': {'exchange': 'default', 'routing_key': 'default'},
        'payments': {'exchange': 'payments', 'routing_key': 'payments'},
    },
)

app.conf.task_annotations = {
    'payments.tasks.retry_webhook_item': {
        'rate_limit': '60/m',
        'time_limit': 120,
        'soft_time_limit': 90,
    },
}

app.conf.beat_schedule = {
    "payments_process_webhook_retry_queue_1min": {
        "task": "payments.tasks.process_webhook_retry_queue",
        "schedule": crontab(minute="*"),
        "options": {"queue": "payments", "priority": 8},
    },
    "payments_expire_stale_webhooks_hourly": {
        "task": "payments.tasks.expire_stale_webhooks",
        "schedule": crontab(minute=5),
        "options": {"queue": "payments"},
    },
}
