from proescrow.tasks.celery_app import celery
from proescrow.tasks import worker_jobs

@celery.task(name="proescrow.tasks.jobs.run_due_jobs")
def run_due_jobs():
    return worker_jobs.run_due_jobs()


@celery.task(name="proescrow.tasks.jobs.process_notification_queue")
def process_notification_queue(limit: int = 50):
    return worker_jobs.process_notification_queue(limit=limit)
