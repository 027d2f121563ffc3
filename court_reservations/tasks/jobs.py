from court_reservations.tasks.celery_app import celery
from court_reservations.tasks import worker_jobs

@celery.task(name="court_reservations.tasks.jobs.expire_pending_holds")
def expire_pending_holds():
    return worker_jobs.expire_pending_holds()

@celery.task(name="court_reservations.tasks.jobs.reconcile_refunds")
def reconcile_refunds(limit: int = 50):
    return worker_jobs.reconcile_refunds(limit=limit)
