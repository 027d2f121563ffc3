from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from court_reservations.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. managed Redis over TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "court_reservations",
    broker=_redis_url,
    backend=_redis_url,
    include=["court_reservations.tasks.jobs"],
)

celery.conf.timezone = settings.VENUE_TIMEZONE

celery.conf.beat_schedule = {
    "expire-pending-holds-every-minute": {
        "task": "court_reservations.tasks.jobs.expire_pending_holds",
        "schedule": 60.0,
    },
    "reconcile-refunds-every-10-minutes": {
        "task": "court_reservations.tasks.jobs.reconcile_refunds",
        "schedule": 600.0,
        "kwargs": {"limit": 50},
    },
}
