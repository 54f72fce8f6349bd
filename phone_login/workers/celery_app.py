from celery import Celery
from phone_login.core.config import settings

celery_app = Celery(
    "phone_login",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["phone_login.workers.tasks.security"],
)

celery_app.conf.beat_schedule = {
    "cleanup_expired_otps": {
        "task": "phone_login.workers.tasks.security.cleanup_expired_otps",
        "schedule": float(settings.OTP_CLEANUP_INTERVAL_SECONDS),
    },
}
celery_app.conf.timezone = "UTC"
