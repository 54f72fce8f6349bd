from __future__ import annotations

import logging

from phone_login.db.session import SessionLocal
from phone_login.models.common import utcnow
from phone_login.services import otp_store
from phone_login.workers.celery_app import celery_app

_LOG = logging.getLogger("phone_login.workers.security")


@celery_app.task(name="phone_login.workers.tasks.security.cleanup_expired_otps")
def cleanup_expired_otps():
    db = SessionLocal()
    try:
        total, deleted = otp_store.delete_expired_records(db, utcnow())
        db.commit()
        if deleted:
            _LOG.info("Deleted %s expired OTP records out of %s", deleted, total)
        return {"checked": int(total), "deleted": int(deleted)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
