"""
tasks/maintenance_tasks.py
Periodic housekeeping run by Celery beat.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, or_

from tasks.celery_app import celery_app
from tasks.notification_tasks import DatabaseTask

logger = logging.getLogger(__name__)

REFRESH_TOKEN_GRACE_DAYS = 7


@celery_app.task(bind=True, base=DatabaseTask)
def purge_stale_refresh_tokens(self) -> int:
    """
    Beat task: runs nightly.
    Deletes refresh tokens that expired, or were revoked, more than a week ago.
    """
    from shared.models.models import RefreshToken

    cutoff = datetime.now(timezone.utc) - timedelta(days=REFRESH_TOKEN_GRACE_DAYS)
    db = self.get_session()
    try:
        result = db.execute(
            delete(RefreshToken).where(
                or_(
                    RefreshToken.expires_at < cutoff,
                    (RefreshToken.is_revoked == True) & (RefreshToken.created_at < cutoff),
                )
            )
        )
        db.commit()
        logger.info(f"Purged {result.rowcount} stale refresh tokens")
        return result.rowcount
    except Exception as e:
        db.rollback()
        logger.exception(f"purge_stale_refresh_tokens failed: {e}")
        raise
    finally:
        db.close()
