"""Periodic job: expire finished trials and send trial reminders.

Run daily, e.g. ``python scripts/send_trial_notifications.py`` from backend/.
"""
import logging
import sys
from datetime import datetime
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sqlalchemy import select  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from app.billing.models import Subscription  # noqa: E402
from app.billing.trial import check_and_send_trial_notifications  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.db.session import SessionLocal  # noqa: E402

logger = logging.getLogger("send_trial_notifications")


def run(db: Session, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.utcnow()
    tenant_ids = db.execute(
        select(Subscription.tenant_id).where(Subscription.status == "TRIALING")
    ).scalars().all()

    summary = {"checked": 0, "expired": 0, "ending_soon": 0, "failed": 0}
    for tenant_id in tenant_ids:
        summary["checked"] += 1
        try:
            outcome = check_and_send_trial_notifications(db, tenant_id, now)
        except Exception:
            db.rollback()
            summary["failed"] += 1
            logger.exception("Trial check failed tenant=%s", tenant_id)
            continue
        if outcome in ("expired", "ending_soon"):
            summary[outcome] += 1
    return summary


def main() -> int:
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
    db = SessionLocal()
    try:
        summary = run(db)
    finally:
        db.close()

    print(
        f"[OK] trials checked={summary['checked']} expired={summary['expired']} "
        f"ending_soon={summary['ending_soon']} failed={summary['failed']}"
    )
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
