"""
Scan Ledger: append-only record of wristband scan attempts.
Rows are only ever inserted; there is no update or delete path.
"""

import logging
from datetime import timedelta

from sqlalchemy import func

from src.extensions import db
from src.models import ScanLog
from src.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

RESULT_SUCCESS = "SUCCESS"


def record_scan(wristband_id, scanned_by, result, location=None, device=None, notes=None, now=None):
    """Adds a row to the caller's transaction; the caller commits."""
    entry = ScanLog(
        wristband_id=wristband_id,
        scanned_by=scanned_by or "unknown",
        scan_result=result,
        scan_location=location,
        scan_device=device,
        notes=notes,
        scanned_at=as_utc(now or utcnow()),
    )
    db.session.add(entry)
    logger.info(
        "Wristband scan logged: wristband=%s result=%s by=%s location=%s",
        wristband_id, result, entry.scanned_by, location,
    )
    return entry


def get_scan_history(wristband_id, page=1, per_page=50):
    pagination = (
        ScanLog.query
        .filter_by(wristband_id=wristband_id)
        .order_by(ScanLog.scanned_at.desc())
        .paginate(page=page, per_page=per_page, error_out=False)
    )
    return {
        "data": [entry.to_dict() for entry in pagination.items],
        "pagination": {
            "page": pagination.page,
            "per_page": pagination.per_page,
            "total": pagination.total,
            "total_pages": pagination.pages,
        },
    }


def get_scan_stats(wristband_id, window_minutes=60, now=None):
    """Attempt counts by result, plus how many attempts landed in the last window."""
    rows = (
        db.session.query(ScanLog.scan_result, func.count(ScanLog.scan_log_id))
        .filter(ScanLog.wristband_id == wristband_id)
        .group_by(ScanLog.scan_result)
        .all()
    )
    by_result = {result: count for result, count in rows}

    since = as_utc(now or utcnow()) - timedelta(minutes=window_minutes)
    recent = (
        ScanLog.query
        .filter(ScanLog.wristband_id == wristband_id, ScanLog.scanned_at >= since)
        .count()
    )
    total = sum(by_result.values())
    return {
        "total_attempts": total,
        "successful": by_result.get(RESULT_SUCCESS, 0),
        "rejected": total - by_result.get(RESULT_SUCCESS, 0),
        "by_result": by_result,
        "recent_attempts": recent,
        "window_minutes": window_minutes,
    }
