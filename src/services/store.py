"""
Transaction boundary helpers.

Domain refusals roll back and come back as (None, DomainError). Store failures
(connection loss, timeouts, deadlocks, serialization conflicts) are retried with
exponential backoff and finally raised as StoreUnavailable.
"""

import functools
import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError

from src.errors import StoreUnavailable
from src.extensions import db

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY = 2.0


def transactional(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        attempts = max(1, current_app.config.get("STORE_RETRY_ATTEMPTS", 3))
        for attempt in range(attempts):
            try:
                result = fn(*args, **kwargs)
                db.session.commit()
                return result
            except OperationalError as e:
                db.session.rollback()
                if attempt + 1 >= attempts:
                    logger.error("%s failed after %d attempts: %s", fn.__name__, attempts, e)
                    raise StoreUnavailable(str(e)) from e
                delay = min(0.05 * 2 ** attempt, MAX_RETRY_DELAY)
                logger.warning(
                    "%s attempt %d failed: %s, retrying in %.2fs",
                    fn.__name__, attempt + 1, e, delay,
                )
                time.sleep(delay)
            except Exception:
                db.session.rollback()
                raise
    return wrapper


def refuse(error):
    """Roll back whatever the current unit of work touched and return the refusal."""
    db.session.rollback()
    return None, error
