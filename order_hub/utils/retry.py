"""Retry helper for transient store failures."""
import logging
import time
from functools import wraps
from flask import current_app, has_app_context
from order_hub.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY = 0.2  # seconds


def _retry_settings():
    if has_app_context():
        cfg = current_app.config
        return (
            cfg.get('PERSISTENCE_RETRY_ATTEMPTS', DEFAULT_ATTEMPTS),
            cfg.get('PERSISTENCE_RETRY_DELAY', DEFAULT_DELAY),
        )
    return DEFAULT_ATTEMPTS, DEFAULT_DELAY


def retry_on_persistence_error(f):
    """
    Retry an idempotent operation when it raises PersistenceError.

    Only for reads and idempotent writes (e.g. clearing a cart). Accumulating
    writes such as add-to-cart must never be wrapped: a retry after a commit
    whose acknowledgement was lost would add the quantity twice.
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        attempts, delay = _retry_settings()
        for attempt in range(attempts):
            try:
                return f(*args, **kwargs)
            except PersistenceError as e:
                if attempt == attempts - 1:
                    logger.error(f"[RETRY] {f.__name__} failed after {attempts} attempts: {e}")
                    raise
                logger.warning(f"[RETRY] {f.__name__} attempt {attempt + 1}/{attempts} failed: {e}")
                time.sleep(delay * (attempt + 1))
    return wrapper
