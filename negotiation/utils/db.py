import functools
import logging

from sqlalchemy.exc import OperationalError

from negotiation.extensions import db

logger = logging.getLogger(__name__)


def retry_read_once(fn):
    """Retry a read-only operation a single time on a transient store error.

    Never wrap writes with this: a retried write could duplicate side effects.
    """
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except OperationalError as e:
            logger.warning("Transient store error in %s, retrying once: %s", fn.__name__, e)
            db.session.rollback()
            return fn(*args, **kwargs)
    return wrapper
