import functools
import logging

from django.db import DatabaseError

from appointments.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def translate_db_errors(func):
    """
    Turn store failures into PersistenceError. The original error is logged
    here and chained, never shown to the caller.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DatabaseError as exc:
            logger.exception("Persistence failure in %s", func.__qualname__)
            raise PersistenceError() from exc

    return wrapper
