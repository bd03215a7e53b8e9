import logging
from contextlib import contextmanager

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..db import db
from ..errors import InvalidTransition, TransientUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def transaction(on_stale=InvalidTransition):
    """One all-or-nothing unit of work against the store.

    Commits on success and rolls back on any failure. A lost optimistic
    version check becomes ``on_stale``; connection-level failures become
    ``TransientUnavailable`` so callers can retry with backoff.
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as e:
        db.session.rollback()
        raise on_stale("row changed concurrently") from e
    except OperationalError as e:
        db.session.rollback()
        logger.warning("store unavailable: %s", e.orig)
        raise TransientUnavailable(str(e.orig)) from e
    except DBAPIError as e:
        db.session.rollback()
        if e.connection_invalidated:
            logger.warning("store connection lost: %s", e.orig)
            raise TransientUnavailable(str(e.orig)) from e
        raise
    except Exception:
        db.session.rollback()
        raise
