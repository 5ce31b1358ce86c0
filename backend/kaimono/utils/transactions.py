import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import Session

log = logging.getLogger(__name__)


@contextmanager
def smart_transaction(session: Session, label: Optional[str] = None) -> Iterator[Session]:
    """
    Run a unit of work inside the session's transaction.

    Opens a SAVEPOINT when the session already has a transaction (the usual case
    in request handlers, which have queried before writing), otherwise a plain
    transaction. On error only this block is rolled back and the error is re-raised;
    committing the outer transaction stays with the caller.

        with smart_transaction(db, "cancel order"):
            ...
    """
    nested = session.in_transaction()
    cm = session.begin_nested() if nested else session.begin()
    try:
        with cm:
            yield session
    except Exception as e:
        log.warning(
            "%s rolled back (%s): %s: %s",
            label or "transaction",
            "savepoint" if nested else "transaction",
            type(e).__name__,
            e,
        )
        raise
