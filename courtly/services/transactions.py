"""Transaction helper — atomic read-check-write with a retry budget.

Booking creation and every payment transition run through
run_in_transaction(). The function passed in does its reads (locking the
rows it depends on with SELECT ... FOR UPDATE where it matters) and its
writes on db.session; the helper commits, or rolls back on any error.

Precondition on the database: conflicting writers on the locked rows are
serialized. PostgreSQL row locks provide this at READ COMMITTED. On SQLite
every transaction opens with BEGIN IMMEDIATE (configure_sqlite_transactions
in courtly.extensions), so the reads of a transaction already hold the
database write lock. Serialization failures, lock timeouts, deadlocks and dropped
connections surface as OperationalError and are retried; once the budget
is spent the caller gets TransientStoreError.
"""

import logging
import random
import time

from flask import current_app
from sqlalchemy.exc import OperationalError

from courtly.errors import TransientStoreError
from courtly.extensions import db

logger = logging.getLogger(__name__)


def _retry_delay(attempt):
    base = 0.05 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def run_in_transaction(op_name, func, max_attempts=None):
    """Run func() and commit, retrying on transient store failures.

    Domain errors raised by func (SlotConflict, AlreadyPaid, ...) roll the
    transaction back and propagate unchanged.
    """
    if max_attempts is None:
        max_attempts = current_app.config.get("TRANSACTION_MAX_ATTEMPTS", 3)

    attempt = 1
    while True:
        try:
            result = func()
            db.session.commit()
            return result
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= max_attempts:
                logger.error(
                    f"{op_name}: transaction failed after {attempt} attempts: {exc}"
                )
                raise TransientStoreError() from exc

            delay = _retry_delay(attempt)
            logger.warning(
                f"{op_name}: transient store failure, retrying "
                f"(attempt {attempt}, delay {delay:.2f}s): {exc}"
            )
            time.sleep(delay)
            attempt += 1
        except Exception:
            db.session.rollback()
            raise
