import time
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Lock timeouts, deadlocks and serialization failures all surface as
# OperationalError; anything else is a real failure and is not retried.
RETRYABLE_ERRORS = (OperationalError,)


class TransactionRunner:
    """
    Runs a unit of work in one transaction on the given session.

    The work callable must be safe to re-run from scratch: on a transient
    store error the transaction is rolled back and the callable is invoked
    again after an exponential backoff, up to max_attempts times.
    Callers may widen the retryable set with retry_on, e.g. IntegrityError
    for work that regenerates a random unique value on every run.
    """

    def __init__(self, session, max_attempts: int = 3, backoff_seconds: float = 0.05):
        self.session = session
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def run(self, work: Callable[[], T], retry_on: tuple = ()) -> T:
        retryable = RETRYABLE_ERRORS + tuple(retry_on)
        attempt = 0
        while True:
            attempt += 1
            try:
                result = work()
                self.session.commit()
                return result
            except retryable as e:
                self.session.rollback()
                if attempt >= self.max_attempts:
                    logger.error(f"Transaction failed after {attempt} attempts: {e}")
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(f"Transient store error (attempt {attempt}), retrying in {delay:.3f}s: {e}")
                time.sleep(delay)
            except Exception:
                self.session.rollback()
                raise
