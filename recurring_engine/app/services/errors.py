"""Error taxonomy for the recurring transaction engine.

The sweep decides per error type whether a rule is skipped (an expected race
outcome) or counted as failed. Storage errors are transient: the engine does
not retry within a run, the next scheduled sweep picks the rule up again.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class RecurringEngineError(Exception):
    """Base class for every error raised by the engine."""


class InvalidFrequencyConfig(RecurringEngineError):
    """The rule's frequency descriptor can never produce a due date."""


class AmountComputationError(RecurringEngineError):
    """Installment math cannot produce a valid minor-unit amount."""


class RuleNotFound(RecurringEngineError):
    def __init__(self, rule_id: UUID) -> None:
        self.rule_id = rule_id
        super().__init__(f"Recurring rule {rule_id} not found")


class RuleInactive(RecurringEngineError):
    def __init__(self, rule_id: UUID) -> None:
        self.rule_id = rule_id
        super().__init__(f"Recurring rule {rule_id} is inactive")


class AlreadyClaimed(RecurringEngineError):
    def __init__(self, rule_id: UUID) -> None:
        self.rule_id = rule_id
        super().__init__(f"Recurring rule {rule_id} is claimed by another run")


class ClaimLost(RecurringEngineError):
    """Generation was attempted without holding the rule's claim."""

    def __init__(self, rule_id: UUID, token: str) -> None:
        self.rule_id = rule_id
        self.token = token
        super().__init__(f"Claim {token} no longer held on recurring rule {rule_id}")


class RuleBusy(RecurringEngineError):
    """A user edit was attempted while a processing claim is live."""

    def __init__(self, rule_id: UUID) -> None:
        self.rule_id = rule_id
        super().__init__(f"Recurring rule {rule_id} is being processed, retry shortly")


class DuplicateOccurrence(RecurringEngineError):
    def __init__(self, rule_id: UUID, occurrence_index: int) -> None:
        self.rule_id = rule_id
        self.occurrence_index = occurrence_index
        super().__init__(
            f"Occurrence {occurrence_index} of recurring rule {rule_id} already exists"
        )


class StorageError(RecurringEngineError):
    """Transient storage failure, eligible for retry on the next sweep."""


class StorageTimeout(StorageError):
    pass


_TIMEOUT_MARKERS = ("timeout", "timed out", "canceling statement", "database is locked")


def translate_storage_error(exc: Exception) -> StorageError:
    """Map a SQLAlchemy exception onto the engine's storage errors."""
    if isinstance(exc, PoolTimeoutError):
        return StorageTimeout(str(exc))
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if any(marker in message for marker in _TIMEOUT_MARKERS):
            return StorageTimeout(str(exc))
    return StorageError(str(exc))


STORAGE_EXCEPTIONS = (DBAPIError, PoolTimeoutError)


OCCURRENCE_CONSTRAINT = "uq_transactions_rule_occurrence"
# SQLite reports the columns instead of the constraint name
_OCCURRENCE_COLUMNS = "transactions.recurring_rule_id, transactions.occurrence_index"


def is_duplicate_occurrence(exc: IntegrityError) -> bool:
    """True only when *exc* violates the one-transaction-per-occurrence key."""
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint is not None:
        return constraint == OCCURRENCE_CONSTRAINT
    message = str(exc.orig if exc.orig is not None else exc)
    return OCCURRENCE_CONSTRAINT in message or _OCCURRENCE_COLUMNS in message
