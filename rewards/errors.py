"""Error types raised by the rewards ledger and helpers to classify storage failures."""

from __future__ import annotations

import re
from typing import Optional


class RewardServiceError(Exception):
    pass


class UnknownTaskError(RewardServiceError):
    def __init__(self, task_code: str):
        self.task_code = task_code
        super().__init__(f"Unknown task {task_code!r}")


class UnknownUserError(RewardServiceError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class UnknownReferrerError(RewardServiceError):
    def __init__(self, referrer_id: int):
        self.referrer_id = referrer_id
        super().__init__(f"Referrer {referrer_id} not found")


class SelfReferralError(RewardServiceError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} cannot refer themselves")


class ReferrerAlreadySetError(RewardServiceError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"Referrer already set for user {user_id}")


class ConflictError(RewardServiceError):
    """The store aborted the unit of work because of a concurrent transaction.

    Nothing was written; the whole operation is safe to retry.
    """

    retryable = True


class StorageFailureError(RewardServiceError):
    """The unit of work could not be committed."""

    retryable = False


_SERIALIZATION_SQLSTATES = {"40001", "40P01"}
_SERIALIZATION_MESSAGE_RE = re.compile(
    r"could not serialize access|deadlock detected|database is locked|database table is locked",
    re.IGNORECASE,
)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: Optional[BaseException] = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = getattr(current, "orig", None) or current.__cause__ or current.__context__
    return chain


def is_serialization_failure(exc: BaseException) -> bool:
    """Return True if the exception is a serialization abort or lock conflict."""
    for e in _unwrap_exception_chain(exc):
        sqlstate = getattr(e, "sqlstate", None) or getattr(e, "pgcode", None)
        if sqlstate in _SERIALIZATION_SQLSTATES:
            return True
        if _SERIALIZATION_MESSAGE_RE.search(str(e)):
            return True
    return False


def translate_storage_error(exc: BaseException) -> RewardServiceError:
    """Map a database exception onto the ledger's error taxonomy."""
    if is_serialization_failure(exc):
        return ConflictError("Concurrent update conflict, retry the operation")
    return StorageFailureError(f"Storage failure: {exc.__class__.__name__}")
