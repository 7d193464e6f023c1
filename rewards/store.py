"""Queries against the account store, task catalog and the two ledgers.

Every function takes the caller's session and never commits; the unit of
work belongs to the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import Row, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from .errors import StorageFailureError
from .tables import Account, Completion, Referral, Task, utcnow

DEFAULT_TASKS: list[dict[str, Any]] = [
    {"code": "subscribe_telegram", "title": "Subscribe to Telegram channel", "points": 20},
    {"code": "subscribe_twitter", "title": "Follow on Twitter/X", "points": 20},
    {"code": "enter_referral_code", "title": "Enter referral code", "points": 10},
    {"code": "complete_profile", "title": "Complete profile info", "points": 15},
    {"code": "daily_checkin", "title": "Daily check-in", "points": 5},
]

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert_if_absent(session: Session, table, values: dict[str, Any], index_elements: list[str]) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING; True if a row was written."""
    dialect = session.get_bind().dialect.name
    insert = _INSERT_BY_DIALECT.get(dialect)
    if insert is None:
        raise StorageFailureError(f"Conflict-tolerant insert is not supported on {dialect}")
    stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    result = session.execute(stmt)
    return result.rowcount == 1


# =============================================================================
# Account store
# =============================================================================


def create_account(session: Session, username: str, points: int = 0) -> Account:
    account = Account(username=username, points=points)
    session.add(account)
    session.flush()
    return account


def get_account(session: Session, user_id: int) -> Optional[Account]:
    return session.get(Account, user_id)


def get_referrer_link(session: Session, user_id: int) -> Optional[Row]:
    """Return ``(id, referrer_id)`` for the account, or None if it does not exist."""
    stmt = select(Account.id, Account.referrer_id).where(Account.id == user_id)
    return session.execute(stmt).one_or_none()


def account_exists(session: Session, user_id: int) -> bool:
    stmt = select(Account.id).where(Account.id == user_id)
    return session.execute(stmt).scalar_one_or_none() is not None


def add_points(session: Session, user_id: int, amount: int) -> bool:
    stmt = (
        update(Account)
        .where(Account.id == user_id)
        .values(points=Account.points + amount)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount == 1


def assign_referrer(session: Session, user_id: int, referrer_id: int, bonus: int) -> bool:
    """Set the referrer and pay the referred user's bonus, only if no referrer is set yet."""
    stmt = (
        update(Account)
        .where(Account.id == user_id, Account.referrer_id.is_(None))
        .values(referrer_id=referrer_id, points=Account.points + bonus)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount == 1


# =============================================================================
# Task catalog
# =============================================================================


def get_task(session: Session, code: str) -> Optional[Task]:
    return session.get(Task, code)


def list_tasks(session: Session) -> Sequence[Task]:
    return session.execute(select(Task).order_by(Task.code)).scalars().all()


def seed_task_catalog(session: Session, tasks: Iterable[dict[str, Any]] = DEFAULT_TASKS) -> int:
    """Insert catalog entries that are missing; existing codes are left untouched."""
    inserted = 0
    for task in tasks:
        if _insert_if_absent(session, Task.__table__, dict(task), ["code"]):
            inserted += 1
    return inserted


# =============================================================================
# Completion ledger
# =============================================================================


def insert_completion_if_absent(
    session: Session,
    user_id: int,
    task_code: str,
    completed_at: Optional[datetime] = None,
) -> bool:
    return _insert_if_absent(
        session,
        Completion.__table__,
        {"user_id": user_id, "task_code": task_code, "completed_at": completed_at or utcnow()},
        ["user_id", "task_code"],
    )


def list_completions(session: Session, user_id: int) -> Sequence[Row]:
    """Completed tasks of a user joined with the catalog, most recent first."""
    stmt = (
        select(Task.code, Task.title, Task.points, Completion.completed_at)
        .join(Task, Task.code == Completion.task_code)
        .where(Completion.user_id == user_id)
        .order_by(Completion.completed_at.desc(), Task.code)
    )
    return session.execute(stmt).all()


def count_completions(session: Session, user_id: int, task_code: str) -> int:
    stmt = select(func.count()).select_from(Completion).where(
        Completion.user_id == user_id, Completion.task_code == task_code
    )
    return session.execute(stmt).scalar_one()


# =============================================================================
# Referral ledger
# =============================================================================


def insert_referral(
    session: Session,
    *,
    referrer_id: int,
    referred_id: int,
    bonus_referrer: int,
    bonus_referred: int,
) -> Referral:
    referral = Referral(
        referrer_id=referrer_id,
        referred_id=referred_id,
        bonus_referrer=bonus_referrer,
        bonus_referred=bonus_referred,
    )
    session.add(referral)
    session.flush()
    return referral


def get_referral_for(session: Session, referred_id: int) -> Optional[Referral]:
    stmt = select(Referral).where(Referral.referred_id == referred_id)
    return session.execute(stmt).scalar_one_or_none()


# =============================================================================
# Ranking view
# =============================================================================


def top_accounts(session: Session, limit: int) -> Sequence[Row]:
    """``(id, username, points)`` ordered by points descending, then id ascending."""
    stmt = (
        select(Account.id, Account.username, Account.points)
        .order_by(Account.points.desc(), Account.id.asc())
        .limit(limit)
    )
    return session.execute(stmt).all()
