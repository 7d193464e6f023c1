from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from . import store
from .config import settings
from .db import Database
from .errors import (
    ConflictError,
    ReferrerAlreadySetError,
    RewardServiceError,
    SelfReferralError,
    StorageFailureError,
    UnknownReferrerError,
    UnknownTaskError,
    UnknownUserError,
)
from .logging_config import get_logger
from .models import (
    AccountStatus,
    AccountView,
    CompletedTask,
    CompleteTaskResult,
    LeaderboardEntry,
    ReferralResult,
    TaskView,
)
from .tables import utcnow

logger = get_logger(__name__)

__all__ = [
    "RewardService",
    "RewardServiceError",
    "UnknownTaskError",
    "UnknownUserError",
    "UnknownReferrerError",
    "SelfReferralError",
    "ReferrerAlreadySetError",
    "ConflictError",
    "StorageFailureError",
]


class RewardService:
    """Awards points for task completions and referrals.

    Each mutating call is one SERIALIZABLE unit of work: either every write
    it performs is committed, or none is. No in-process locking is done;
    concurrent callers are ordered by the database alone.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        *,
        bonus_to_referrer: Optional[int] = None,
        bonus_to_referred: Optional[int] = None,
        leaderboard_default_limit: Optional[int] = None,
        leaderboard_max_limit: Optional[int] = None,
    ):
        self.db = database or Database()
        self.bonus_to_referrer = settings.bonus_to_referrer if bonus_to_referrer is None else bonus_to_referrer
        self.bonus_to_referred = settings.bonus_to_referred if bonus_to_referred is None else bonus_to_referred
        self.leaderboard_default_limit = leaderboard_default_limit or settings.leaderboard_default_limit
        self.leaderboard_max_limit = leaderboard_max_limit or settings.leaderboard_max_limit

    def initialize(self) -> int:
        """Create missing tables and seed the default task catalog."""
        self.db.create_tables()
        with self.db.transaction() as session:
            seeded = store.seed_task_catalog(session)
        logger.info("task_catalog_seeded", inserted=seeded)
        return seeded

    def complete_task(self, user_id: int, task_code: str) -> CompleteTaskResult:
        """Record that the user finished a task and award its points once.

        Repeating the call for the same pair is a successful no-op that
        reports ``already_completed=True``.
        """
        with self.db.transaction() as session:
            task = store.get_task(session, task_code)
            if task is None:
                raise UnknownTaskError(task_code)

            try:
                inserted = store.insert_completion_if_absent(session, user_id, task_code, utcnow())
            except IntegrityError as exc:
                raise UnknownUserError(user_id) from exc

            if inserted:
                if not store.add_points(session, user_id, task.points):
                    raise UnknownUserError(user_id)
                result = CompleteTaskResult(already_completed=False, awarded=task.points)
            else:
                result = CompleteTaskResult(already_completed=True, awarded=0)

        if result.already_completed:
            logger.info("completion_already_recorded", user_id=user_id, task=task_code)
        else:
            logger.info("task_completed", user_id=user_id, task=task_code, awarded=result.awarded)
        return result

    def set_referrer(self, user_id: int, referrer_id: int) -> ReferralResult:
        """Link the user to a referrer and pay both referral bonuses.

        Only the first successful call per user pays out; every later call
        fails with ``ReferrerAlreadySetError``.
        """
        if referrer_id == user_id:
            raise SelfReferralError(user_id)

        with self.db.transaction() as session:
            link = store.get_referrer_link(session, user_id)
            if link is None:
                raise UnknownUserError(user_id)
            if link.referrer_id is not None:
                raise ReferrerAlreadySetError(user_id)
            if not store.account_exists(session, referrer_id):
                raise UnknownReferrerError(referrer_id)

            try:
                # Guarded on referrer_id IS NULL, so a racing winner leaves zero rows here
                if not store.assign_referrer(session, user_id, referrer_id, self.bonus_to_referred):
                    raise ReferrerAlreadySetError(user_id)
                paid = store.add_points(session, referrer_id, self.bonus_to_referrer)
            except IntegrityError as exc:
                # users.referrer_id foreign key: the referrer vanished mid-transaction
                raise UnknownReferrerError(referrer_id) from exc
            if not paid:
                raise UnknownReferrerError(referrer_id)
            try:
                store.insert_referral(
                    session,
                    referrer_id=referrer_id,
                    referred_id=user_id,
                    bonus_referrer=self.bonus_to_referrer,
                    bonus_referred=self.bonus_to_referred,
                )
            except IntegrityError as exc:
                raise ReferrerAlreadySetError(user_id) from exc

        logger.info(
            "referrer_set",
            user_id=user_id,
            referrer_id=referrer_id,
            bonus_to_referred=self.bonus_to_referred,
            bonus_to_referrer=self.bonus_to_referrer,
        )
        return ReferralResult(
            bonus_to_referred=self.bonus_to_referred,
            bonus_to_referrer=self.bonus_to_referrer,
        )

    def leaderboard(self, limit: Any = None) -> list[LeaderboardEntry]:
        limit = self.normalize_limit(limit)
        with self.db.session() as session:
            rows = store.top_accounts(session, limit)
        return [
            LeaderboardEntry(id=row.id, username=row.username, points=row.points, rank=rank)
            for rank, row in enumerate(rows, start=1)
        ]

    def normalize_limit(self, limit: Any) -> int:
        """Bad or missing limits fall back to the default; large ones are clamped."""
        try:
            value = int(limit)
        except (TypeError, ValueError):
            return self.leaderboard_default_limit
        if value < 1:
            return self.leaderboard_default_limit
        return min(value, self.leaderboard_max_limit)

    def get_status(self, user_id: int) -> AccountStatus:
        with self.db.session() as session:
            account = store.get_account(session, user_id)
            if account is None:
                raise UnknownUserError(user_id)
            completions = [
                CompletedTask(code=row.code, title=row.title, points=row.points, completed_at=row.completed_at)
                for row in store.list_completions(session, user_id)
            ]
            return AccountStatus(account=AccountView.model_validate(account), completions=completions)

    def list_tasks(self) -> list[TaskView]:
        with self.db.session() as session:
            return [TaskView.model_validate(task) for task in store.list_tasks(session)]
