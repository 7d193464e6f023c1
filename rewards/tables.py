"""SQLAlchemy tables backing the account store and the reward ledgers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements an INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Account(Base):
    """A user's identity and point balance."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        CheckConstraint("referrer_id IS NULL OR referrer_id <> id", name="ck_users_no_self_referral"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    referrer_id: Mapped[Optional[int]] = mapped_column(
        IdType, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Account {self.id} {self.username!r} points={self.points}>"


class Task(Base):
    """Catalog entry: completing the task awards ``points`` once per user."""

    __tablename__ = "tasks"
    __table_args__ = (CheckConstraint("points >= 0", name="ck_tasks_points_non_negative"),)

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    points: Mapped[int] = mapped_column(BigInteger, nullable=False)


class Completion(Base):
    """At most one row per (user, task); the row itself is the idempotency guard."""

    __tablename__ = "user_tasks"

    user_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    task_code: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.code", ondelete="CASCADE"), primary_key=True
    )
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_id", name="uq_referrals_pair"),
        UniqueConstraint("referred_id", name="uq_referrals_referred"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    referrer_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    referred_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    bonus_referrer: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bonus_referred: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
