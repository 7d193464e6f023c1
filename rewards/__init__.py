"""
Points Rewards Ledger

This package provides:
- Account balances credited by completing catalog tasks
- Idempotent task completion (one award per user and task)
- One-time referral links paying a bonus to both sides
- A leaderboard with a stable total order
- Serializable units of work against a shared relational store
"""

from .models import (
    AccountStatus,
    CompleteTaskResult,
    LeaderboardEntry,
    ReferralResult,
)
from .service import RewardService

__all__ = [
    "AccountStatus",
    "CompleteTaskResult",
    "LeaderboardEntry",
    "ReferralResult",
    "RewardService",
]
