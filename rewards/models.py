from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CompleteTaskRequest(BaseModel):
    task: str = Field(..., min_length=1, max_length=64, description="Catalog task code")

    model_config = ConfigDict(json_schema_extra={"example": {"task": "daily_checkin"}})


class SetReferrerRequest(BaseModel):
    referrer_id: int = Field(..., gt=0, description="Account id of the referrer")

    model_config = ConfigDict(json_schema_extra={"example": {"referrer_id": 2}})


class TaskView(BaseModel):
    code: str
    title: str
    points: int

    model_config = ConfigDict(from_attributes=True)


class AccountView(BaseModel):
    id: int
    username: str
    points: int
    referrer_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CompletedTask(BaseModel):
    code: str
    title: str
    points: int
    completed_at: datetime


class AccountStatus(BaseModel):
    account: AccountView
    completions: list[CompletedTask]


class CompleteTaskResult(BaseModel):
    already_completed: bool
    awarded: int


class ReferralResult(BaseModel):
    bonus_to_referred: int
    bonus_to_referrer: int


class LeaderboardEntry(BaseModel):
    id: int
    username: str
    points: int
    rank: int


class LeaderboardResponse(BaseModel):
    leaderboard: list[LeaderboardEntry]


class CompleteTaskResponse(BaseModel):
    status: str
    awarded: int


class SetReferrerResponse(BaseModel):
    status: str
    bonus_to_referred: int
    bonus_to_referrer: int
