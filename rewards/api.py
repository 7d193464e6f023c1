from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from .auth import Principal, authorize_user, get_principal
from .config import settings
from .logging_config import get_logger, setup_logging
from .models import (
    AccountStatus,
    CompleteTaskRequest,
    CompleteTaskResponse,
    LeaderboardResponse,
    SetReferrerRequest,
    SetReferrerResponse,
    TaskView,
)
from .service import (
    ConflictError,
    ReferrerAlreadySetError,
    RewardService,
    RewardServiceError,
    SelfReferralError,
    UnknownReferrerError,
    UnknownTaskError,
    UnknownUserError,
)

logger = get_logger(__name__)


def get_reward_service(request: Request) -> RewardService:
    return request.app.state.service


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    service = RewardService()
    if settings.auto_create_schema:
        service.initialize()
    app.state.service = service
    logger.info("api_starting", dialect=service.db.engine.dialect.name)
    yield
    service.db.dispose()
    logger.info("api_stopped")


app = FastAPI(
    title="Points Rewards API",
    description="Point balances driven by task completions and one-time referrals",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(error: RewardServiceError) -> HTTPException:
    if isinstance(error, UnknownUserError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (UnknownTaskError, UnknownReferrerError, SelfReferralError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, ReferrerAlreadySetError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
            headers={"Retry-After": "0"},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server error")


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "points-rewards"}


@app.get("/tasks", response_model=list[TaskView], tags=["Tasks"])
def list_tasks(
    principal: Principal = Depends(get_principal),
    service: RewardService = Depends(get_reward_service),
) -> list[TaskView]:
    return service.list_tasks()


@app.get("/users/leaderboard", response_model=LeaderboardResponse, tags=["Users"])
def get_leaderboard(
    limit: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    service: RewardService = Depends(get_reward_service),
) -> LeaderboardResponse:
    return LeaderboardResponse(leaderboard=service.leaderboard(limit))


@app.get("/users/{user_id}/status", response_model=AccountStatus, tags=["Users"])
def get_user_status(
    user_id: int,
    principal: Principal = Depends(get_principal),
    service: RewardService = Depends(get_reward_service),
) -> AccountStatus:
    authorize_user(principal, user_id)
    try:
        return service.get_status(user_id)
    except RewardServiceError as e:
        raise _http_error(e)


@app.post("/users/{user_id}/task/complete", response_model=CompleteTaskResponse, tags=["Users"])
def complete_task(
    user_id: int,
    request: CompleteTaskRequest,
    principal: Principal = Depends(get_principal),
    service: RewardService = Depends(get_reward_service),
) -> CompleteTaskResponse:
    authorize_user(principal, user_id)
    try:
        result = service.complete_task(user_id, request.task)
    except RewardServiceError as e:
        raise _http_error(e)
    if result.already_completed:
        return CompleteTaskResponse(status="already_completed", awarded=0)
    return CompleteTaskResponse(status="ok", awarded=result.awarded)


@app.post("/users/{user_id}/referrer", response_model=SetReferrerResponse, tags=["Users"])
def set_referrer(
    user_id: int,
    request: SetReferrerRequest,
    principal: Principal = Depends(get_principal),
    service: RewardService = Depends(get_reward_service),
) -> SetReferrerResponse:
    authorize_user(principal, user_id)
    try:
        result = service.set_referrer(user_id, request.referrer_id)
    except RewardServiceError as e:
        raise _http_error(e)
    return SetReferrerResponse(
        status="ok",
        bonus_to_referred=result.bonus_to_referred,
        bonus_to_referrer=result.bonus_to_referrer,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
