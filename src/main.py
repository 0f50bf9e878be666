"""
FastAPI application hosting the vacation request engine.
The chat layer calls these endpoints and delivers the returned notification intents.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import date

import uvicorn
from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.config import settings
from src.coordinator import get_coordinator
from src.errors import LeaveEngineError
from src.models import Decision, RequestKind, RequestState, SubmitInput

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "InvalidInputError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "RangeViolationError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "IneligibleError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "InsufficientBalanceError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "ConflictError": status.HTTP_409_CONFLICT,
    "InvalidTransitionError": status.HTTP_409_CONFLICT,
    "NotFoundError": status.HTTP_404_NOT_FOUND,
    "UnauthorizedError": status.HTTP_403_FORBIDDEN,
    "RepositoryError": status.HTTP_503_SERVICE_UNAVAILABLE,
}


# Pydantic models for API
class SubmitRequestBody(BaseModel):
    """Request model for creating a vacation request."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "employee_id": "1001",
                "start_date": "2025-06-02",
                "days": 5,
                "kind": "regular",
                "idempotency_key": "tg-update-884213",
            }
        }
    )

    employee_id: str = Field(..., description="Requesting employee")
    start_date: date = Field(..., description="First day off")
    end_date: date | None = Field(None, description="Last day off (inclusive)")
    days: int | None = Field(None, description="Number of days, alternative to end_date")
    kind: RequestKind = Field(RequestKind.REGULAR, description="regular or emergency")
    reason: str = Field("", description="Required for emergency requests")
    idempotency_key: str | None = Field(None, description="Chat delivery id for deduplication")


class DecisionBody(BaseModel):
    actor_id: str = Field(..., description="PM or HR employee id")
    decision: Decision = Field(..., description="approve or reject")
    comment: str = Field("", description="Optional comment shown to the employee")
    idempotency_key: str | None = None


class CancelBody(BaseModel):
    actor_id: str = Field(..., description="Requester employee id")
    comment: str = ""
    idempotency_key: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    environment: str
    storage_circuit_breaker: dict


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting Vacation Request Engine API")
    logger.info(f"Environment: {settings.environment}")

    try:
        get_coordinator()
        logger.info("Coordinator initialized successfully")
    except LeaveEngineError as e:
        logger.error(f"Failed to initialize coordinator: {e.message}")

    yield

    logger.info("Shutting down Vacation Request Engine API")


# Create FastAPI app
app = FastAPI(
    title="Vacation Request Engine API",
    description="Vacation requests, PM/HR approval and balance accounting",
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


@app.exception_handler(LeaveEngineError)
async def engine_error_handler(request: Request, exc: LeaveEngineError):
    """Render engine errors as ``{error, message, details, notifications}``."""
    status_code = ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind} {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind} {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# API Endpoints


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {"message": "Vacation Request Engine API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    Returns service status and storage circuit breaker state.
    """
    return HealthResponse(
        status="healthy",
        environment=settings.environment,
        storage_circuit_breaker=get_coordinator().storage_health(),
    )


@app.get("/ready")
def ready():
    return {"status": "ready"}


@app.post("/requests", status_code=status.HTTP_201_CREATED, tags=["Requests"])
def submit_request(body: SubmitRequestBody):
    """
    Submit a vacation request.

    A repeated ``idempotency_key`` returns the original request with
    ``replayed: true`` and no notifications.
    """
    result = get_coordinator().submit(
        SubmitInput(
            employee_id=body.employee_id,
            start_date=body.start_date,
            end_date=body.end_date,
            days=body.days,
            kind=body.kind,
            reason=body.reason,
            idempotency_key=body.idempotency_key,
        )
    )
    return result.to_dict()


@app.get("/requests", tags=["Requests"])
def pending_requests(actor_id: str = Query(..., description="PM or HR employee id")):
    """Requests waiting for the given approver."""
    return {"requests": [r.to_dict() for r in get_coordinator().pending_for(actor_id)]}


@app.get("/requests/{request_id}", tags=["Requests"])
def get_request(request_id: str):
    return get_coordinator().get_request(request_id).to_dict()


@app.post("/requests/{request_id}/decision", tags=["Requests"])
def decide_request(request_id: str, body: DecisionBody):
    """PM or HR approves or rejects a pending request."""
    result = get_coordinator().decide(
        request_id,
        body.actor_id,
        body.decision,
        comment=body.comment,
        idempotency_key=body.idempotency_key,
    )
    return result.to_dict()


@app.post("/requests/{request_id}/cancel", tags=["Requests"])
def cancel_request(request_id: str, body: CancelBody):
    result = get_coordinator().cancel(
        request_id, body.actor_id, comment=body.comment, idempotency_key=body.idempotency_key
    )
    return result.to_dict()


@app.get("/employees/{employee_id}/balance", tags=["Employees"])
def employee_balance(employee_id: str, as_of: date | None = None):
    return get_coordinator().get_balance(employee_id, as_of).to_dict()


@app.get("/employees/{employee_id}/eligibility", tags=["Employees"])
def employee_eligibility(employee_id: str, as_of: date | None = None):
    return get_coordinator().check_eligibility(employee_id, as_of).to_dict()


@app.get("/employees/{employee_id}/requests", tags=["Employees"])
def employee_history(employee_id: str):
    return {"requests": [r.to_dict() for r in get_coordinator().history(employee_id)]}


@app.get("/conflicts", tags=["Requests"])
def team_conflicts(
    department: str,
    team: str,
    start_date: date,
    end_date: date,
    exclude_request_id: str | None = None,
):
    """Approved vacations in a team that intersect the given dates."""
    conflicts = get_coordinator().find_conflicts(
        department, team, start_date, end_date, exclude_request_id=exclude_request_id
    )
    return {"conflicts": [c.to_dict() for c in conflicts]}


@app.get("/metrics", tags=["Monitoring"])
async def metrics():
    """
    Monitoring snapshot.

    Returns:
    - Storage circuit breaker state
    - Pending queue sizes
    """
    coordinator = get_coordinator()
    return {
        "storage_circuit_breaker": coordinator.storage_health(),
        "pending": {
            state.value: len(coordinator.repository.list_by_state(state))
            for state in (RequestState.PENDING_PM, RequestState.PENDING_HR)
        },
        "environment": settings.environment,
    }


if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8080)),
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
