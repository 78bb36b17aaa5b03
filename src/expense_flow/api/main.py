from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import settings
from ..core.errors import AggregationError, ReasonCode, WorkflowValidationError
from ..core.logging import setup_logging
from ..services.notifications import get_notification_queue
from .routers import analytics, approvals, expenses, health

logger = setup_logging()

REASON_STATUS = {
    ReasonCode.INSTANCE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReasonCode.REPORT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReasonCode.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReasonCode.NOT_AUTHORIZED: status.HTTP_403_FORBIDDEN,
    ReasonCode.INVALID_STATE: status.HTTP_409_CONFLICT,
    ReasonCode.WRONG_LEVEL: status.HTTP_409_CONFLICT,
    ReasonCode.CONFLICT: status.HTTP_409_CONFLICT,
    ReasonCode.INVALID_DECISION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReasonCode.NO_ACTIVE_MATRIX: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReasonCode.LEVEL_NOT_CONFIGURED: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # enqueue() from sync code paths needs a loop to wake the drain task on
    queue = get_notification_queue()
    queue.start()
    yield
    await queue.shutdown()


app = FastAPI(title="Expense Flow", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", errors=str(exc.errors()), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors(), "body": str(await request.body())},
    )


@app.exception_handler(WorkflowValidationError)
async def workflow_exception_handler(request: Request, exc: WorkflowValidationError):
    logger.warning("Workflow transition rejected", code=exc.code.value, path=request.url.path)
    return JSONResponse(
        status_code=REASON_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        content={"detail": exc.to_dict()},
    )


@app.exception_handler(AggregationError)
async def aggregation_exception_handler(request: Request, exc: AggregationError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": {"query": exc.query, "company_id": exc.company_id, "message": str(exc)}},
    )


# CORS_ORIGINS can be set in .env as comma-separated list
allowed_origins = [origin.strip() for origin in settings.cors_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(expenses.router)
app.include_router(approvals.router)
app.include_router(analytics.router)
