import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, HTTPException, status, Query, Path
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from smsinbox.config import settings
from smsinbox.inbox import InboxStore, UpdateResult
from smsinbox.logging_utils import setup_logging, RequestLoggingMiddleware, log_inbox_data
from smsinbox.metrics import record_inbox_operation, get_metrics, get_metrics_content_type
from smsinbox.storage import init_db, check_db_health, get_db, PersistenceError, SqlAlchemyBackend
from smsinbox.schemas import (
    CountByDayResponse,
    CountResponse,
    DiscussionsResponse,
    ErrorResponse,
    HealthResponse,
    ReceivedCreate,
    ReceivedListResponse,
    ReceivedResponse,
    ReceivedUpdate,
    StatusResponse,
)


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    init_db()
    yield


app = FastAPI(
    title="SMS Inbox API",
    description="Per-user store of received SMS with read/unread tracking",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_store(db: Session = Depends(get_db)) -> InboxStore:
    """Build the inbox store over the request-scoped session."""
    return InboxStore(SqlAlchemyBackend(db))


UserId = Annotated[int, Path(ge=1, description="Owner of the messages")]
MessageId = Annotated[int, Path(ge=1, description="Received message id")]


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "storage failure"},
    )


def _not_found(request: Request, operation: str, user_id: int, message_id: int) -> HTTPException:
    record_inbox_operation(operation, "not_found")
    log_inbox_data(request, user_id=user_id, message_id=message_id, result="not_found")
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="received message not found")


def _storage_error(request: Request, operation: str, user_id: int, message_id: int = None) -> None:
    record_inbox_operation(operation, "error")
    log_inbox_data(request, user_id=user_id, message_id=message_id, result="error")


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    received table exists, 503 otherwise.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# Record Routes
# =============================================================================

@app.post(
    "/users/{user_id}/received",
    response_model=ReceivedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={500: {"model": ErrorResponse, "description": "Storage failure"}},
)
def create_received(
    request: Request,
    user_id: UserId,
    body: ReceivedCreate,
    store: InboxStore = Depends(get_store),
) -> ReceivedResponse:
    """Store an SMS received by the user."""
    try:
        message_id = store.records.create(
            owner_user_id=user_id,
            received_at=body.received_at,
            text=body.text,
            origin=body.origin,
            destination=body.destination,
            status=body.status,
            is_command=body.is_command,
        )
    except PersistenceError:
        _storage_error(request, "create", user_id)
        raise

    record_inbox_operation("create", "created")
    log_inbox_data(request, user_id=user_id, message_id=message_id, result="created")
    return ReceivedResponse.model_validate(store.records.get(user_id, message_id))


# Static sub-paths are declared before /{message_id} so they are not
# captured by the id parameter.

@app.get("/users/{user_id}/received/unread", response_model=ReceivedListResponse)
def list_unread(
    user_id: UserId,
    page_size: Annotated[int | None, Query(ge=1, le=settings.MAX_PAGE_SIZE)] = None,
    page: Annotated[int | None, Query(ge=0, description="Page index, offset = page_size * page")] = None,
    store: InboxStore = Depends(get_store),
) -> ReceivedListResponse:
    """
    Unread messages, newest first.

    Paginated only when both page_size and page are given.
    """
    messages = store.queries.list_unread(user_id, page_size=page_size, page_index=page)
    return _list_response(messages)


@app.get("/users/{user_id}/received/unread/count", response_model=CountResponse)
def count_unread(user_id: UserId, store: InboxStore = Depends(get_store)) -> CountResponse:
    return CountResponse(count=store.queries.count_unread(user_id))


@app.get("/users/{user_id}/received/count", response_model=CountResponse)
def count_received(user_id: UserId, store: InboxStore = Depends(get_store)) -> CountResponse:
    """All messages of the user, any status."""
    return CountResponse(count=store.queries.count(user_id))


@app.get("/users/{user_id}/received/last", response_model=ReceivedListResponse)
def last_by_date(
    user_id: UserId,
    n: Annotated[int, Query(ge=0, le=settings.MAX_PAGE_SIZE)] = 10,
    store: InboxStore = Depends(get_store),
) -> ReceivedListResponse:
    """The n most recent messages, newest first."""
    return _list_response(store.queries.last_n_by_date(user_id, n))


@app.get(
    "/users/{user_id}/received/origins/{origin}/last",
    response_model=ReceivedResponse,
    responses={404: {"model": ErrorResponse}},
)
def last_for_origin(
    user_id: UserId,
    origin: str,
    store: InboxStore = Depends(get_store),
) -> ReceivedResponse:
    message = store.queries.last_for_origin(user_id, origin)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no message from origin")
    return ReceivedResponse.model_validate(message)


@app.get("/users/{user_id}/received", response_model=ReceivedListResponse)
def list_received(
    user_id: UserId,
    origin: Annotated[str | None, Query(min_length=1, description="Sender number (exact match)")] = None,
    since: Annotated[datetime | None, Query(description="received_at >= since (ISO-8601)")] = None,
    store: InboxStore = Depends(get_store),
) -> ReceivedListResponse:
    """
    Messages by origin and/or since a date, oldest first.

    At least one of origin or since is required.
    """
    if origin is not None and since is not None:
        messages = store.queries.since_by_origin(user_id, since, origin)
    elif origin is not None:
        messages = store.queries.by_origin(user_id, origin)
    elif since is not None:
        messages = store.queries.since(user_id, since)
    else:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="origin or since is required"
        )
    return _list_response(messages)


@app.get(
    "/users/{user_id}/received/{message_id}",
    response_model=ReceivedResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_received(
    user_id: UserId,
    message_id: MessageId,
    store: InboxStore = Depends(get_store),
) -> ReceivedResponse:
    message = store.records.get(user_id, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="received message not found")
    return ReceivedResponse.model_validate(message)


@app.put(
    "/users/{user_id}/received/{message_id}",
    response_model=ReceivedResponse,
    responses={404: {"model": ErrorResponse}},
)
def update_received(
    request: Request,
    user_id: UserId,
    message_id: MessageId,
    body: ReceivedUpdate,
    store: InboxStore = Depends(get_store),
) -> ReceivedResponse:
    """Rewrite every field of the message."""
    try:
        result = store.records.update(
            owner_user_id=user_id,
            message_id=message_id,
            received_at=body.received_at,
            text=body.text,
            origin=body.origin,
            destination=body.destination,
            status=body.status,
            is_command=body.is_command,
        )
    except PersistenceError:
        _storage_error(request, "update", user_id, message_id)
        raise

    if result is UpdateResult.NOT_FOUND:
        raise _not_found(request, "update", user_id, message_id)

    record_inbox_operation("update", "updated")
    log_inbox_data(request, user_id=user_id, message_id=message_id, result="updated")
    return ReceivedResponse.model_validate(store.records.get(user_id, message_id))


# =============================================================================
# Status Routes
# =============================================================================

@app.post(
    "/users/{user_id}/received/{message_id}/read",
    response_model=StatusResponse,
    responses={404: {"model": ErrorResponse}},
)
def mark_read(
    request: Request,
    user_id: UserId,
    message_id: MessageId,
    store: InboxStore = Depends(get_store),
) -> StatusResponse:
    return _apply_status(request, store.status.mark_read, "mark_read", user_id, message_id)


@app.post(
    "/users/{user_id}/received/{message_id}/unread",
    response_model=StatusResponse,
    responses={404: {"model": ErrorResponse}},
)
def mark_unread(
    request: Request,
    user_id: UserId,
    message_id: MessageId,
    store: InboxStore = Depends(get_store),
) -> StatusResponse:
    return _apply_status(request, store.status.mark_unread, "mark_unread", user_id, message_id)


def _apply_status(request: Request, transition, operation: str, user_id: int, message_id: int) -> StatusResponse:
    try:
        result = transition(user_id, message_id)
    except PersistenceError:
        _storage_error(request, operation, user_id, message_id)
        raise

    if result is UpdateResult.NOT_FOUND:
        raise _not_found(request, operation, user_id, message_id)

    record_inbox_operation(operation, "updated")
    log_inbox_data(request, user_id=user_id, message_id=message_id, result="updated")
    return StatusResponse(status="ok")


# =============================================================================
# Aggregate Routes
# =============================================================================

@app.get("/users/{user_id}/stats/by-day", response_model=CountByDayResponse)
def count_by_day(
    user_id: UserId,
    since: Annotated[datetime, Query(description="Count messages with received_at >= since")],
    store: InboxStore = Depends(get_store),
) -> CountByDayResponse:
    """Per-day message counts; days without messages are omitted."""
    return CountByDayResponse(counts=store.aggregates.count_by_day_since(user_id, since))


@app.get("/users/{user_id}/discussions", response_model=DiscussionsResponse)
def discussions(user_id: UserId, store: InboxStore = Depends(get_store)) -> DiscussionsResponse:
    """Distinct numbers the user received messages from."""
    return DiscussionsResponse(data=store.aggregates.discussions(user_id))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


def _list_response(messages: list) -> ReceivedListResponse:
    data = [ReceivedResponse.model_validate(msg) for msg in messages]
    return ReceivedListResponse(data=data, count=len(data))
