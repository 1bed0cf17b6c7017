from fastapi import APIRouter, Depends, HTTPException

from cashflow.api.core.container import get_container
from cashflow.api.schemas import (
    ActionIn,
    CashAdvanceCreate,
    ErrorOut,
    ErrorResponse,
    LiquidationCreate,
    RequestFiltersIn,
)
from cashflow.core.errors import (
    ConcurrentModification,
    InvalidTransition,
    InvariantViolation,
    PermissionDenied,
    RequestNotFound,
    StoreUnavailable,
    WorkflowError,
)
from cashflow.domain.requests import Action, RequestSnapshot
from cashflow.domain.store import RequestFilters
from cashflow.runtime.orchestrator import WorkflowOrchestrator

_HTTP_STATUS = {
    PermissionDenied: 403,
    RequestNotFound: 404,
    InvalidTransition: 409,
    ConcurrentModification: 409,
    InvariantViolation: 422,
    StoreUnavailable: 503,
}

router = APIRouter(
    prefix="/requests",
    tags=["Requests"],
    responses={status: {"model": ErrorResponse} for status in sorted(set(_HTTP_STATUS.values()))},
)


def get_orchestrator(container=Depends(get_container)) -> WorkflowOrchestrator:
    return container.orchestrator


def _http_error(exc: WorkflowError) -> HTTPException:
    status_code = _HTTP_STATUS.get(type(exc), 400)
    return HTTPException(
        status_code=status_code,
        detail=ErrorOut(code=exc.code, message=str(exc), retryable=exc.retryable).model_dump(),
    )


@router.post(
    "/cash-advances",
    status_code=201,
    summary="File a cash advance",
    response_model=RequestSnapshot,
)
async def file_cash_advance(
    payload: CashAdvanceCreate,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    try:
        created = await orchestrator.file_cash_advance(
            payload.to_requester(),
            advance_type=payload.advance_type,
            amount=payload.amount,
            purpose=payload.purpose,
            date_requested=payload.date_requested,
        )
    except WorkflowError as exc:
        raise _http_error(exc)
    return RequestSnapshot.from_request(created)


@router.post(
    "/liquidations",
    status_code=201,
    summary="File a liquidation",
    response_model=RequestSnapshot,
)
async def file_liquidation(
    payload: LiquidationCreate,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    try:
        created = await orchestrator.file_liquidation(
            payload.to_requester(),
            cash_advance_id=payload.cash_advance_id,
            items=[item.to_item() for item in payload.items],
            store_id=payload.store_id,
            ticket_id=payload.ticket_id,
            liquidation_date=payload.liquidation_date,
        )
    except WorkflowError as exc:
        raise _http_error(exc)
    return RequestSnapshot.from_request(created)


@router.get(
    "",
    summary="List requests",
    description="Returns requests filtered by status, type and requester, newest first.",
    response_model=list[RequestSnapshot],
)
async def list_requests(
    q: RequestFiltersIn = Depends(),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    filters = RequestFilters(
        status=q.status,
        request_type=q.request_type,
        requester_id=q.requester_id,
        limit=q.limit,
        offset=q.offset,
    )
    try:
        records = orchestrator.list_requests(filters)
    except WorkflowError as exc:
        raise _http_error(exc)
    return [RequestSnapshot.from_request(r) for r in records]


@router.get("/{request_id}", response_model=RequestSnapshot)
async def get_request(
    request_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Get a specific request."""
    try:
        record = orchestrator.get_request(request_id)
    except WorkflowError as exc:
        raise _http_error(exc)
    return RequestSnapshot.from_request(record)


@router.post("/{request_id}/actions", response_model=RequestSnapshot)
async def submit_action(
    request_id: str,
    payload: ActionIn,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Approve or reject a request at level 1 or 2."""
    action = Action(
        level=payload.level,
        outcome=payload.outcome,
        actor_id=payload.actor_id,
        actor_name=payload.actor_name,
        comment=payload.comment,
    )
    try:
        record = await orchestrator.submit_action(request_id, action)
    except WorkflowError as exc:
        raise _http_error(exc)
    return RequestSnapshot.from_request(record)
