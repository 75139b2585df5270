from fastapi import APIRouter, Depends, HTTPException, Header, Query, Request, status
from datetime import datetime
from typing import Optional
import logging

from settlement.database import SessionLocal
from settlement.errors import StorageError
from settlement.models import (
    INVOICE_STATUSES,
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
    STATUS_REFUNDED,
)
from settlement.schemas import (
    CycleReportResponse,
    ErrorResponse,
    InvoiceDetailResponse,
    InvoiceListResponse,
    InvoiceResponse,
    LedgerEntryResponse,
    RecentTotals,
    StatsResponse,
    SubscriptionHistoryResponse,
    SubscriptionResponse,
)
from settlement.services.amounts import to_atomic, format_xmr
from settlement.services.store import InvoiceStore
from config import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/monero", tags=["admin"])

def verify_admin_key(x_api_key: str = Header(..., description="Admin API key for authentication")):
    """Verify admin API key"""
    if x_api_key != settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )
    return x_api_key

def get_store() -> InvoiceStore:
    return InvoiceStore(SessionLocal)

def sum_xmr(amounts) -> str:
    return format_xmr(sum(to_atomic(amount) for amount in amounts))

def storage_failure(e: StorageError) -> HTTPException:
    logger.error(f"Admin API storage error: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Invoice storage unavailable"
    )

@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Invoice Statistics (Admin Only)",
    description="""
    Invoice counts per status and confirmed XMR totals for the admin dashboard.

    **Admin Authentication Required** - Include `X-API-Key` header with your admin API key.
    """,
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def invoice_stats(
    store: InvoiceStore = Depends(get_store),
    api_key: str = Depends(verify_admin_key)
):
    try:
        stats = store.invoice_stats(datetime.utcnow())
    except StorageError as e:
        raise storage_failure(e)

    counts = stats["counts"]
    return StatsResponse(
        total_invoices=sum(counts.values()),
        pending_invoices=counts[STATUS_PENDING],
        paid_invoices=counts[STATUS_PAID],
        confirmed_invoices=counts[STATUS_CONFIRMED],
        expired_invoices=counts[STATUS_EXPIRED],
        refunded_invoices=counts[STATUS_REFUNDED],
        total_xmr_received=sum_xmr(stats["confirmed_amounts"]),
        recent_24h=RecentTotals(
            total_24h=stats["recent_count"],
            xmr_24h=sum_xmr(stats["recent_confirmed_amounts"])
        )
    )

@router.get(
    "/invoices",
    response_model=InvoiceListResponse,
    summary="List Invoices (Admin Only)",
    description="""
    List invoices newest first, optionally filtered by status.

    **Admin Authentication Required** - Include `X-API-Key` header with your admin API key.
    """,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def list_invoices(
    status_filter: Optional[str] = Query(None, alias="status", description="Invoice status or 'all'"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    store: InvoiceStore = Depends(get_store),
    api_key: str = Depends(verify_admin_key)
):
    if status_filter == "all":
        status_filter = None
    if status_filter and status_filter not in INVOICE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown status '{status_filter}'"
        )

    try:
        invoices, total = store.list_invoices(status=status_filter, limit=limit, offset=offset)
    except StorageError as e:
        raise storage_failure(e)

    return InvoiceListResponse(
        invoices=[InvoiceResponse.model_validate(invoice) for invoice in invoices],
        total=total,
        limit=limit,
        offset=offset
    )

@router.get(
    "/invoices/{invoice_id}",
    response_model=InvoiceDetailResponse,
    summary="Invoice Detail (Admin Only)",
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def get_invoice(
    invoice_id: str,
    store: InvoiceStore = Depends(get_store),
    api_key: str = Depends(verify_admin_key)
):
    """Invoice with its settlement ledger entry, if settled"""
    try:
        invoice, ledger_entry = store.get_invoice_with_ledger(invoice_id)
    except StorageError as e:
        raise storage_failure(e)

    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found"
        )

    return InvoiceDetailResponse(
        invoice=InvoiceResponse.model_validate(invoice),
        settlement=LedgerEntryResponse.model_validate(ledger_entry) if ledger_entry else None
    )

@router.get(
    "/subscriptions/{user_id}",
    response_model=SubscriptionHistoryResponse,
    summary="Subscription History (Admin Only)",
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def subscription_history(
    user_id: str,
    store: InvoiceStore = Depends(get_store),
    api_key: str = Depends(verify_admin_key)
):
    """All subscription rows for a user, latest expiry first"""
    try:
        subscriptions = store.list_subscriptions(user_id)
    except StorageError as e:
        raise storage_failure(e)

    now = datetime.utcnow()
    active_until = subscriptions[0].expires_at if subscriptions and subscriptions[0].expires_at > now else None

    return SubscriptionHistoryResponse(
        user_id=user_id,
        active_until=active_until,
        subscriptions=[SubscriptionResponse.model_validate(sub) for sub in subscriptions]
    )

@router.post(
    "/watcher/run",
    response_model=CycleReportResponse,
    summary="Run Watcher Cycle (Admin Only)",
    description="""
    Run one reconciliation cycle immediately and return its report.

    **Admin Authentication Required** - Include `X-API-Key` header with your admin API key.
    """,
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def run_watcher_cycle(
    request: Request,
    api_key: str = Depends(verify_admin_key)
):
    watcher = getattr(request.app.state, "watcher", None)
    if watcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monero watcher is disabled (MONERO_RPC_URL not set)"
        )

    report = await watcher.run_cycle()
    return CycleReportResponse.model_validate(report)
