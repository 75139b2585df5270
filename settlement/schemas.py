from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

# Wallet RPC schemas
class IncomingTransfer(BaseModel):
    """One entry of get_transfers' `in` or `pool` lists"""
    txid: str = Field(..., description="Transaction hash")
    amount: int = Field(..., ge=0, description="Amount in atomic units")
    height: int = Field(0, ge=0, description="Block height, 0 while the transfer sits in the pool")
    address: Optional[str] = Field(None, description="Receiving (sub)address")

    class Config:
        extra = "ignore"

# Invoice schemas
class InvoiceResponse(BaseModel):
    id: str = Field(..., description="Invoice identifier", example="5b0f6a4e-6d8c-4b61-9b8a-2b0a54a1c0de")
    user_id: str = Field(..., description="Owner of the invoice", example="c1d2e3f4-0000-4000-8000-000000000001")
    address: Optional[str] = Field(None, description="Receiving (sub)address")
    account_index: Optional[int] = Field(None, description="Wallet account index", example=0)
    address_index: Optional[int] = Field(None, description="Subaddress index", example=12)
    amount_requested: Decimal = Field(..., description="Requested amount in XMR", example="0.05")
    plan: str = Field(..., description="Subscription plan", example="monthly")
    status: str = Field(..., description="pending, paid, confirmed, expired or refunded", example="paid")
    tx_hash: Optional[str] = Field(None, description="Matched transaction hash")
    confirmations: int = Field(..., description="Confirmations of the matched transaction", example=4)
    required_confirmations: Optional[int] = Field(None, description="Per-invoice confirmation override", example=10)
    created_at: datetime
    paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class LedgerEntryResponse(BaseModel):
    invoice_id: str
    user_id: str
    plan: str
    tx_hash: Optional[str] = None
    amount_atomic: int = Field(..., description="Amount credited in atomic units")
    subscription_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class InvoiceDetailResponse(BaseModel):
    invoice: InvoiceResponse
    settlement: Optional[LedgerEntryResponse] = Field(None, description="Ledger entry once the invoice is settled")

class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceResponse]
    total: int = Field(..., description="Number of invoices matching the filter", example=42)
    limit: int = Field(..., example=10)
    offset: int = Field(..., example=0)

# Subscription schemas
class SubscriptionResponse(BaseModel):
    id: str
    user_id: str
    plan: str
    starts_at: datetime
    expires_at: datetime
    created_at: datetime
    invoice_id: Optional[str] = None

    class Config:
        from_attributes = True

class SubscriptionHistoryResponse(BaseModel):
    user_id: str
    active_until: Optional[datetime] = Field(None, description="Latest expiry if still in the future")
    subscriptions: List[SubscriptionResponse]

# Stats schemas
class RecentTotals(BaseModel):
    total_24h: int = Field(..., description="Invoices created in the last 24 hours", example=3)
    xmr_24h: str = Field(..., description="XMR confirmed from those invoices", example="0.15")

class StatsResponse(BaseModel):
    total_invoices: int = Field(..., example=12)
    pending_invoices: int = Field(..., example=2)
    paid_invoices: int = Field(..., example=1)
    confirmed_invoices: int = Field(..., example=8)
    expired_invoices: int = Field(..., example=1)
    refunded_invoices: int = Field(..., example=0)
    total_xmr_received: str = Field(..., description="Sum of confirmed invoice amounts", example="0.4")
    recent_24h: RecentTotals

    class Config:
        json_schema_extra = {
            "example": {
                "total_invoices": 12,
                "pending_invoices": 2,
                "paid_invoices": 1,
                "confirmed_invoices": 8,
                "expired_invoices": 1,
                "refunded_invoices": 0,
                "total_xmr_received": "0.4",
                "recent_24h": {"total_24h": 3, "xmr_24h": "0.15"}
            }
        }

# Watcher schemas
class CycleReportResponse(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    height: Optional[int] = Field(None, description="Wallet height used for the cycle")
    checked: int = 0
    paid: int = 0
    confirmed: int = 0
    expired: int = 0
    errors: int = 0

    class Config:
        from_attributes = True

# Error schemas
class ErrorResponse(BaseModel):
    error: str = Field(
        ...,
        description="Error type or category",
        example="NotFound"
    )
    detail: Optional[str] = Field(
        None,
        description="Detailed error message",
        example="Invoice not found"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "error": "NotFound",
                "detail": "Invoice not found"
            }
        }
