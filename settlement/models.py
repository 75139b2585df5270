import uuid
from sqlalchemy import Column, Integer, BigInteger, String, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from settlement.database import Base

# Invoice statuses
STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_CONFIRMED = "confirmed"
STATUS_EXPIRED = "expired"
STATUS_REFUNDED = "refunded"

INVOICE_STATUSES = (STATUS_PENDING, STATUS_PAID, STATUS_CONFIRMED, STATUS_EXPIRED, STATUS_REFUNDED)
OPEN_STATUSES = (STATUS_PENDING, STATUS_PAID)
TERMINAL_STATUSES = (STATUS_CONFIRMED, STATUS_EXPIRED, STATUS_REFUNDED)

# Subscription plans
PLAN_MONTHLY = "monthly"
PLAN_YEARLY = "yearly"

def new_id() -> str:
    return str(uuid.uuid4())

class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)

    # Receiving address; account_index/address_index identify a wallet subaddress
    address = Column(String, nullable=True)
    account_index = Column(Integer, nullable=True)
    address_index = Column(Integer, nullable=True)

    amount_requested = Column(Numeric(20, 12), nullable=False)  # XMR
    plan = Column(String, nullable=False)  # monthly, yearly
    status = Column(String, default=STATUS_PENDING, nullable=False)  # pending, paid, confirmed, expired, refunded

    # Payment tracking (written only by the watcher)
    tx_hash = Column(String, nullable=True)
    confirmations = Column(Integer, default=0, nullable=False)
    required_confirmations = Column(Integer, nullable=True)  # None means the configured default

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)

    ledger_entry = relationship("SettlementLedger", back_populates="invoice", uselist=False)

    __table_args__ = (
        Index("ix_invoices_status_created_at", "status", "created_at"),
        # One transaction pays at most one invoice (NULLs are not compared)
        Index("uq_invoices_tx_hash", "tx_hash", unique=True),
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, user_id={self.user_id}, status={self.status})>"

class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    plan = Column(String, nullable=False)
    starts_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Invoice that paid for this period (None for rows created elsewhere)
    invoice_id = Column(String, ForeignKey("invoices.id"), nullable=True)

class SettlementLedger(Base):
    """
    One row per settled invoice. The unique invoice_id makes crediting a
    subscription idempotent even across process restarts.
    """
    __tablename__ = "settlement_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(String, ForeignKey("invoices.id"), unique=True, index=True, nullable=False)
    user_id = Column(String, nullable=False)
    plan = Column(String, nullable=False)
    tx_hash = Column(String, nullable=True)
    amount_atomic = Column(BigInteger, nullable=False)
    subscription_id = Column(String, ForeignKey("subscriptions.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    invoice = relationship("Invoice", back_populates="ledger_entry")

    def __repr__(self):
        return f"<SettlementLedger(invoice_id={self.invoice_id}, tx_hash={self.tx_hash})>"
