import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from settlement.models import Invoice, Subscription, SettlementLedger, PLAN_MONTHLY, PLAN_YEARLY
from settlement.services.amounts import to_atomic
from settlement.services.store import InvoiceStore

logger = logging.getLogger(__name__)

PLAN_DURATIONS = {
    PLAN_MONTHLY: timedelta(days=30),
    PLAN_YEARLY: timedelta(days=365),
}

def plan_duration(plan: str) -> timedelta:
    try:
        return PLAN_DURATIONS[plan]
    except KeyError:
        raise ValueError(f"Unknown subscription plan: {plan!r}")

def extended_expiry(current_expiry: Optional[datetime], now: datetime, plan: str) -> datetime:
    """New expiry counted from the later of the current expiry and now"""
    base = current_expiry if current_expiry is not None and current_expiry > now else now
    return base + plan_duration(plan)

class SubscriptionExtender:
    """Credits a user's subscription once per settled invoice"""

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self.clock = clock

    def extend(self, db: Session, invoice: Invoice, now: Optional[datetime] = None) -> Optional[Subscription]:
        """
        Insert a subscription row and its ledger entry inside the caller's
        transaction. Returns None when the invoice already has a ledger entry.
        """
        now = now or self.clock()
        duration = plan_duration(invoice.plan)

        if InvoiceStore.ledger_entry_for(db, invoice.id) is not None:
            logger.info(f"Invoice {invoice.id} already settled - subscription not extended again")
            return None

        current = InvoiceStore.latest_subscription(db, invoice.user_id)
        expires_at = extended_expiry(current.expires_at if current else None, now, invoice.plan)

        subscription = Subscription(
            user_id=invoice.user_id,
            plan=invoice.plan,
            starts_at=now,
            expires_at=expires_at,
            created_at=now,
            invoice_id=invoice.id
        )
        db.add(subscription)
        db.flush()

        db.add(SettlementLedger(
            invoice_id=invoice.id,
            user_id=invoice.user_id,
            plan=invoice.plan,
            tx_hash=invoice.tx_hash,
            amount_atomic=to_atomic(invoice.amount_requested),
            subscription_id=subscription.id,
            created_at=now
        ))
        db.flush()

        logger.info(
            f"Subscription extended for user {invoice.user_id}: plan={invoice.plan} "
            f"expires_at={expires_at.isoformat()} ({duration.days} days)"
        )
        return subscription
