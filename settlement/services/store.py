import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from settlement.database import SessionLocal
from settlement.errors import StorageError
from settlement.models import (
    Invoice,
    Subscription,
    SettlementLedger,
    INVOICE_STATUSES,
    OPEN_STATUSES,
    STATUS_CONFIRMED,
)
from settlement.services.settlement import Transition

logger = logging.getLogger(__name__)

class InvoiceStore:
    """Invoice, subscription and settlement ledger persistence"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def list_open_invoices(self, limit: int = 100) -> List[Invoice]:
        """Pending and paid invoices, oldest first"""
        db = self.session_factory()
        try:
            return db.query(Invoice).filter(
                Invoice.status.in_(OPEN_STATUSES)
            ).order_by(Invoice.created_at.asc()).limit(limit).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list open invoices: {str(e)}") from e
        finally:
            db.close()

    def claimed_tx_hashes(self, tx_hashes: Iterable[str], exclude_invoice_id: Optional[str] = None) -> Set[str]:
        """Which of `tx_hashes` are already recorded on an invoice other than `exclude_invoice_id`"""
        tx_hashes = set(tx_hashes)
        if not tx_hashes:
            return set()

        db = self.session_factory()
        try:
            query = db.query(Invoice.tx_hash).filter(Invoice.tx_hash.in_(tx_hashes))
            if exclude_invoice_id is not None:
                query = query.filter(Invoice.id != exclude_invoice_id)
            return {tx_hash for (tx_hash,) in query.all()}
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to look up recorded transactions: {str(e)}") from e
        finally:
            db.close()

    def apply_transition(
        self,
        transition: Transition,
        on_settle: Optional[Callable[[Session, Invoice], object]] = None
    ) -> bool:
        """
        Write a transition as one conditional UPDATE guarded by the status the
        transition was computed from. When the transition settles the invoice,
        `on_settle` runs inside the same transaction.

        Returns False when another writer changed the invoice first.
        """
        db = self.session_factory()
        try:
            updated = db.query(Invoice).filter(
                Invoice.id == transition.invoice_id,
                Invoice.status == transition.expected_status
            ).update(transition.fields, synchronize_session=False)

            if updated != 1:
                db.rollback()
                logger.warning(
                    f"Invoice {transition.invoice_id} is no longer {transition.expected_status} - skipping update"
                )
                return False

            if transition.settle and on_settle is not None:
                invoice = db.query(Invoice).filter(Invoice.id == transition.invoice_id).one()
                on_settle(db, invoice)

            db.commit()
            return True

        except IntegrityError as e:
            db.rollback()
            # unique ledger invoice_id or unique invoices.tx_hash
            raise StorageError(f"Invoice {transition.invoice_id} conflicts with an existing settlement: {str(e.orig)}") from e
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to update invoice {transition.invoice_id}: {str(e)}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Subscription queries (used inside a settlement transaction)

    @staticmethod
    def latest_subscription(db: Session, user_id: str) -> Optional[Subscription]:
        return db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).order_by(Subscription.expires_at.desc()).first()

    @staticmethod
    def ledger_entry_for(db: Session, invoice_id: str) -> Optional[SettlementLedger]:
        return db.query(SettlementLedger).filter(SettlementLedger.invoice_id == invoice_id).first()

    # Read-side helpers for the admin API

    def list_subscriptions(self, user_id: str) -> List[Subscription]:
        db = self.session_factory()
        try:
            return db.query(Subscription).filter(
                Subscription.user_id == user_id
            ).order_by(Subscription.expires_at.desc()).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list subscriptions for {user_id}: {str(e)}") from e
        finally:
            db.close()

    def get_invoice_with_ledger(self, invoice_id: str) -> Tuple[Optional[Invoice], Optional[SettlementLedger]]:
        db = self.session_factory()
        try:
            invoice = db.query(Invoice).filter(Invoice.id == invoice_id).first()
            if invoice is None:
                return None, None
            return invoice, self.ledger_entry_for(db, invoice_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load invoice {invoice_id}: {str(e)}") from e
        finally:
            db.close()

    def list_invoices(self, status: Optional[str] = None, limit: int = 10, offset: int = 0) -> Tuple[List[Invoice], int]:
        """Invoices newest first, with the total count for the filter"""
        db = self.session_factory()
        try:
            query = db.query(Invoice)
            if status:
                query = query.filter(Invoice.status == status)
            total = query.count()
            invoices = query.order_by(Invoice.created_at.desc()).offset(offset).limit(limit).all()
            return invoices, total
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list invoices: {str(e)}") from e
        finally:
            db.close()

    def invoice_stats(self, now: datetime) -> Dict[str, object]:
        """Counts per status plus confirmed totals, overall and for the last 24 hours"""
        db = self.session_factory()
        try:
            counts = {status: 0 for status in INVOICE_STATUSES}
            for status, count in db.query(Invoice.status, func.count(Invoice.id)).group_by(Invoice.status).all():
                counts[status] = count

            confirmed_amounts = [
                row[0] for row in db.query(Invoice.amount_requested).filter(Invoice.status == STATUS_CONFIRMED).all()
            ]

            since = now - timedelta(hours=24)
            recent = db.query(Invoice.status, Invoice.amount_requested).filter(Invoice.created_at >= since).all()

            return {
                "counts": counts,
                "confirmed_amounts": confirmed_amounts,
                "recent_count": len(recent),
                "recent_confirmed_amounts": [amount for status, amount in recent if status == STATUS_CONFIRMED],
            }
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to compute invoice stats: {str(e)}") from e
        finally:
            db.close()
