import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from settlement.database import SessionLocal
from settlement.errors import ConfigurationError, RpcError, StorageError
from settlement.models import Invoice, STATUS_CONFIRMED, STATUS_EXPIRED, STATUS_PAID
from settlement.schemas import IncomingTransfer
from settlement.services.matcher import match_transfers
from settlement.services.monero_rpc import MoneroRpcClient
from settlement.services.settlement import (
    Transition,
    expiry_transition,
    next_transition,
    required_confirmations_for,
)
from settlement.services.store import InvoiceStore
from settlement.services.subscriptions import SubscriptionExtender
from config import settings

logger = logging.getLogger(__name__)

JOB_ID = 'monero_watcher_cycle'

# Cache key for the account-wide transfer list shared by invoices without a subaddress
ACCOUNT_WIDE = None

@dataclass
class CycleReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    height: Optional[int] = None
    checked: int = 0
    paid: int = 0
    confirmed: int = 0
    expired: int = 0
    errors: int = 0

    def record(self, transition: Optional[Transition]):
        if transition is None or not transition.is_status_change:
            return
        if transition.status == STATUS_PAID:
            self.paid += 1
        elif transition.status == STATUS_CONFIRMED:
            self.confirmed += 1
        elif transition.status == STATUS_EXPIRED:
            self.expired += 1

class MoneroWatcher:
    """
    Reconciles incoming wallet transfers against open invoices.

    One cycle runs at a time: the next cycle is scheduled only after the
    current one has finished, `poll_interval` seconds later.
    """

    def __init__(
        self,
        rpc: MoneroRpcClient,
        store: InvoiceStore,
        extender: Optional[SubscriptionExtender] = None,
        poll_interval: int = 20,
        required_confirmations: int = 10,
        invoice_lifetime: int = 1800,
        batch_size: int = 100,
        account_index: int = 0,
        include_pool: bool = True,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.rpc = rpc
        self.store = store
        self.extender = extender or SubscriptionExtender(clock=clock)
        self.poll_interval = poll_interval
        self.required_confirmations = required_confirmations
        self.invoice_lifetime = invoice_lifetime
        self.batch_size = batch_size
        self.account_index = account_index
        self.include_pool = include_pool
        self.clock = clock

        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.last_cycle_at: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None
        self.last_error: Optional[str] = None
        self._cycle_lock = asyncio.Lock()

    def start(self):
        """Start polling; the first cycle runs immediately"""
        if self.is_running:
            return
        self.scheduler = AsyncIOScheduler()
        self.scheduler.start()
        self.is_running = True
        self._schedule_next(0)
        logger.info(
            f"Monero watcher started - polling every {self.poll_interval}s, "
            f"account {self.account_index}, {self.required_confirmations} confirmations required"
        )

    def stop(self):
        """Stop polling"""
        if self.is_running:
            self.is_running = False
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Monero watcher stopped")

    def _schedule_next(self, delay_seconds: float):
        if not self.is_running or self.scheduler is None:
            return
        self.scheduler.add_job(
            self._tick,
            DateTrigger(run_date=datetime.now() + timedelta(seconds=delay_seconds)),
            id=JOB_ID,
            replace_existing=True,
            misfire_grace_time=None
        )

    async def _tick(self):
        try:
            await self.run_cycle()
        finally:
            self._schedule_next(self.poll_interval)

    async def run_cycle(self) -> CycleReport:
        """Run one full reconciliation pass; never raises"""
        async with self._cycle_lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=self.clock())
        try:
            invoices = self.store.list_open_invoices(limit=self.batch_size)

            if invoices:
                report.height = await self.rpc.get_height()
                logger.info(f"Checking {len(invoices)} open invoices at wallet height {report.height}")

                transfer_cache: Dict[Optional[Tuple[int, int]], List[IncomingTransfer]] = {}
                for invoice in invoices:
                    report.checked += 1
                    try:
                        transition = await self.process_invoice(invoice, report.height, transfer_cache)
                        report.record(transition)
                    except (RpcError, StorageError) as e:
                        report.errors += 1
                        logger.error(f"Watcher error for invoice {invoice.id}: {str(e)}")
                    except Exception as e:
                        report.errors += 1
                        logger.exception(f"Unexpected watcher error for invoice {invoice.id}: {str(e)}")
            else:
                logger.debug("No open invoices to check")

            self.last_error = None

        except Exception as e:
            report.errors += 1
            self.last_error = str(e)
            logger.error(f"Watcher cycle failed: {str(e)}")

        report.finished_at = self.clock()
        self.last_cycle_at = report.finished_at
        self.last_report = report

        if report.paid or report.confirmed or report.expired or report.errors:
            logger.info(
                f"Watcher cycle done: {report.checked} checked, {report.paid} paid, "
                f"{report.confirmed} confirmed, {report.expired} expired, {report.errors} errors"
            )
        return report

    async def _transfers_for(self, invoice: Invoice, cache: Dict) -> List[IncomingTransfer]:
        if invoice.address_index is not None:
            account = invoice.account_index if invoice.account_index is not None else self.account_index
            key = (account, invoice.address_index)
            if key not in cache:
                cache[key] = await self.rpc.get_transfers(
                    account_index=account,
                    subaddr_indices=[invoice.address_index],
                    include_pool=self.include_pool
                )
            return cache[key]

        if ACCOUNT_WIDE not in cache:
            cache[ACCOUNT_WIDE] = await self.rpc.get_transfers(
                account_index=self.account_index,
                include_pool=self.include_pool
            )
        return cache[ACCOUNT_WIDE]

    async def process_invoice(self, invoice: Invoice, height: int, transfer_cache: Optional[Dict] = None) -> Optional[Transition]:
        """Match, transition and (on confirmation) settle a single invoice"""
        if transfer_cache is None:
            transfer_cache = {}
        now = self.clock()

        transfers = await self._transfers_for(invoice, transfer_cache)
        claimed = self.store.claimed_tx_hashes(
            {transfer.txid for transfer in transfers},
            exclude_invoice_id=invoice.id
        )
        result = match_transfers(
            invoice.amount_requested,
            transfers,
            height,
            recorded_tx_hash=invoice.tx_hash,
            # Subaddress transfers are already isolated; account-wide ones are filtered by address
            address=invoice.address if invoice.address_index is None else None,
            exclude_tx_hashes=claimed
        )

        if result.recorded_tx_missing:
            logger.warning(
                f"Invoice {invoice.id}: recorded tx {invoice.tx_hash} is no longer visible in the wallet - "
                f"leaving invoice {invoice.status}"
            )
            return None

        required = required_confirmations_for(invoice, self.required_confirmations)

        if result.match is None:
            transition = expiry_transition(invoice, now, self.invoice_lifetime)
            if transition is None:
                return None
        else:
            transition = next_transition(invoice, result.match, required, now)
            if transition is None:
                return None

        applied = self.store.apply_transition(
            transition,
            on_settle=lambda db, row: self.extender.extend(db, row, now)
        )
        if not applied:
            return None

        if transition.status == STATUS_CONFIRMED:
            logger.info(
                f"Invoice confirmed: {invoice.id} user={invoice.user_id} plan={invoice.plan} "
                f"tx={transition.fields['tx_hash']} conf={transition.fields['confirmations']}/{required}"
            )
        elif transition.status == STATUS_PAID:
            logger.info(
                f"Invoice paid (waiting confirmations): {invoice.id} "
                f"conf={transition.fields['confirmations']}/{required}"
            )
        elif transition.status == STATUS_EXPIRED:
            logger.info(f"Invoice expired unpaid: {invoice.id}")

        return transition

def create_watcher(session_factory=SessionLocal) -> Optional[MoneroWatcher]:
    """Build the watcher from settings; None (with a warning) when the RPC URL is missing"""
    try:
        rpc = MoneroRpcClient.from_settings()
    except ConfigurationError as e:
        logger.warning(f"Monero watcher disabled: {str(e)}")
        return None

    return MoneroWatcher(
        rpc=rpc,
        store=InvoiceStore(session_factory),
        poll_interval=settings.MONERO_POLL_SECONDS,
        required_confirmations=settings.REQUIRED_CONFIRMATIONS,
        invoice_lifetime=settings.INVOICE_EXPIRY_SECONDS,
        batch_size=settings.INVOICE_BATCH_SIZE,
        account_index=settings.MONERO_ACCOUNT_INDEX,
        include_pool=settings.MONERO_INCLUDE_POOL
    )
