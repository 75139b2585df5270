"""
Invoice settlement state machine.

    pending -> paid -> confirmed
    pending -> expired

Transitions are computed here without touching storage; the store applies
them as a conditional update on `expected_status`.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from settlement.models import (
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
    TERMINAL_STATUSES,
)
from settlement.services.matcher import TransferMatch

@dataclass
class Transition:
    invoice_id: str
    expected_status: str
    status: str
    fields: Dict[str, Any] = field(default_factory=dict)
    # True only when this transition crosses into confirmed
    settle: bool = False

    @property
    def is_status_change(self) -> bool:
        return self.status != self.expected_status

def required_confirmations_for(invoice, default_required: int) -> int:
    if invoice.required_confirmations is not None and invoice.required_confirmations > 0:
        return int(invoice.required_confirmations)
    return default_required

def next_transition(invoice, match: Optional[TransferMatch], required: int, now: datetime) -> Optional[Transition]:
    """Transition implied by the current match, or None when nothing changes"""
    if invoice.status in TERMINAL_STATUSES or match is None:
        return None

    confirmations = match.confirmations
    new_status = STATUS_CONFIRMED if confirmations >= required else STATUS_PAID

    fields = {
        'status': new_status,
        'tx_hash': match.tx_hash,
        'confirmations': confirmations,
        'paid_at': invoice.paid_at or now,
    }
    if new_status == STATUS_CONFIRMED:
        fields['confirmed_at'] = invoice.confirmed_at or now

    unchanged = (
        new_status == invoice.status
        and invoice.tx_hash == match.tx_hash
        and invoice.confirmations == confirmations
        and invoice.paid_at is not None
    )
    if unchanged:
        return None

    return Transition(
        invoice_id=invoice.id,
        expected_status=invoice.status,
        status=new_status,
        fields=fields,
        settle=new_status == STATUS_CONFIRMED and invoice.status != STATUS_CONFIRMED
    )

def is_expired(invoice, now: datetime, lifetime_seconds: int) -> bool:
    if invoice.status != STATUS_PENDING or invoice.created_at is None:
        return False
    return now - invoice.created_at > timedelta(seconds=lifetime_seconds)

def expiry_transition(invoice, now: datetime, lifetime_seconds: int) -> Optional[Transition]:
    """Expire a pending invoice older than its lifetime window"""
    if not is_expired(invoice, now, lifetime_seconds):
        return None
    return Transition(
        invoice_id=invoice.id,
        expected_status=STATUS_PENDING,
        status=STATUS_EXPIRED,
        fields={'status': STATUS_EXPIRED, 'expired_at': now}
    )
