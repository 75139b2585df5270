"""
Invoice matching.

Matching policy: a transfer pays an invoice when its amount is at least the
requested amount in atomic units. There is no tolerance band, so under- and
partial payments never match.

Candidate choice: the transaction already recorded on the invoice wins while
it is still visible; otherwise the freshest transfer (greatest block height)
is used. Pool transfers (height 0) rank below mined ones.

A transaction pays at most one invoice: tx hashes already recorded on other
invoices are passed in as `exclude_tx_hashes` and never become candidates.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Collection, Iterable, List, Optional, Union

from settlement.schemas import IncomingTransfer
from settlement.services.amounts import to_atomic

@dataclass(frozen=True)
class TransferMatch:
    transfer: IncomingTransfer
    confirmations: int
    expected_atomic: int

    @property
    def tx_hash(self) -> str:
        return self.transfer.txid

@dataclass(frozen=True)
class MatchResult:
    match: Optional[TransferMatch]
    # A tx hash was recorded on the invoice but is no longer in the wallet's view
    recorded_tx_missing: bool = False

def confirmations_for(transfer: IncomingTransfer, current_height: int) -> int:
    if transfer.height <= 0:
        return 0
    return max(0, current_height - transfer.height)

def candidate_transfers(
    expected_atomic: int,
    transfers: Iterable[IncomingTransfer],
    address: Optional[str] = None,
    exclude_tx_hashes: Collection[str] = ()
) -> List[IncomingTransfer]:
    """Transfers that fully pay `expected_atomic`, restricted to `address` when both sides know it"""
    candidates = []
    for transfer in transfers:
        if transfer.txid in exclude_tx_hashes:
            continue
        if address and transfer.address and transfer.address != address:
            continue
        if transfer.amount >= expected_atomic:
            candidates.append(transfer)
    return candidates

def match_transfers(
    amount_requested: Union[Decimal, str, int, float],
    transfers: Iterable[IncomingTransfer],
    current_height: int,
    recorded_tx_hash: Optional[str] = None,
    address: Optional[str] = None,
    exclude_tx_hashes: Collection[str] = ()
) -> MatchResult:
    expected_atomic = to_atomic(amount_requested)
    transfers = list(transfers)

    if recorded_tx_hash:
        visible = [t for t in transfers if t.txid == recorded_tx_hash]
        if not visible:
            return MatchResult(match=None, recorded_tx_missing=True)
        recorded = candidate_transfers(expected_atomic, visible, address)
        if recorded:
            best = max(recorded, key=lambda t: t.height)
            return MatchResult(match=TransferMatch(best, confirmations_for(best, current_height), expected_atomic))

    candidates = candidate_transfers(expected_atomic, transfers, address, exclude_tx_hashes)
    if not candidates:
        return MatchResult(match=None)

    # max() keeps the first candidate among equal heights
    best = max(candidates, key=lambda t: t.height)
    return MatchResult(match=TransferMatch(best, confirmations_for(best, current_height), expected_atomic))
