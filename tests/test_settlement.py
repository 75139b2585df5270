"""Tests for the settlement state machine."""
from datetime import timedelta
from types import SimpleNamespace

from conftest import NOW, make_transfer
from settlement.services.matcher import TransferMatch
from settlement.services.settlement import (
    expiry_transition,
    is_expired,
    next_transition,
    required_confirmations_for,
)


def invoice(**overrides):
    values = dict(
        id="inv-1",
        status="pending",
        tx_hash=None,
        confirmations=0,
        required_confirmations=None,
        created_at=NOW - timedelta(minutes=5),
        paid_at=None,
        confirmed_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def match(confirmations, txid="tx-1"):
    return TransferMatch(make_transfer(txid, "0.05", 100), confirmations, 5 * 10 ** 10)


class TestNextTransition:

    def test_no_match_means_no_transition(self):
        assert next_transition(invoice(), None, required=10, now=NOW) is None

    def test_below_threshold_becomes_paid(self):
        transition = next_transition(invoice(), match(9), required=10, now=NOW)

        assert transition.expected_status == "pending"
        assert transition.status == "paid"
        assert transition.fields == {
            "status": "paid",
            "tx_hash": "tx-1",
            "confirmations": 9,
            "paid_at": NOW,
        }
        assert transition.settle is False

    def test_at_threshold_becomes_confirmed_and_settles(self):
        transition = next_transition(invoice(status="paid", tx_hash="tx-1", confirmations=9, paid_at=NOW),
                                     match(10), required=10, now=NOW + timedelta(minutes=2))

        assert transition.status == "confirmed"
        assert transition.fields["confirmed_at"] == NOW + timedelta(minutes=2)
        assert transition.settle is True

    def test_paid_at_is_preserved(self):
        first_seen = NOW - timedelta(minutes=10)
        transition = next_transition(invoice(status="paid", tx_hash="tx-1", confirmations=2, paid_at=first_seen),
                                     match(3), required=10, now=NOW)
        assert transition.fields["paid_at"] == first_seen

    def test_pending_straight_to_confirmed(self):
        transition = next_transition(invoice(), match(12), required=10, now=NOW)
        assert transition.status == "confirmed"
        assert transition.fields["paid_at"] == NOW
        assert transition.fields["confirmed_at"] == NOW
        assert transition.settle is True

    def test_terminal_invoices_never_transition(self):
        for status in ("confirmed", "expired", "refunded"):
            assert next_transition(invoice(status=status), match(50), required=10, now=NOW) is None

    def test_unchanged_paid_invoice_needs_no_write(self):
        current = invoice(status="paid", tx_hash="tx-1", confirmations=4, paid_at=NOW)
        assert next_transition(current, match(4), required=10, now=NOW) is None

    def test_paid_never_moves_back_to_pending(self):
        current = invoice(status="paid", tx_hash="tx-1", confirmations=4, paid_at=NOW)
        transition = next_transition(current, match(0), required=10, now=NOW)
        assert transition.status == "paid"


class TestExpiry:

    def test_old_pending_invoice_expires(self):
        old = invoice(created_at=NOW - timedelta(minutes=31))
        transition = expiry_transition(old, NOW, lifetime_seconds=1800)
        assert transition.status == "expired"
        assert transition.expected_status == "pending"
        assert transition.fields["expired_at"] == NOW

    def test_young_pending_invoice_does_not_expire(self):
        assert expiry_transition(invoice(), NOW, lifetime_seconds=1800) is None

    def test_paid_invoice_never_expires(self):
        old_paid = invoice(status="paid", created_at=NOW - timedelta(days=2))
        assert is_expired(old_paid, NOW, lifetime_seconds=1800) is False


class TestRequiredConfirmations:

    def test_default_used_when_unset(self):
        assert required_confirmations_for(invoice(), 10) == 10

    def test_per_invoice_override(self):
        assert required_confirmations_for(invoice(required_confirmations=3), 10) == 3
