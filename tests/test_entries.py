from decimal import Decimal

import pytest

from pointsledger import entries
from pointsledger.errors import InvalidTransaction


def test_purchase_row():
    txn = entries.purchase(1, 2, "19.99", 80, remark="  lunch  ")
    assert txn.kind == "purchase"
    assert txn.amount == 80
    assert txn.spent == Decimal("19.99")
    assert txn.created_by == 2
    assert txn.remark == "lunch"
    assert txn.suspicious is False


@pytest.mark.parametrize("spent", ["0", "-1.00", "abc", None, "NaN"])
def test_purchase_rejects_bad_spent(spent):
    with pytest.raises(InvalidTransaction):
        entries.validate_spent(spent)


def test_spent_quantized_to_cents():
    assert entries.validate_spent("2.675") == Decimal("2.68")


def test_adjustment_requires_related_and_nonzero():
    with pytest.raises(InvalidTransaction):
        entries.adjustment(1, 2, 0, related_id=5)
    with pytest.raises(InvalidTransaction):
        entries.adjustment(1, 2, 10, related_id=None)
    txn = entries.adjustment(1, 2, -10, related_id=5)
    assert txn.amount == -10
    assert txn.related_id == 5


def test_redemption_is_negative_and_unprocessed():
    txn = entries.redemption(3, 700)
    assert txn.amount == -700
    assert txn.redeemed == 700
    assert txn.created_by == 3
    assert txn.processed_by is None


@pytest.mark.parametrize("amount", [0, -5, 1.5, True])
def test_redemption_amount_must_be_positive_int(amount):
    with pytest.raises(InvalidTransaction):
        entries.redemption(3, amount)


def test_transfer_pair():
    debit, credit = entries.transfer(1, 2, 25, remark="thanks")
    assert (debit.user_id, debit.amount, debit.related_id) == (1, -25, 2)
    assert (credit.user_id, credit.amount, credit.related_id) == (2, 25, 1)
    assert debit.pair_id == credit.pair_id
    assert debit.created_at == credit.created_at
    assert debit.created_by == credit.created_by == 1


def test_transfer_to_self_rejected():
    with pytest.raises(InvalidTransaction):
        entries.transfer(1, 1, 10)


def test_event_award_references_event():
    txn = entries.event_award(4, 9, 7, 15)
    assert txn.kind == "event"
    assert txn.related_id == txn.event_id == 7
    assert txn.amount == 15
