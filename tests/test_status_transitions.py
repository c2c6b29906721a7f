from decimal import Decimal

import pytest

from app.crud.checkout_crud import set_status
from app.models.checkout_session_model import (
    CheckoutSession,
    CheckoutStatus,
    TransitionPolicy,
    resolve_transition,
)

PENDING = CheckoutStatus.pending
SUCCESS = CheckoutStatus.success
FAILED = CheckoutStatus.failed


def _new_session(db_session, status=PENDING) -> str:
    checkout = CheckoutSession(
        invoice_reference="INV-STATUS",
        amount=Decimal("100.00"),
        raw_decrypted_payload="{}",
        status=status.value,
    )
    db_session.add(checkout)
    db_session.commit()
    return checkout.id


def _status_of(db_session, session_id) -> CheckoutStatus:
    db_session.expire_all()
    return db_session.get(CheckoutSession, session_id).checkout_status


def test_parse_is_case_insensitive():
    assert CheckoutStatus.parse("success") is SUCCESS
    assert CheckoutStatus.parse(" FAILED ") is FAILED
    with pytest.raises(ValueError):
        CheckoutStatus.parse("Refunded")


@pytest.mark.parametrize("policy", list(TransitionPolicy))
def test_pending_is_never_written(policy):
    for current in CheckoutStatus:
        assert resolve_transition(current, PENDING, policy) is None


def test_last_write_wins_accepts_any_terminal_write():
    policy = TransitionPolicy.last_write_wins
    assert resolve_transition(SUCCESS, FAILED, policy) is FAILED
    assert resolve_transition(FAILED, SUCCESS, policy) is SUCCESS
    assert resolve_transition(SUCCESS, SUCCESS, policy) is SUCCESS


def test_failure_wins_keeps_failed_sessions_failed():
    policy = TransitionPolicy.failure_wins
    assert resolve_transition(PENDING, SUCCESS, policy) is SUCCESS
    assert resolve_transition(SUCCESS, FAILED, policy) is FAILED
    assert resolve_transition(FAILED, SUCCESS, policy) is None
    assert resolve_transition(FAILED, FAILED, policy) is FAILED


@pytest.mark.parametrize(
    "status, policy, expected",
    [
        (PENDING, TransitionPolicy.failure_wins, True),
        (PENDING, TransitionPolicy.last_write_wins, True),
        (FAILED, TransitionPolicy.failure_wins, False),
        (FAILED, TransitionPolicy.last_write_wins, True),
        (SUCCESS, TransitionPolicy.failure_wins, False),
        (SUCCESS, TransitionPolicy.last_write_wins, False),
    ],
)
def test_open_for_checkout_only_while_success_is_reachable(status, policy, expected):
    checkout = CheckoutSession(amount=Decimal("1.00"), raw_decrypted_payload="{}", status=status.value)
    assert checkout.is_open_for_checkout(policy) is expected


def test_set_status_moves_pending_to_success(db_session):
    session_id = _new_session(db_session)
    updated = set_status(db_session, session_id, SUCCESS)
    assert updated.status == "Success"
    assert _status_of(db_session, session_id) is SUCCESS


def test_set_status_bumps_updated_at_on_repeat_write(db_session):
    session_id = _new_session(db_session)
    first = set_status(db_session, session_id, SUCCESS).updated_at
    second = set_status(db_session, session_id, SUCCESS).updated_at
    assert second >= first
    assert _status_of(db_session, session_id) is SUCCESS


def test_success_then_failure_ends_failed_under_both_policies(db_session):
    for policy in TransitionPolicy:
        session_id = _new_session(db_session)
        set_status(db_session, session_id, SUCCESS, policy)
        set_status(db_session, session_id, FAILED, policy)
        assert _status_of(db_session, session_id) is FAILED


def test_failure_wins_refuses_success_after_failure(db_session):
    session_id = _new_session(db_session, FAILED)
    row = set_status(db_session, session_id, SUCCESS, TransitionPolicy.failure_wins)
    assert row is not None
    assert _status_of(db_session, session_id) is FAILED


def test_last_write_wins_allows_success_after_failure(db_session):
    session_id = _new_session(db_session, FAILED)
    set_status(db_session, session_id, SUCCESS, TransitionPolicy.last_write_wins)
    assert _status_of(db_session, session_id) is SUCCESS


def test_set_status_on_unknown_session_returns_none(db_session):
    assert set_status(db_session, "3f0e5a5e-8d6b-4c1a-9a3e-1d2c3b4a5f60", SUCCESS) is None
    assert set_status(db_session, "not-a-uuid", SUCCESS) is None
