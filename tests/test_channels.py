from decimal import Decimal

import pytest
from sqlmodel import select

from app.core.errors import InvalidSelectionError, NoChannelsAvailableError
from app.core.startup import DEFAULT_PAYMENT_CHANNELS, seed_payment_channels
from app.crud.channel_crud import eligible_channels, find_eligible_channel
from app.models.payment_channel_model import PaymentChannel


def _codes(channels):
    return [channel.code for channel in channels]


def _channel(db_session, code):
    return db_session.exec(select(PaymentChannel).where(PaymentChannel.code == code)).one()


def _add_capped_channel(db_session, max_amount="1000.00"):
    channel = PaymentChannel(
        code="CAPPED_WALLET",
        display_name="Capped Wallet",
        country="TH",
        currency="THB",
        min_amount=Decimal("10.00"),
        max_amount=Decimal(max_amount),
        settlement_time="T+1",
        type="EWALLET",
    )
    db_session.add(channel)
    db_session.commit()
    return channel


def test_seed_is_idempotent(db_session):
    assert seed_payment_channels(db_session) == 0
    assert len(db_session.exec(select(PaymentChannel)).all()) == len(DEFAULT_PAYMENT_CHANNELS)


def test_small_amount_only_offers_qr_channels_in_display_order(db_session):
    assert _codes(eligible_channels(db_session, Decimal("1.00"))) == ["PROMPTPAY", "THAI_QR"]


def test_minimum_amount_is_inclusive(db_session):
    assert "BAY_CARD" in _codes(eligible_channels(db_session, Decimal("50.00")))
    assert "BAY_CARD" not in _codes(eligible_channels(db_session, Decimal("49.99")))


def test_maximum_amount_is_inclusive(db_session):
    _add_capped_channel(db_session)
    assert "CAPPED_WALLET" in _codes(eligible_channels(db_session, Decimal("1000.00")))
    assert "CAPPED_WALLET" not in _codes(eligible_channels(db_session, Decimal("1000.01")))


def test_amount_below_every_minimum_yields_empty_list(db_session):
    assert eligible_channels(db_session, Decimal("0.50")) == []


def test_channels_are_grouped_by_type(db_session):
    types = [channel.type for channel in eligible_channels(db_session, Decimal("1000.00"))]
    assert types == sorted(types)
    assert len(types) == len(DEFAULT_PAYMENT_CHANNELS)


def test_accepts_matches_query_rule():
    channel = PaymentChannel(
        code="X", display_name="X", country="TH", currency="THB",
        min_amount=Decimal("10"), max_amount=Decimal("20"), settlement_time="T+0", type="QR",
    )
    assert channel.accepts(Decimal("10"))
    assert channel.accepts(Decimal("20"))
    assert not channel.accepts(Decimal("9.99"))
    assert not channel.accepts(Decimal("20.01"))

    channel.max_amount = None
    assert channel.accepts(Decimal("1000000"))


def test_description_summarises_capabilities(db_session):
    channel = _channel(db_session, "BAY_CARD")
    assert channel.description == "Settlement: T+2 | Refundable: Yes | Save: Yes | Reusable: No | MIT: No"


def test_find_eligible_channel_returns_the_selection(db_session):
    promptpay = _channel(db_session, "PROMPTPAY")
    assert find_eligible_channel(db_session, Decimal("5.00"), promptpay.id).code == "PROMPTPAY"


@pytest.mark.parametrize("channel_id", [None, 0, -3])
def test_missing_selection_is_rejected(db_session, channel_id):
    with pytest.raises(InvalidSelectionError) as exc_info:
        find_eligible_channel(db_session, Decimal("5.00"), channel_id)
    assert exc_info.value.public_message == "Please select a payment channel."


def test_selection_outside_eligible_set_is_rejected(db_session):
    card = _channel(db_session, "KBANK_CARD_INSTALLMENT")
    with pytest.raises(InvalidSelectionError) as exc_info:
        find_eligible_channel(db_session, Decimal("5.00"), card.id)
    assert exc_info.value.public_message == "Selected payment channel is not allowed for this payable amount."


def test_no_channels_for_amount(db_session):
    promptpay = _channel(db_session, "PROMPTPAY")
    with pytest.raises(NoChannelsAvailableError):
        find_eligible_channel(db_session, Decimal("0.10"), promptpay.id)
