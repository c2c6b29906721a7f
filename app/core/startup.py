from sqlmodel import Session, select
from app.models.payment_channel_model import PaymentChannel
import logging
from sqlalchemy.exc import SQLAlchemyError
import traceback
from decimal import Decimal

logger = logging.getLogger(__name__)

# (code, display_name, country, currency, min_amount, max_amount, settlement,
#  refundable, save, reusable_code, mit, type)
DEFAULT_PAYMENT_CHANNELS = [
    ("KBANK_CARD_INSTALLMENT", "KBank Card Installment", "TH", "THB", "100.00", None, "T+2", False, True, False, False, "CARD_INSTALLMENT"),
    ("BAY_CARD", "Krungsri Credit Card", "TH", "THB", "50.00", None, "T+2", True, True, False, False, "CARD"),
    ("SCB_CARD", "SCB Credit Card", "TH", "THB", "50.00", None, "T+2", True, True, False, False, "CARD"),
    ("BBL_CARD", "Bangkok Bank Card", "TH", "THB", "50.00", None, "T+2", True, True, False, False, "CARD"),
    ("KTC_CARD", "KTC Credit Card", "TH", "THB", "50.00", None, "T+2", True, True, False, False, "CARD"),
    ("UOB_CARD", "UOB Credit Card", "TH", "THB", "50.00", None, "T+2", True, True, False, False, "CARD"),
    ("BAY_CARD_INSTALLMENT", "Krungsri Card Installment", "TH", "THB", "500.00", None, "T+2", False, True, False, False, "CARD_INSTALLMENT"),
    ("SCB_CARD_INSTALLMENT", "SCB Card Installment", "TH", "THB", "500.00", None, "T+2", False, True, False, False, "CARD_INSTALLMENT"),
    ("THAI_QR", "Thai QR Payment", "TH", "THB", "1.00", None, "T+0", False, False, True, False, "QR"),
    ("PROMPTPAY", "PromptPay", "TH", "THB", "1.00", None, "T+0", False, False, True, False, "QR"),
]


def _channel_from_row(row: tuple) -> PaymentChannel:
    (code, display_name, country, currency, min_amount, max_amount, settlement,
     refundable, save, reusable, mit, channel_type) = row
    return PaymentChannel(
        code=code,
        display_name=display_name,
        country=country,
        currency=currency,
        min_amount=Decimal(min_amount),
        max_amount=Decimal(max_amount) if max_amount is not None else None,
        settlement_time=settlement,
        is_refundable=refundable,
        supports_save=save,
        supports_reusable_payment_code=reusable,
        supports_merchant_initiated_txn=mit,
        type=channel_type,
    )


def seed_payment_channels(session: Session, rows: list = None) -> int:
    """Insert catalog rows missing by (code, country, currency). Returns rows inserted."""
    rows = DEFAULT_PAYMENT_CHANNELS if rows is None else rows
    try:
        existing = {
            (channel.code, channel.country, channel.currency)
            for channel in session.exec(select(PaymentChannel)).all()
        }
        inserted = 0
        for row in rows:
            channel = _channel_from_row(row)
            key = (channel.code, channel.country, channel.currency)
            if key in existing:
                continue
            session.add(channel)
            existing.add(key)
            inserted += 1
        session.commit()
        return inserted
    except SQLAlchemyError as e:
        logger.error(f"Database error while seeding payment channels: {str(e)}")
        logger.error(traceback.format_exc())
        session.rollback()
        raise
