from sqlmodel import Session, select
from sqlalchemy import or_
from app.core.errors import InvalidSelectionError, NoChannelsAvailableError
from app.models.payment_channel_model import PaymentChannel
from decimal import Decimal
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)


def eligible_channels(session: Session, amount: Decimal) -> List[PaymentChannel]:
    """Channels whose [min_amount, max_amount] range contains ``amount``."""
    channels = session.exec(
        select(PaymentChannel)
        .where(PaymentChannel.min_amount <= amount)
        .where(or_(PaymentChannel.max_amount.is_(None), PaymentChannel.max_amount >= amount))
        .order_by(PaymentChannel.type, PaymentChannel.display_name, PaymentChannel.id)
    ).all()
    logger.info(f"Eligible channels evaluated. Amount: {amount}, ChannelCount: {len(channels)}")
    return list(channels)


def find_eligible_channel(
    session: Session,
    amount: Decimal,
    channel_id: Optional[int],
) -> PaymentChannel:
    if not channel_id or channel_id <= 0:
        raise InvalidSelectionError("Missing channel id")

    channels = eligible_channels(session, amount)
    if not channels:
        raise NoChannelsAvailableError(f"No channels for amount {amount}")

    channel = next((c for c in channels if c.id == channel_id), None)
    if channel is not None and channel.accepts(amount):
        return channel

    raise InvalidSelectionError(
        f"Channel {channel_id} is not eligible for amount {amount}",
        public_message="Selected payment channel is not allowed for this payable amount.",
    )
