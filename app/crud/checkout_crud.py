from sqlmodel import Session, select
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from app.core.config import settings
from app.core.errors import PersistenceFailureError
from app.models.checkout_session_model import (
    CheckoutSession,
    CheckoutStatus,
    TransitionPolicy,
    resolve_transition,
)
from app.schemas.payment_schema import CallbackPayload
from datetime import datetime
from typing import List, Optional, Tuple
import logging
import uuid
from app.core.clock import utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def parse_session_id(session_id) -> Optional[str]:
    """Canonical text form of a session id, or None if it is not a UUID."""
    if isinstance(session_id, uuid.UUID):
        return str(session_id)
    try:
        return str(uuid.UUID(str(session_id).strip()))
    except (ValueError, AttributeError):
        return None


def create_checkout_session(
    session: Session,
    payload: CallbackPayload,
    raw_payload: str,
    trace_id: Optional[str],
) -> str:
    invoice = payload.invoice
    space = payload.space
    checkout = CheckoutSession(
        trace_id=trace_id,
        invoice_id=invoice.uuid if invoice else None,
        invoice_reference=invoice.reference if invoice else None,
        billed_entity_name=invoice.billed_entity_name if invoice else None,
        amount=invoice.price_with_discount_with_taxes if invoice else 0,
        space_id=space.uuid if space else None,
        space_name=space.name if space else None,
        raw_decrypted_payload=raw_payload,
    )
    try:
        session.add(checkout)
        session.commit()
        session.refresh(checkout)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to insert checkout session. TraceId: {trace_id}, error: {str(e)}")
        raise PersistenceFailureError(str(e), public_message="Unable to store callback data.")

    logger.info(f"Checkout session created: {checkout.id}, TraceId: {trace_id}")
    return checkout.id


def get_checkout_session(session: Session, session_id) -> Optional[CheckoutSession]:
    key = parse_session_id(session_id)
    if key is None:
        return None
    checkout = session.get(CheckoutSession, key)
    if not checkout:
        logger.warning(f"Checkout session not found: {key}")
    return checkout


def record_channel_selection(
    session: Session,
    session_id,
    channel_code: str,
    payment_url: Optional[str],
) -> bool:
    key = parse_session_id(session_id)
    checkout = session.get(CheckoutSession, key) if key else None
    if not checkout:
        logger.warning(f"Channel selection update affected 0 rows. SessionId: {session_id}")
        return False

    checkout.selected_channel_code = channel_code
    checkout.payment_url = payment_url
    checkout.updated_at = utc_now()
    try:
        session.add(checkout)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to record channel selection for {key}: {str(e)}")
        raise PersistenceFailureError(str(e), public_message="Unable to update payment status.")

    logger.info(f"Channel selection recorded. SessionId: {key}, ChannelCode: {channel_code}")
    return True


def set_status(
    session: Session,
    session_id,
    status: CheckoutStatus,
    policy: Optional[TransitionPolicy] = None,
) -> Optional[CheckoutSession]:
    """
    Apply a status write through the transition table.

    The row is locked for the duration of the read-decide-write so concurrent
    webhook and redirect writers for the same session are serialized. Returns
    None when the session does not exist; refused transitions return the row
    unchanged.
    """
    policy = TransitionPolicy(policy or settings.STATUS_TRANSITION_POLICY)
    key = parse_session_id(session_id)
    if key is None:
        logger.warning(f"Status update ignored for malformed session id: {session_id}")
        return None

    try:
        checkout = session.exec(
            select(CheckoutSession).where(CheckoutSession.id == key).with_for_update()
        ).first()
        if not checkout:
            session.rollback()
            logger.warning(f"Status update affected 0 rows. SessionId: {key}, Status: {status.value}")
            return None

        current = checkout.checkout_status
        new_status = resolve_transition(current, status, policy)
        if new_status is None:
            session.rollback()
            logger.warning(
                f"Status transition refused. SessionId: {key}, "
                f"From: {current.value}, To: {status.value}, Policy: {policy.value}"
            )
            return checkout

        checkout.status = new_status.value
        checkout.updated_at = utc_now()
        session.add(checkout)
        session.commit()
        session.refresh(checkout)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to update status for {key}: {str(e)}")
        raise PersistenceFailureError(str(e), public_message="Unable to update payment status.")

    logger.info(f"Status updated. SessionId: {key}, From: {current.value}, To: {new_status.value}")
    return checkout


def _apply_report_filters(
    statement,
    from_utc: Optional[datetime],
    to_utc: Optional[datetime],
    status: Optional[str],
    reference: Optional[str],
):
    if from_utc is not None:
        statement = statement.where(CheckoutSession.created_at >= from_utc)
    if to_utc is not None:
        statement = statement.where(CheckoutSession.created_at <= to_utc)
    if status and status.strip():
        statement = statement.where(func.lower(CheckoutSession.status) == status.strip().lower())
    if reference and reference.strip():
        statement = statement.where(
            CheckoutSession.invoice_reference.icontains(reference.strip(), autoescape=True)
        )
    return statement


def search_checkout_sessions(
    session: Session,
    from_utc: Optional[datetime] = None,
    to_utc: Optional[datetime] = None,
    status: Optional[str] = None,
    reference: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[CheckoutSession], int]:
    """Filtered, newest-first listing. ``page_size <= 0`` returns every match."""
    fetch_all = page_size <= 0
    page = max(1, page)

    statement = _apply_report_filters(select(CheckoutSession), from_utc, to_utc, status, reference)
    statement = statement.order_by(CheckoutSession.created_at.desc(), CheckoutSession.id)
    if not fetch_all:
        page_size = min(page_size, MAX_PAGE_SIZE)
        statement = statement.offset((page - 1) * page_size).limit(page_size)

    count_statement = _apply_report_filters(
        select(func.count()).select_from(CheckoutSession), from_utc, to_utc, status, reference
    )
    try:
        rows = list(session.exec(statement).all())
        total_count = session.exec(count_statement).one()
    except SQLAlchemyError as e:
        logger.error(f"Failed to search checkout sessions: {str(e)}")
        raise PersistenceFailureError(str(e))

    return rows, int(total_count)


def get_recent_checkout_sessions(session: Session, limit: int = 50) -> List[CheckoutSession]:
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    return list(session.exec(
        select(CheckoutSession)
        .order_by(CheckoutSession.created_at.desc())
        .limit(limit)
    ).all())
