from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from datetime import datetime, timezone
from typing import List, Optional
import logging

from app.crud.checkout_crud import get_recent_checkout_sessions, search_checkout_sessions
from app.db.session import get_session
from app.dependencies import get_current_user
from app.schemas.payment_schema import CheckoutSessionRead, ReportPage

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/report", tags=["report"], dependencies=[Depends(get_current_user)])

MIN_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; aware inputs are converted, naive ones taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def clamp_page_size(page_size: int) -> int:
    if page_size <= 0:
        return 0
    return max(MIN_PAGE_SIZE, min(page_size, MAX_PAGE_SIZE))


@router.get("", response_model=ReportPage)
async def report(
    from_datetime: Optional[datetime] = Query(None),
    to_datetime: Optional[datetime] = Query(None),
    status: Optional[str] = Query(None),
    reference_no: Optional[str] = Query(None),
    page: int = Query(1),
    page_size: int = Query(10),
    session: Session = Depends(get_session),
):
    """Paged, filtered list of checkout sessions, newest first. ``page_size <= 0`` shows all."""
    safe_page_size = clamp_page_size(page_size)
    safe_page = 1 if safe_page_size == 0 else max(1, page)

    rows, total_count = search_checkout_sessions(
        session,
        from_utc=to_utc(from_datetime),
        to_utc=to_utc(to_datetime),
        status=status,
        reference=reference_no,
        page=safe_page,
        page_size=safe_page_size,
    )
    logger.info(f"Report page rendered. SessionCount: {len(rows)}, TotalCount: {total_count}")
    return ReportPage(
        sessions=[CheckoutSessionRead.model_validate(row) for row in rows],
        from_datetime=from_datetime,
        to_datetime=to_datetime,
        status=status,
        reference_no=reference_no,
        page_number=safe_page,
        page_size=safe_page_size,
        total_count=total_count,
    )


@router.get("/recent", response_model=List[CheckoutSessionRead])
async def recent_sessions(limit: int = Query(50), session: Session = Depends(get_session)):
    return get_recent_checkout_sessions(session, limit)
