# clinic/routers/accounting.py
#
# This router reports consultation income over a date range.

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..crud import db_list_consultations_between
from ..models import IncomeSummary
from ..security import ensure_role, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounting", tags=["Accounting"])


def income_summary(start_ms: int, end_ms: int) -> IncomeSummary:
    """Totals for consultations dated in [start, end]. A failed read yields a zero summary."""
    try:
        transactions = db_list_consultations_between(start_ms, end_ms)
    except Exception as e:
        logger.error("ACCOUNTING: Error fetching accounting data: %s", e)
        return IncomeSummary(totalIncome=0, consultationCount=0, averageTicket=0, transactions=[])

    total = sum(t.get('paymentAmount') or 0 for t in transactions)
    count = len(transactions)
    return IncomeSummary(
        totalIncome=total,
        consultationCount=count,
        averageTicket=total / count if count else 0,
        transactions=transactions,
    )


@router.get("/income", response_model=IncomeSummary)
def read_income(start: int, end: int, current_user: Dict[str, Any] = Depends(get_current_user)):
    ensure_role(current_user, 'admin')
    return income_summary(start, end)
