"""GET /v1/credit/{account_id} - Credit report"""

from fastapi import APIRouter, Depends

from usedplus_engine.api.dependencies import get_engine
from usedplus_engine.api.v1.schemas import CreditReportResponse
from usedplus_engine.services.engine import FinanceEngine

router = APIRouter()


@router.get("/credit/{account_id}", response_model=CreditReportResponse)
def get_credit_report(account_id: str, engine: FinanceEngine = Depends(get_engine)):
    """
    Current score, rating and trend for an account.

    Returns:
        Score in [300, 850] with the most recent history events
    """
    return CreditReportResponse.model_validate(engine.get_credit_report(account_id))
