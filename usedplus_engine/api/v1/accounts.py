"""Account funds - deposits and balances on the ledger"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from usedplus_engine.api.dependencies import get_engine, persist_accounts
from usedplus_engine.api.v1.schemas import BalanceResponse, DepositRequest
from usedplus_engine.infrastructure.database.session import get_db
from usedplus_engine.services.engine import FinanceEngine

router = APIRouter()


@router.post("/accounts/{account_id}/deposit", response_model=BalanceResponse)
def deposit(
    account_id: str,
    request_body: DepositRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    balance = engine.deposit(account_id, request_body.amount)
    persist_accounts(db, engine, [account_id])
    return BalanceResponse(account_id=account_id, balance=balance)


@router.get("/accounts/{account_id}/balance", response_model=BalanceResponse)
def get_balance(account_id: str, engine: FinanceEngine = Depends(get_engine)):
    return BalanceResponse(account_id=account_id, balance=engine.balance(account_id))
