"""POST /v1/ticks - Advance the simulation clock"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from usedplus_engine.api.dependencies import get_engine, persist_accounts
from usedplus_engine.api.v1.schemas import EventSchema, TickRequest, TickResponse
from usedplus_engine.infrastructure.database.session import get_db
from usedplus_engine.services.engine import FinanceEngine

router = APIRouter()


@router.post("/ticks", response_model=TickResponse)
def advance_tick(
    request_body: TickRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    """
    Deliver a clock tick.

    Safe to repeat: a timestamp that was already processed returns no events.
    """
    events = engine.advance_tick(request_body.timestamp)
    persist_accounts(db, engine, engine.account_ids())
    return TickResponse(
        timestamp=request_body.timestamp,
        events=[EventSchema.model_validate(e) for e in events],
    )
