"""Dependency injection for FastAPI endpoints"""

import threading
from typing import Iterable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from usedplus_engine.config import settings
from usedplus_engine.infrastructure.clients.assets import AssetRegistry, HttpAssetRegistryClient, InMemoryAssetRegistry
from usedplus_engine.infrastructure.clients.ledger import HttpLedgerClient, InMemoryLedger, Ledger
from usedplus_engine.infrastructure.database.repositories import StateRepository
from usedplus_engine.infrastructure.database.session import get_db
from usedplus_engine.services.engine import FinanceEngine

_engine: FinanceEngine | None = None
_engine_lock = threading.Lock()


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def build_ledger(repo: StateRepository) -> Ledger:
    """Provide the configured ledger collaborator"""
    if settings.ledger_mode == "http":
        return HttpLedgerClient()
    return InMemoryLedger(repo.load_balances())


def build_registry(repo: StateRepository) -> AssetRegistry:
    """Provide the configured asset registry collaborator"""
    if settings.asset_registry_mode == "http":
        return HttpAssetRegistryClient()
    return InMemoryAssetRegistry(repo.load_assets())


def get_engine(db: Session = Depends(get_db)) -> FinanceEngine:
    """Process-wide engine, restored from the database on first use"""
    global _engine
    with _engine_lock:
        if _engine is None:
            repo = StateRepository(db)
            engine = FinanceEngine(build_ledger(repo), build_registry(repo))
            engine.restore(repo.load_accounts(settings.starting_credit_score))
            _engine = engine
        return _engine


def persist_accounts(db: Session, engine: FinanceEngine, account_ids: Iterable[str]) -> None:
    """Write the given accounts' state, plus in-process collaborator state, and commit"""
    repo = StateRepository(db)
    for account_id in set(account_ids):
        repo.save_account(engine.export_account(account_id))
    if isinstance(engine.registry, InMemoryAssetRegistry):
        repo.save_assets(engine.registry.all())
    if isinstance(engine.ledger, InMemoryLedger):
        repo.save_balances(engine.ledger.balances())
    db.commit()
