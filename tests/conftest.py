"""Pytest fixtures for testing"""

import itertools
import pytest
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from usedplus_engine.api.dependencies import get_engine
from usedplus_engine.api.main import create_app
from usedplus_engine.config import Settings
from usedplus_engine.infrastructure.clients.assets import AssetRecord, InMemoryAssetRegistry
from usedplus_engine.infrastructure.clients.ledger import InMemoryLedger
from usedplus_engine.infrastructure.database.models import Base
from usedplus_engine.infrastructure.database.session import get_db
from usedplus_engine.services.engine import FinanceEngine


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_settings() -> Settings:
    """Default engine settings, isolated from any local .env"""
    return Settings(_env_file=None)


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Ledger with a well-funded farm and an empty one"""
    return InMemoryLedger({"farm_1": 1_000_000.0, "farm_broke": 0.0})


@pytest.fixture
def registry() -> InMemoryAssetRegistry:
    """Dealer stock plus items already owned by farm_1"""
    return InMemoryAssetRegistry(
        [
            AssetRecord(ref="tractor_new", owner=None, base_value=250_000, brand="fendt"),
            AssetRecord(ref="combine_owned", owner="farm_1", base_value=300_000, brand="claas", damage=0.02, wear=0.1),
            AssetRecord(ref="trailer_owned", owner="farm_1", base_value=40_000, brand="krone", damage=0.3, wear=0.5),
            AssetRecord(ref="mower_owned", owner="farm_1", base_value=20_000, brand="fendt", damage=0.2, wear=0.1),
        ]
    )


@pytest.fixture
def finance_engine(ledger: InMemoryLedger, registry: InMemoryAssetRegistry, test_settings: Settings) -> FinanceEngine:
    """Engine with deterministic ids so seeded draws are reproducible"""
    counter = itertools.count(1)
    return FinanceEngine(
        ledger,
        registry,
        settings=test_settings,
        id_factory=lambda prefix: f"{prefix}_{next(counter)}",
    )


@pytest.fixture
def client(db: Session, finance_engine: FinanceEngine) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: finance_engine
    return TestClient(app)
