"""SQLAlchemy ORM models - one row per credit profile, deal, search and listing"""

from sqlalchemy import Column, String, BigInteger, Float, DateTime, Integer, Text, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class CreditProfileRecord(Base):
    """Credit profile with its append-only history"""

    __tablename__ = "credit_profile"

    account_id = Column(String(64), primary_key=True)
    score = Column(Integer, nullable=False)
    history = Column(JSON, nullable=False, default=list)
    last_tick = Column(BigInteger, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class DealRecord(Base):
    """Finance, lease or loan deal"""

    __tablename__ = "deal"

    id = Column(String(64), primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    kind = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    principal = Column(Float, nullable=False)
    down_payment = Column(Float, nullable=False)
    amount_financed = Column(Float, nullable=False)
    annual_rate = Column(Float, nullable=False)
    term_months = Column(Integer, nullable=False)
    standard_payment = Column(Float, nullable=False)
    current_balance = Column(Float, nullable=False)
    months_elapsed = Column(Integer, nullable=False, default=0)
    payment_mode = Column(Text, nullable=False)
    custom_payment_amount = Column(Float, nullable=True)
    missed_payment_streak = Column(Integer, nullable=False, default=0)
    asset_ref = Column(String(64), nullable=True)
    collateral_refs = Column(JSON, nullable=False, default=list)
    seized_refs = Column(JSON, nullable=False, default=list)
    pending_seizure_refs = Column(JSON, nullable=False, default=list)
    trade_in_ref = Column(String(64), nullable=True)
    trade_in_value = Column(Float, nullable=False, default=0.0)
    residual_value = Column(Float, nullable=False, default=0.0)
    total_interest_paid = Column(Float, nullable=False, default=0.0)
    last_payment_amount = Column(Float, nullable=False, default=0.0)
    last_serviced_month = Column(Integer, nullable=True)
    created_at = Column(BigInteger, nullable=False)  # simulation hours
    version = Column(Integer, nullable=False, default=0)


class SearchRequestRecord(Base):
    """Agent search for a used item"""

    __tablename__ = "search_request"

    id = Column(String(64), primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    tier = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    desired_spec = Column(JSON, nullable=False)
    base_price = Column(Float, nullable=False)
    ttl = Column(Integer, nullable=False)
    fee_charged = Column(Float, nullable=False)
    found_item = Column(JSON, nullable=True)
    purchased_asset_ref = Column(String(64), nullable=True)
    last_processed_month = Column(Integer, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    version = Column(Integer, nullable=False, default=0)


class SaleListingRecord(Base):
    """Agent sale listing with its offers"""

    __tablename__ = "sale_listing"

    id = Column(String(64), primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    asset_ref = Column(String(64), nullable=False, index=True)
    agent_tier = Column(Text, nullable=False)
    price_tier = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    base_price = Column(Float, nullable=False)
    fee_charged = Column(Float, nullable=False)
    success_rate = Column(Float, nullable=False)
    months_remaining = Column(Integer, nullable=False)
    rounds = Column(Integer, nullable=False, default=0)
    pending_offer = Column(JSON, nullable=True)
    offer_history = Column(JSON, nullable=False, default=list)
    final_price = Column(Float, nullable=True)
    last_processed_month = Column(Integer, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    version = Column(Integer, nullable=False, default=0)


class AssetRow(Base):
    """Registry entry for one item when the registry runs in-process"""

    __tablename__ = "asset"

    ref = Column(String(64), primary_key=True)
    owner = Column(String(64), nullable=True, index=True)
    base_value = Column(Float, nullable=False)
    brand = Column(Text, nullable=True)
    damage = Column(Float, nullable=False, default=0.0)
    wear = Column(Float, nullable=False, default=0.0)


class LedgerBalanceRecord(Base):
    """Account balance when the ledger runs in-process"""

    __tablename__ = "ledger_balance"

    account_id = Column(String(64), primary_key=True)
    balance = Column(Float, nullable=False, default=0.0)
