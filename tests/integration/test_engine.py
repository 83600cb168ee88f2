"""Integration tests for the finance engine against in-memory collaborators"""

import pytest
from usedplus_engine.domain.exceptions import (
    AlreadyListedError,
    AlreadyPaidOffError,
    AssetExistsError,
    AssetRegistryError,
    DealNotActiveError,
    IneligibleError,
    InsufficientCreditError,
    InvalidModeError,
    LedgerRejectedError,
    LedgerUnavailableError,
    OfferExpiredError,
    RequestClosedError,
)
from usedplus_engine.domain.models import (
    AgentTier,
    CreditEvent,
    CreditProfile,
    CreditReason,
    DealKind,
    DealStatus,
    DesiredSpec,
    EventType,
    ListingStatus,
    Offer,
    PaymentMode,
    PriceTier,
    SearchStatus,
    SearchTier,
)
from usedplus_engine.domain.trade_in import trade_in_range
from usedplus_engine.infrastructure.clients.assets import AssetRecord
from usedplus_engine.services.engine import AccountSnapshot, FinanceEngine

MONTH = 24


def funded_deal(engine, kind=DealKind.FINANCE, principal=200000, term=60, **kwargs):
    if kind != DealKind.LOAN:
        kwargs.setdefault("asset_ref", "tractor_new")
    kwargs.setdefault("annual_rate", 0.06)
    deal = engine.create_deal("farm_1", kind, principal, term, **kwargs)
    return engine.confirm_funding(deal.id)


def tick_months(engine, start, count):
    events = []
    for month in range(start, start + count):
        events.extend(engine.advance_tick(month * MONTH))
    return events


def of_type(events, event_type):
    return [e for e in events if e.type == event_type]


def drain(ledger, account_id="farm_1"):
    ledger.debit(account_id, ledger.balance(account_id), "drain")


def failing_transfer(monkeypatch, registry, ref=None, failures=1):
    """Make the next `failures` transfers (of `ref`, or of anything) raise"""
    original = registry.transfer
    remaining = [failures]

    def transfer(asset_ref, owner):
        if remaining[0] > 0 and (ref is None or asset_ref == ref):
            remaining[0] -= 1
            raise AssetRegistryError(f"registry timeout on {asset_ref}")
        original(asset_ref, owner)

    monkeypatch.setattr(registry, "transfer", transfer)


def offer_pending(engine, amount=200000.0):
    """List combine_owned and put a known offer on it"""
    listing = engine.create_sale_listing("farm_1", "combine_owned", AgentTier.LOCAL, PriceTier.QUICK)
    snapshot = engine.export_account("farm_1")
    held = next(l for l in snapshot.listings if l.id == listing.id)
    held.status = ListingStatus.OFFER_PENDING
    held.pending_offer = Offer(amount=amount, created_at=engine.now, expires_at=engine.now + 48)
    held.version += 1
    engine.restore([snapshot])
    return listing.id


# ----------------------------------------------------------------------
# Deals


def test_create_deal_is_pending(finance_engine):
    """Test new deals wait for funding and quote a rate when none is given"""
    deal = finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, 0.10, asset_ref="tractor_new")

    assert deal.status == DealStatus.PENDING
    assert deal.amount_financed == pytest.approx(90000)
    # Good rating (710), 60 months, 10% down
    assert deal.annual_rate == pytest.approx(0.04)


def test_confirm_funding_moves_money_and_asset(finance_engine, ledger, registry):
    """Test funding collects the down payment and assigns the asset"""
    deal = finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, 0.10, asset_ref="tractor_new")
    finance_engine.confirm_funding(deal.id)

    assert finance_engine.get_deal(deal.id).status == DealStatus.ACTIVE
    assert ledger.balance("farm_1") == pytest.approx(990000)
    assert registry.get("tractor_new").owner == "farm_1"
    assert finance_engine.get_credit_report("farm_1").history_tail[-1].reason == CreditReason.NEW_DEBT

    with pytest.raises(DealNotActiveError):
        finance_engine.confirm_funding(deal.id)


def test_loan_funding_credits_proceeds(finance_engine, ledger):
    funded_deal(finance_engine, DealKind.LOAN, principal=50000, collateral_refs=["combine_owned"])
    assert ledger.balance("farm_1") == pytest.approx(1_050_000)


def test_create_deal_eligibility(finance_engine, registry):
    """Test asset, collateral and trade-in checks"""
    with pytest.raises(IneligibleError):
        finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, asset_ref="combine_owned")
    with pytest.raises(IneligibleError):
        finance_engine.create_deal("farm_1", DealKind.LOAN, 50000, 60, asset_ref="tractor_new")
    with pytest.raises(IneligibleError):
        # Good rating lends 80% of 40000
        finance_engine.create_deal("farm_1", DealKind.LOAN, 35000, 60, collateral_refs=["trailer_owned"])
    with pytest.raises(IneligibleError):
        finance_engine.create_deal("farm_1", DealKind.LOAN, 20000, 60, trade_in_ref="mower_owned")

    finance_engine.create_deal("farm_1", DealKind.LOAN, 30000, 60, collateral_refs=["trailer_owned"])
    with pytest.raises(IneligibleError):
        # Already pledged
        finance_engine.create_deal("farm_1", DealKind.LOAN, 10000, 60, collateral_refs=["trailer_owned"])


def test_create_deal_insufficient_credit(finance_engine):
    """Test a poor history blocks origination"""
    history = [CreditEvent(timestamp=0, delta=-75, reason=CreditReason.REPOSSESSION) for _ in range(5)]
    finance_engine.restore([AccountSnapshot(profile=CreditProfile(account_id="farm_bad", score=300, history=history))])

    with pytest.raises(InsufficientCreditError):
        finance_engine.create_deal("farm_bad", DealKind.FINANCE, 100000, 60, asset_ref="tractor_new")


def test_trade_in_reduces_financed_amount(finance_engine, registry):
    """Test a same-brand trade-in is valued and handed to the dealer on funding"""
    deal = finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, asset_ref="tractor_new", trade_in_ref="mower_owned")
    low, high = trade_in_range(20000, True, 0.2, 0.1)

    assert low <= deal.trade_in_value <= high
    assert deal.amount_financed == pytest.approx(100000 - deal.trade_in_value)

    finance_engine.confirm_funding(deal.id)
    assert registry.get("mower_owned").owner is None


def test_standard_deal_pays_off_after_term(finance_engine):
    """Test 60 monthly ticks at 6% clear a 200k deal"""
    deal = funded_deal(finance_engine)
    events = tick_months(finance_engine, 1, 60)

    final = finance_engine.get_deal(deal.id)
    assert final.status == DealStatus.PAID_OFF
    assert final.current_balance == 0.0
    assert final.months_elapsed == 60
    assert len(of_type(events, EventType.PAYMENT_APPLIED)) == 60
    assert len(of_type(events, EventType.DEAL_PAID_OFF)) == 1
    assert of_type(events, EventType.PAYMENT_APPLIED)[0].data["amount"] == pytest.approx(3866.56, abs=0.01)


def test_tick_is_idempotent(finance_engine, ledger):
    """Test replaying a timestamp changes nothing"""
    deal = funded_deal(finance_engine)

    first = finance_engine.advance_tick(MONTH)
    balance = finance_engine.get_deal(deal.id).current_balance
    entries = len(ledger.entries)

    assert len(first) == 1
    assert finance_engine.advance_tick(MONTH) == []
    assert finance_engine.advance_tick(MONTH - 1) == []
    assert finance_engine.get_deal(deal.id).current_balance == balance
    assert len(ledger.entries) == entries


def test_tick_catches_up_skipped_months(finance_engine):
    """Test one late tick services every month crossed"""
    deal = funded_deal(finance_engine)
    events = finance_engine.advance_tick(3 * MONTH)

    assert len(of_type(events, EventType.PAYMENT_APPLIED)) == 3
    assert finance_engine.get_deal(deal.id).months_elapsed == 3


def test_tick_inside_month_does_nothing(finance_engine):
    funded_deal(finance_engine)
    assert finance_engine.advance_tick(MONTH // 2) == []


def test_minimum_mode_balance_never_falls(finance_engine):
    """Test interest-only servicing keeps the balance flat"""
    deal = funded_deal(finance_engine)
    finance_engine.set_payment_mode(deal.id, PaymentMode.MINIMUM)

    events = tick_months(finance_engine, 1, 12)

    assert finance_engine.get_deal(deal.id).current_balance >= 200000 - 1e-6
    assert all(not e.data["partial"] for e in of_type(events, EventType.PAYMENT_APPLIED))


def test_custom_zero_payment_counts_as_missed(finance_engine):
    deal = funded_deal(finance_engine)
    finance_engine.set_payment_mode(deal.id, PaymentMode.CUSTOM, 0)

    events = finance_engine.advance_tick(MONTH)

    assert of_type(events, EventType.PAYMENT_MISSED)[0].data["reason"] == "below_floor"
    assert finance_engine.get_deal(deal.id).missed_payment_streak == 1


def test_partial_payment_grows_balance(finance_engine):
    """Test a payment between the floor and interest is negative amortization"""
    deal = funded_deal(finance_engine)
    finance_engine.set_payment_mode(deal.id, PaymentMode.CUSTOM, 700)  # interest is 1000

    events = finance_engine.advance_tick(MONTH)
    serviced = finance_engine.get_deal(deal.id)

    assert of_type(events, EventType.PAYMENT_APPLIED)[0].data["partial"] is True
    assert serviced.current_balance == pytest.approx(200300)
    assert serviced.missed_payment_streak == 0
    assert finance_engine.get_credit_report("farm_1").history_tail[-1].reason == CreditReason.PARTIAL_PAYMENT


def test_three_misses_repossess_collateral(finance_engine, ledger, registry):
    """Test a collateralized loan is repossessed after three missed months"""
    deal = funded_deal(finance_engine, DealKind.LOAN, principal=100000, collateral_refs=["combine_owned"])
    drain(ledger)

    events = tick_months(finance_engine, 1, 3)
    final = finance_engine.get_deal(deal.id)

    assert len(of_type(events, EventType.PAYMENT_MISSED)) == 3
    assert len(of_type(events, EventType.DEFAULTED)) == 1
    assert len(of_type(events, EventType.REPOSSESSED)) == 1
    assert final.status == DealStatus.REPOSSESSED
    assert final.seized_refs == ["combine_owned"]
    assert final.current_balance == 0.0
    assert registry.get("combine_owned").owner is None
    assert "combine_owned" not in [a.ref for a in registry.holdings("farm_1")]

    reasons = [e.reason for e in finance_engine.get_credit_report("farm_1").history_tail]
    assert reasons.count(CreditReason.MISSED_PAYMENT) == 3
    assert CreditReason.REPOSSESSION in reasons

    # Terminal deals are never serviced again
    assert of_type(tick_months(finance_engine, 4, 2), EventType.PAYMENT_MISSED) == []


def test_financed_asset_is_repossessed(finance_engine, ledger, registry):
    deal = funded_deal(finance_engine)
    drain(ledger)

    tick_months(finance_engine, 1, 3)

    assert finance_engine.get_deal(deal.id).status == DealStatus.REPOSSESSED
    assert registry.get("tractor_new").owner is None


def test_ledger_outage_defers_month(finance_engine, ledger):
    """Test a transient ledger failure retries the month without penalty"""
    deal = funded_deal(finance_engine)
    history_before = len(finance_engine.get_credit_report("farm_1").history_tail)
    ledger.available = False

    events = finance_engine.advance_tick(MONTH)
    deferred = finance_engine.get_deal(deal.id)

    assert of_type(events, EventType.PAYMENT_MISSED)[0].data["reason"] == "ledger_unavailable"
    assert deferred.missed_payment_streak == 0
    assert deferred.months_elapsed == 0
    assert deferred.current_balance == pytest.approx(200000)
    assert len(finance_engine.get_credit_report("farm_1").history_tail) == history_before

    ledger.available = True
    events = finance_engine.advance_tick(2 * MONTH)

    assert len(of_type(events, EventType.PAYMENT_APPLIED)) == 2
    assert finance_engine.get_deal(deal.id).months_elapsed == 2


def test_lease_matures_and_returns_asset(finance_engine, registry):
    """Test a lease hands the asset back after its final payment"""
    deal = funded_deal(finance_engine, DealKind.LEASE, principal=60000, term=12)

    with pytest.raises(InvalidModeError):
        finance_engine.set_payment_mode(deal.id, PaymentMode.EXTRA_2X)

    events = tick_months(finance_engine, 1, 12)

    assert len(of_type(events, EventType.LEASE_MATURED)) == 1
    assert finance_engine.get_deal(deal.id).status == DealStatus.PAID_OFF
    assert registry.get("tractor_new").owner is None


def test_pay_early(finance_engine, ledger):
    """Test early payoff charges the penalty and closes the deal"""
    deal = funded_deal(finance_engine, principal=100000)
    balance_before = ledger.balance("farm_1")

    paid = finance_engine.pay_early(deal.id)

    assert paid.status == DealStatus.PAID_OFF
    assert ledger.balance("farm_1") == pytest.approx(balance_before - 102000)
    assert finance_engine.get_credit_report("farm_1").history_tail[-1].reason == CreditReason.EARLY_PAYOFF
    with pytest.raises(AlreadyPaidOffError):
        finance_engine.pay_early(deal.id)
    assert finance_engine.advance_tick(MONTH) == []


def test_pay_early_requires_active(finance_engine):
    deal = finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, asset_ref="tractor_new")
    with pytest.raises(DealNotActiveError):
        finance_engine.pay_early(deal.id)


def test_submit_payment_reduces_principal(finance_engine, ledger):
    deal = funded_deal(finance_engine, principal=100000)

    finance_engine.submit_payment(deal.id, 40000)
    assert finance_engine.get_deal(deal.id).current_balance == pytest.approx(60000)

    finance_engine.submit_payment(deal.id, 100000)
    assert finance_engine.get_deal(deal.id).status == DealStatus.PAID_OFF
    assert ledger.balance("farm_1") == pytest.approx(900000)


def test_project_payment(finance_engine):
    deal = funded_deal(finance_engine)

    assert finance_engine.project_payment(deal.id).remaining_months == pytest.approx(60, abs=1e-4)
    assert finance_engine.project_payment(deal.id, PaymentMode.MINIMUM).remaining_months is None


# ----------------------------------------------------------------------
# Credit


def test_credit_report(finance_engine):
    """Test report reflects score, rating and recent history"""
    funded_deal(finance_engine)
    tick_months(finance_engine, 1, 3)

    report = finance_engine.get_credit_report("farm_1")

    assert 300 <= report.score <= 850
    assert [e.reason for e in report.history_tail] == [CreditReason.NEW_DEBT] + [CreditReason.ON_TIME_PAYMENT] * 3
    assert report.trend.value == "up"


# ----------------------------------------------------------------------
# Searches


def test_search_flow(finance_engine, ledger, registry):
    """Test retainer, resolution and purchase of a found item"""
    request = finance_engine.start_search("farm_1", SearchTier.LOCAL, DesiredSpec(make="fendt"), 100000)

    # Good rating gets an 8% discount on the 4% retainer
    assert request.fee_charged == pytest.approx(3680)
    assert ledger.balance("farm_1") == pytest.approx(1_000_000 - 3680)

    events = tick_months(finance_engine, 1, 2)
    resolved = of_type(events, EventType.SEARCH_RESOLVED)
    assert len(resolved) == 1

    result = finance_engine.get_search(request.id)
    if result.status == SearchStatus.SUCCEEDED:
        asset = finance_engine.purchase_found_item(request.id)
        assert registry.get(asset.ref).owner == "farm_1"
        assert ledger.balance("farm_1") == pytest.approx(1_000_000 - 3680 - result.found_item.price)
        with pytest.raises(RequestClosedError):
            finance_engine.purchase_found_item(request.id)
    else:
        assert result.status == SearchStatus.FAILED
        with pytest.raises(RequestClosedError):
            finance_engine.purchase_found_item(request.id)


def test_cancelled_search_keeps_fee(finance_engine, ledger):
    request = finance_engine.start_search("farm_1", SearchTier.NATIONAL, DesiredSpec(), 50000)
    finance_engine.cancel_search(request.id)

    assert of_type(tick_months(finance_engine, 1, 6), EventType.SEARCH_RESOLVED) == []
    assert finance_engine.get_search(request.id).status == SearchStatus.CANCELLED
    assert ledger.balance("farm_1") == pytest.approx(1_000_000 - request.fee_charged)


# ----------------------------------------------------------------------
# Sales


def test_sale_listing_eligibility(finance_engine, registry):
    """Test ownership, encumbrance, duplicate and cap checks"""
    with pytest.raises(IneligibleError):
        finance_engine.create_sale_listing("farm_1", "tractor_new", AgentTier.LOCAL, PriceTier.MARKET)
    with pytest.raises(IneligibleError):
        finance_engine.create_sale_listing("farm_1", "trailer_owned", AgentTier.NATIONAL, PriceTier.PREMIUM)

    finance_engine.create_deal("farm_1", DealKind.LOAN, 50000, 60, collateral_refs=["combine_owned"])
    with pytest.raises(IneligibleError):
        finance_engine.create_sale_listing("farm_1", "combine_owned", AgentTier.LOCAL, PriceTier.MARKET)

    finance_engine.create_sale_listing("farm_1", "trailer_owned", AgentTier.LOCAL, PriceTier.QUICK)
    with pytest.raises(AlreadyListedError):
        finance_engine.create_sale_listing("farm_1", "trailer_owned", AgentTier.LOCAL, PriceTier.QUICK)

    registry.register(AssetRecord(ref="baler_owned", owner="farm_1", base_value=15000))
    registry.register(AssetRecord(ref="rake_owned", owner="farm_1", base_value=5000))
    finance_engine.create_sale_listing("farm_1", "mower_owned", AgentTier.PRIVATE, PriceTier.MARKET)
    finance_engine.create_sale_listing("farm_1", "baler_owned", AgentTier.PRIVATE, PriceTier.MARKET)
    with pytest.raises(IneligibleError):
        finance_engine.create_sale_listing("farm_1", "rake_owned", AgentTier.PRIVATE, PriceTier.MARKET)


def test_sale_flow(finance_engine, ledger, registry):
    """Test a listing either sells on an accepted offer or expires"""
    listing = finance_engine.create_sale_listing("farm_1", "combine_owned", AgentTier.LOCAL, PriceTier.QUICK)
    assert listing.fee_charged == pytest.approx(300000 * 0.675 * 0.02)

    events = []
    month = 0
    while month < 20 and not (of_type(events, EventType.OFFER_GENERATED) or of_type(events, EventType.LISTING_EXPIRED)):
        month += 1
        events.extend(finance_engine.advance_tick(month * MONTH))

    offers = of_type(events, EventType.OFFER_GENERATED)
    if offers:
        amount = offers[0].data["amount"]
        assert 180000 <= amount <= 225000
        balance_before = ledger.balance("farm_1")

        sold = finance_engine.respond_to_offer(listing.id, accept=True)

        assert sold.status == ListingStatus.SOLD
        assert sold.final_price == pytest.approx(amount)
        assert ledger.balance("farm_1") == pytest.approx(balance_before + amount)
        assert registry.get("combine_owned").owner is None
    else:
        assert finance_engine.get_listing(listing.id).status == ListingStatus.EXPIRED


def test_unanswered_offer_expires(finance_engine):
    """Test offers lapse on the hour clock and the listing goes back on the market"""
    listing = finance_engine.create_sale_listing("farm_1", "combine_owned", AgentTier.LOCAL, PriceTier.QUICK)

    offered_at = None
    for month in range(1, 20):
        events = finance_engine.advance_tick(month * MONTH)
        if of_type(events, EventType.OFFER_GENERATED):
            offered_at = month * MONTH
            break
    if offered_at is None:
        pytest.skip("listing expired without an offer")

    events = finance_engine.advance_tick(offered_at + finance_engine.settings.offer_expiry_hours)

    assert len(of_type(events, EventType.OFFER_EXPIRED)) == 1
    current = finance_engine.get_listing(listing.id)
    assert current.pending_offer is None
    assert current.status in (ListingStatus.LISTED, ListingStatus.EXPIRED)
    assert current.offer_history[-1].outcome.value == "declined"


def test_respond_to_expired_offer(finance_engine):
    listing = finance_engine.create_sale_listing("farm_1", "combine_owned", AgentTier.LOCAL, PriceTier.QUICK)

    for month in range(1, 20):
        if of_type(finance_engine.advance_tick(month * MONTH), EventType.OFFER_GENERATED):
            break
    current = finance_engine.get_listing(listing.id)
    if current.pending_offer is None:
        pytest.skip("listing expired without an offer")

    finance_engine.clock.advance(finance_engine.settings.offer_expiry_hours)
    with pytest.raises(OfferExpiredError):
        finance_engine.respond_to_offer(listing.id, accept=True)
    assert finance_engine.get_listing(listing.id).status == ListingStatus.OFFER_PENDING


def test_cancel_listing(finance_engine, registry):
    listing = finance_engine.create_sale_listing("farm_1", "mower_owned", AgentTier.PRIVATE, PriceTier.MARKET)
    finance_engine.cancel_listing(listing.id)

    assert finance_engine.get_listing(listing.id).status == ListingStatus.CANCELLED
    assert registry.get("mower_owned").owner == "farm_1"
    with pytest.raises(RequestClosedError):
        finance_engine.cancel_listing(listing.id)


def test_quote_trade_in(finance_engine):
    low, high = trade_in_range(300000, True, 0.02, 0.1)
    value = finance_engine.quote_trade_in("combine_owned", target_brand="claas", request_id="quote_1")

    assert low <= value <= high
    assert value == finance_engine.quote_trade_in("combine_owned", target_brand="claas", request_id="quote_1")


# ----------------------------------------------------------------------
# Persistence


def test_restore_round_trip(finance_engine, ledger, registry, test_settings):
    """Test a restored engine continues exactly where the original stopped"""
    deal = funded_deal(finance_engine)
    tick_months(finance_engine, 1, 3)
    snapshots = finance_engine.export_all()

    restored = FinanceEngine(ledger, registry, settings=test_settings)
    restored.restore(snapshots)

    assert restored.now == 3 * MONTH
    assert restored.get_deal(deal.id) == finance_engine.get_deal(deal.id)
    assert restored.advance_tick(3 * MONTH) == []

    events = restored.advance_tick(4 * MONTH)
    assert len(of_type(events, EventType.PAYMENT_APPLIED)) == 1


def test_restore_ignores_stale_records(finance_engine):
    deal = funded_deal(finance_engine)
    stale = finance_engine.export_account("farm_1")
    tick_months(finance_engine, 1, 2)

    finance_engine.restore([stale])

    assert finance_engine.get_deal(deal.id).months_elapsed == 2


# ----------------------------------------------------------------------
# Collaborator failures


def test_funding_failure_reverses_down_payment(finance_engine, ledger, registry, monkeypatch):
    """Test a registry failure leaves the deal pending with no money moved"""
    deal = finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, 0.2, asset_ref="tractor_new", annual_rate=0.06)
    failing_transfer(monkeypatch, registry)

    with pytest.raises(AssetRegistryError):
        finance_engine.confirm_funding(deal.id)

    assert ledger.balance("farm_1") == pytest.approx(1_000_000)
    assert finance_engine.get_deal(deal.id).status == DealStatus.PENDING
    assert registry.get("tractor_new").owner is None

    finance_engine.confirm_funding(deal.id)

    assert ledger.balance("farm_1") == pytest.approx(980000)
    assert registry.get("tractor_new").owner == "farm_1"


def test_trade_in_failure_returns_purchased_asset(finance_engine, ledger, registry, monkeypatch):
    deal = finance_engine.create_deal(
        "farm_1", DealKind.FINANCE, 100000, 60, 0.2, asset_ref="tractor_new", trade_in_ref="mower_owned", annual_rate=0.06
    )
    failing_transfer(monkeypatch, registry, ref="mower_owned")

    with pytest.raises(AssetRegistryError):
        finance_engine.confirm_funding(deal.id)

    assert ledger.balance("farm_1") == pytest.approx(1_000_000)
    assert registry.get("tractor_new").owner is None
    assert registry.get("mower_owned").owner == "farm_1"
    assert finance_engine.get_deal(deal.id).status == DealStatus.PENDING


def test_funding_rechecks_dealer_asset(finance_engine, ledger):
    """Test two approvals for one dealer asset fund only once"""
    first = finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, 0.1, asset_ref="tractor_new", annual_rate=0.06)
    second = finance_engine.create_deal("farm_1", DealKind.FINANCE, 100000, 60, 0.1, asset_ref="tractor_new", annual_rate=0.06)
    finance_engine.confirm_funding(first.id)
    balance = ledger.balance("farm_1")

    with pytest.raises(IneligibleError):
        finance_engine.confirm_funding(second.id)

    assert ledger.balance("farm_1") == pytest.approx(balance)
    assert finance_engine.get_deal(second.id).status == DealStatus.PENDING


def test_accept_offer_registry_failure_credits_nothing(finance_engine, ledger, registry, monkeypatch):
    """Test a failed handover leaves the offer open and the proceeds unpaid"""
    listing_id = offer_pending(finance_engine)
    balance = ledger.balance("farm_1")
    failing_transfer(monkeypatch, registry)

    with pytest.raises(AssetRegistryError):
        finance_engine.respond_to_offer(listing_id, accept=True)

    assert ledger.balance("farm_1") == pytest.approx(balance)
    assert finance_engine.get_listing(listing_id).status == ListingStatus.OFFER_PENDING

    sold = finance_engine.respond_to_offer(listing_id, accept=True)

    assert sold.status == ListingStatus.SOLD
    assert ledger.balance("farm_1") == pytest.approx(balance + 200000)
    assert registry.get("combine_owned").owner is None


def test_accept_offer_ledger_failure_keeps_asset(finance_engine, ledger, registry):
    listing_id = offer_pending(finance_engine)
    ledger.available = False

    with pytest.raises(LedgerUnavailableError):
        finance_engine.respond_to_offer(listing_id, accept=True)

    assert registry.get("combine_owned").owner == "farm_1"
    assert finance_engine.get_listing(listing_id).status == ListingStatus.OFFER_PENDING


def test_failed_seizure_is_retried_next_tick(finance_engine, ledger, registry, monkeypatch):
    """Test an asset the registry would not take stays pending until a later tick seizes it"""
    deal = funded_deal(finance_engine, DealKind.LOAN, principal=100000, collateral_refs=["combine_owned"])
    drain(ledger)
    tick_months(finance_engine, 1, 2)
    failing_transfer(monkeypatch, registry)

    events = finance_engine.advance_tick(3 * MONTH)
    defaulted = finance_engine.get_deal(deal.id)

    assert of_type(events, EventType.REPOSSESSED)[0].data["pending_refs"] == ["combine_owned"]
    assert defaulted.status == DealStatus.REPOSSESSED
    assert defaulted.seized_refs == []
    assert defaulted.pending_seizure_refs == ["combine_owned"]
    assert registry.get("combine_owned").owner == "farm_1"

    events = finance_engine.advance_tick(4 * MONTH)
    seized = finance_engine.get_deal(deal.id)

    assert of_type(events, EventType.REPOSSESSED)[0].data["seized_refs"] == ["combine_owned"]
    assert seized.seized_refs == ["combine_owned"]
    assert seized.pending_seizure_refs == []
    assert registry.get("combine_owned").owner is None
    reasons = [e.reason for e in finance_engine.get_credit_report("farm_1").history_tail]
    assert reasons.count(CreditReason.REPOSSESSION) == 1


def test_lease_return_retried_after_registry_failure(finance_engine, registry, monkeypatch):
    deal = funded_deal(finance_engine, DealKind.LEASE, principal=60000, term=12)
    tick_months(finance_engine, 1, 11)
    failing_transfer(monkeypatch, registry)

    events = finance_engine.advance_tick(12 * MONTH)

    assert len(of_type(events, EventType.PAYMENT_APPLIED)) == 1
    assert of_type(events, EventType.LEASE_MATURED) == []
    assert finance_engine.get_deal(deal.id).status == DealStatus.ACTIVE
    assert registry.get("tractor_new").owner == "farm_1"

    events = finance_engine.advance_tick(13 * MONTH)

    assert len(of_type(events, EventType.LEASE_MATURED)) == 1
    assert of_type(events, EventType.PAYMENT_APPLIED) == []
    assert finance_engine.get_deal(deal.id).status == DealStatus.PAID_OFF
    assert registry.get("tractor_new").owner is None


def test_rejected_ledger_call_counts_as_missed(finance_engine, ledger, monkeypatch):
    """Test a permanent ledger rejection is a miss, not a deferral"""
    deal = funded_deal(finance_engine)

    def reject(account_id, amount, memo):
        raise LedgerRejectedError("404 unknown account")

    monkeypatch.setattr(ledger, "debit", reject)

    events = tick_months(finance_engine, 1, 3)

    assert [e.data["reason"] for e in of_type(events, EventType.PAYMENT_MISSED)] == ["ledger_rejected"] * 3
    assert finance_engine.get_deal(deal.id).status == DealStatus.REPOSSESSED


# ----------------------------------------------------------------------
# Assets and funds


def test_register_asset_and_deposit(finance_engine):
    """Test a new account can be funded and buy newly registered stock"""
    asset = finance_engine.register_asset(AssetRecord(ref="baler_new", owner=None, base_value=50000, brand="krone"))
    assert asset.owner is None
    with pytest.raises(AssetExistsError):
        finance_engine.register_asset(AssetRecord(ref="baler_new", owner="farm_2", base_value=1))

    assert finance_engine.deposit("farm_2", 30000) == pytest.approx(30000)

    deal = finance_engine.create_deal("farm_2", DealKind.FINANCE, 50000, 36, 0.2, asset_ref="baler_new", annual_rate=0.06)
    finance_engine.confirm_funding(deal.id)

    assert finance_engine.balance("farm_2") == pytest.approx(20000)
    assert finance_engine.get_asset("baler_new").owner == "farm_2"
