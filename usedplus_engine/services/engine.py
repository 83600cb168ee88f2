"""Finance engine - per-account books of deals, searches and listings driven by the clock"""

import copy
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from usedplus_engine.config import Settings, settings as default_settings
from usedplus_engine.domain import credit, deals, sales, search
from usedplus_engine.domain.clock import SimulationClock
from usedplus_engine.domain.exceptions import (
    AlreadyListedError,
    AssetExistsError,
    AssetRegistryError,
    DealNotActiveError,
    DealNotFoundError,
    DomainException,
    IneligibleError,
    InsufficientCreditError,
    InsufficientFundsError,
    LedgerRejectedError,
    LedgerUnavailableError,
    ListingNotFoundError,
    SearchNotFoundError,
)
from usedplus_engine.domain.models import (
    AgentTier,
    CreditProfile,
    CreditReason,
    CreditReport,
    Deal,
    DealKind,
    DealStatus,
    DesiredSpec,
    EngineEvent,
    EventType,
    ListingStatus,
    PaymentMode,
    PriceTier,
    SaleListing,
    SearchRequest,
    SearchStatus,
    SearchTier,
)
from usedplus_engine.domain.rates import MINIMUM_CREDIT_SCORES, quote_annual_rate
from usedplus_engine.domain.search import ConditionModel, QualityTierConditionModel
from usedplus_engine.domain.trade_in import trade_in_value
from usedplus_engine.infrastructure.clients.assets import AssetRecord, AssetRegistry
from usedplus_engine.infrastructure.clients.ledger import Ledger
from usedplus_engine.infrastructure.observability.logging import log_deal_event, log_tick
from usedplus_engine.infrastructure.observability.metrics import (
    record_deal_created,
    record_offer,
    record_payment,
    record_search,
    repossession_counter,
    tick_duration_histogram,
)
from usedplus_engine.utils.random_utils import seeded_rng

logger = logging.getLogger(__name__)

OPEN_DEAL_STATUSES = (DealStatus.PENDING, DealStatus.ACTIVE)


@dataclass
class AccountSnapshot:
    """Detached copy of everything one account owns, used for persistence"""

    profile: CreditProfile
    deals: List[Deal] = field(default_factory=list)
    searches: List[SearchRequest] = field(default_factory=list)
    listings: List[SaleListing] = field(default_factory=list)


@dataclass
class AccountBook:
    profile: CreditProfile
    deals: Dict[str, Deal] = field(default_factory=dict)
    searches: Dict[str, SearchRequest] = field(default_factory=dict)
    listings: Dict[str, SaleListing] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


def _default_id_factory(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class FinanceEngine:
    """
    Single authority for all mutating operations.

    Each account has its own lock: operations on one account run strictly in
    sequence while different accounts proceed in parallel.
    """

    def __init__(
        self,
        ledger: Ledger,
        registry: AssetRegistry,
        settings: Settings | None = None,
        condition_model: ConditionModel | None = None,
        id_factory: Callable[[str], str] | None = None,
        clock: SimulationClock | None = None,
    ):
        self.ledger = ledger
        self.registry = registry
        self.settings = settings or default_settings
        self.condition_model = condition_model or QualityTierConditionModel()
        self.id_factory = id_factory or _default_id_factory
        self.clock = clock or SimulationClock(self.settings.hours_per_month)
        self._books: Dict[str, AccountBook] = {}
        self._owners: Dict[str, str] = {}  # entity id -> account id
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Account bookkeeping

    @property
    def now(self) -> int:
        return self.clock.now

    def account_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._books)

    def _book(self, account_id: str) -> AccountBook:
        with self._registry_lock:
            book = self._books.get(account_id)
            if book is None:
                profile = CreditProfile(account_id=account_id, score=self.settings.starting_credit_score)
                book = AccountBook(profile=profile)
                self._books[account_id] = book
            return book

    def _owner_book(self, entity_id: str, not_found: type) -> AccountBook:
        with self._registry_lock:
            account_id = self._owners.get(entity_id)
            book = self._books.get(account_id) if account_id else None
        if book is None:
            raise not_found(f"{entity_id} not found")
        return book

    def _index(self, entity_id: str, account_id: str) -> None:
        with self._registry_lock:
            self._owners[entity_id] = account_id

    def _encumbered_refs(self, book: AccountBook) -> set[str]:
        """Assets tied up by open deals: financed, leased, pledged or promised as trade-in"""
        refs: set[str] = set()
        for deal in book.deals.values():
            if deal.status not in OPEN_DEAL_STATUSES:
                continue
            refs.update(deal.secured_refs)
            if deal.trade_in_ref and deal.status == DealStatus.PENDING:
                refs.add(deal.trade_in_ref)
        return refs

    def _refresh_score(self, book: AccountBook) -> int:
        profile = book.profile
        assets_value = sum(a.base_value for a in self.registry.holdings(profile.account_id))
        debt_value = sum(d.current_balance for d in book.deals.values() if d.status == DealStatus.ACTIVE)
        new_score = credit.score(profile, assets_value, debt_value, self.settings.starting_credit_score)
        if new_score != profile.score:
            profile.score = new_score
            profile.touch()
        return new_score

    def _compensate(self, undo: List[Callable[[], None]], subject_id: str) -> None:
        """Reverse collaborator steps already taken, newest first"""
        for step in reversed(undo):
            try:
                step()
            except DomainException as e:
                logger.error(f"Could not reverse collaborator step: {e}", extra={"subject_id": subject_id})

    def _record_credit(self, book: AccountBook, reason: CreditReason, subject_id: str | None, timestamp: int | None = None) -> None:
        credit.record_event(book.profile, self.now if timestamp is None else timestamp, reason, subject_id)

    # ------------------------------------------------------------------
    # Deals

    def create_deal(
        self,
        account_id: str,
        kind: DealKind,
        principal: float,
        term_months: int,
        down_payment_fraction: float = 0.0,
        asset_ref: str | None = None,
        collateral_refs: Optional[List[str]] = None,
        annual_rate: float | None = None,
        trade_in_ref: str | None = None,
    ) -> Deal:
        """
        Approve a deal and return it in the pending state.

        Flow:
        1. Check the credit score against the kind's minimum
        2. Verify the financed asset, pledged collateral and trade-in
        3. Quote the rate unless one is given (decimal, 0.06 == 6%)
        4. Originate the deal with its quoted payment
        """
        book = self._book(account_id)
        collateral_refs = list(collateral_refs or [])

        with book.lock:
            score = self._refresh_score(book)
            if score < MINIMUM_CREDIT_SCORES[kind]:
                raise InsufficientCreditError(
                    f"{kind.value} requires a score of {MINIMUM_CREDIT_SCORES[kind]}, account has {score}"
                )

            encumbered = self._encumbered_refs(book)
            listed = {l.asset_ref for l in book.listings.values() if l.is_open}
            deal_id = self.id_factory("deal")

            target_brand = None
            if asset_ref is not None:
                if kind == DealKind.LOAN:
                    raise IneligibleError("Loans pledge collateral instead of financing an asset")
                asset = self.registry.get(asset_ref)
                if asset.owner is not None:
                    raise IneligibleError(f"Asset {asset_ref} is not available for purchase")
                target_brand = asset.brand

            if collateral_refs:
                if kind != DealKind.LOAN:
                    raise IneligibleError("Only loans take collateral")
                collateral_value = 0.0
                for ref in collateral_refs:
                    pledged = self.registry.get(ref)
                    if pledged.owner != account_id or ref in encumbered or ref in listed:
                        raise IneligibleError(f"Asset {ref} cannot be pledged")
                    collateral_value += pledged.base_value
                limit = collateral_value * credit.loan_size_multiplier(credit.get_rating(score))
                if principal > limit:
                    raise IneligibleError(f"Loan of {principal:.2f} exceeds collateral limit {limit:.2f}")

            value_traded = 0.0
            if trade_in_ref is not None:
                if kind == DealKind.LOAN:
                    raise IneligibleError("Trade-ins only apply to purchases and leases")
                traded = self.registry.get(trade_in_ref)
                if traded.owner != account_id or trade_in_ref in encumbered or trade_in_ref in listed:
                    raise IneligibleError(f"Asset {trade_in_ref} cannot be traded in")
                same_brand = traded.brand is not None and traded.brand == target_brand
                value_traded = trade_in_value(
                    traded.base_value, same_brand, traded.damage, traded.wear, seeded_rng(deal_id, "trade_in")
                )

            if annual_rate is None:
                annual_rate = quote_annual_rate(kind, score, term_months, down_payment_fraction) / 100

            deal = deals.originate(
                deal_id=deal_id,
                account_id=account_id,
                kind=kind,
                principal=principal,
                term_months=term_months,
                down_payment_fraction=down_payment_fraction,
                annual_rate=annual_rate,
                created_at=self.now,
                asset_ref=asset_ref,
                collateral_refs=collateral_refs,
                trade_in_ref=trade_in_ref,
                trade_in_value=value_traded,
            )
            book.deals[deal.id] = deal
            self._index(deal.id, account_id)

        record_deal_created(kind.value)
        log_deal_event(deal.id, account_id, "created", kind=kind.value, amount_financed=deal.amount_financed)
        return deal

    def confirm_funding(self, deal_id: str) -> Deal:
        """
        Pending -> Active: collect the down payment and hand over the asset or cash.

        Ownership is checked again here because another deal may have bought
        the dealer asset since approval. If any collaborator step fails the
        steps already taken are reversed and the deal stays pending.
        """
        book = self._owner_book(deal_id, DealNotFoundError)
        with book.lock:
            deal = book.deals[deal_id]
            if deal.status != DealStatus.PENDING:
                raise DealNotActiveError(f"Deal {deal.id} is {deal.status.value}, expected pending")
            if deal.asset_ref and self.registry.get(deal.asset_ref).owner is not None:
                raise IneligibleError(f"Asset {deal.asset_ref} is no longer available for purchase")
            if deal.trade_in_ref and self.registry.get(deal.trade_in_ref).owner != deal.account_id:
                raise IneligibleError(f"Asset {deal.trade_in_ref} is no longer owned by {deal.account_id}")

            undo: List[Callable[[], None]] = []
            try:
                if deal.down_payment > 0:
                    self.ledger.debit(deal.account_id, deal.down_payment, f"down payment {deal.id}")
                    undo.append(
                        lambda: self.ledger.credit(deal.account_id, deal.down_payment, f"reverse down payment {deal.id}")
                    )
                if deal.kind == DealKind.LOAN:
                    self.ledger.credit(deal.account_id, deal.amount_financed, f"loan proceeds {deal.id}")
                    undo.append(
                        lambda: self.ledger.debit(deal.account_id, deal.amount_financed, f"reverse loan proceeds {deal.id}")
                    )
                if deal.asset_ref:
                    self.registry.transfer(deal.asset_ref, deal.account_id)
                    undo.append(lambda: self.registry.transfer(deal.asset_ref, None))
                if deal.trade_in_ref:
                    self.registry.transfer(deal.trade_in_ref, None)
            except DomainException:
                self._compensate(undo, deal.id)
                raise

            deals.activate(deal, self.clock.month_index(self.now))
            self._record_credit(book, CreditReason.NEW_DEBT, deal.id)
            self._refresh_score(book)

        log_deal_event(deal.id, deal.account_id, "funded", balance=deal.current_balance)
        return deal

    def set_payment_mode(self, deal_id: str, mode: PaymentMode, custom_amount: float | None = None) -> Deal:
        book = self._owner_book(deal_id, DealNotFoundError)
        with book.lock:
            deal = book.deals[deal_id]
            deals.set_payment_mode(deal, mode, custom_amount)
        return deal

    def get_deal(self, deal_id: str) -> Deal:
        book = self._owner_book(deal_id, DealNotFoundError)
        with book.lock:
            return copy.deepcopy(book.deals[deal_id])

    def project_payment(
        self, deal_id: str, mode: PaymentMode | None = None, custom_amount: float | None = None
    ) -> deals.PaymentProjection:
        book = self._owner_book(deal_id, DealNotFoundError)
        with book.lock:
            deal = book.deals[deal_id]
            return deals.project(deal, mode, custom_amount, self.settings.prepayment_penalty_enabled)

    def pay_early(self, deal_id: str) -> Deal:
        """Pay the balance plus any prepayment penalty in one go; leased assets are bought out"""
        book = self._owner_book(deal_id, DealNotFoundError)
        with book.lock:
            deal = book.deals[deal_id]
            deals.ensure_active(deal)
            amount = deals.payoff_amount(deal, self.settings.prepayment_penalty_enabled)
            self.ledger.debit(deal.account_id, amount, f"early payoff {deal.id}")
            deals.close(deal)
            self._record_credit(book, CreditReason.EARLY_PAYOFF, deal.id)
            self._refresh_score(book)

        log_deal_event(deal.id, deal.account_id, "paid_early", amount=amount)
        return deal

    def submit_payment(self, deal_id: str, amount: float) -> Deal:
        """Extra payment applied straight to principal"""
        book = self._owner_book(deal_id, DealNotFoundError)
        with book.lock:
            deal = book.deals[deal_id]
            deals.ensure_active(deal)
            deals.check_principal_payment(deal, amount)
            applied = min(amount, deal.current_balance)
            if applied > 0:
                self.ledger.debit(deal.account_id, applied, f"extra payment {deal.id}")
            deals.apply_principal_payment(deal, amount)
            if deal.status == DealStatus.PAID_OFF:
                self._record_credit(book, CreditReason.PAID_OFF, deal.id)
            self._refresh_score(book)
        return deal

    def _service_deal(self, book: AccountBook, deal: Deal, month: int, timestamp: int) -> List[EngineEvent]:
        """
        Collect one month's payment.

        A ledger outage leaves the month unserviced so the next tick retries it.
        Insufficient funds, a zero payment or one under the floor is a miss.
        """
        account_id = deal.account_id
        events: List[EngineEvent] = []

        def emit(event_type: EventType, **data) -> None:
            events.append(EngineEvent(event_type, account_id, deal.id, timestamp, data))

        due = deals.due_payment(deal)
        floor = deals.payment_floor(deal, self.settings.minimum_payment_floor)
        reason = "below_floor"

        if due > 0 and due >= floor:
            try:
                self.ledger.debit(account_id, due, f"deal {deal.id} month {month}")
            except InsufficientFundsError:
                reason = "insufficient_funds"
            except LedgerRejectedError as e:
                logger.warning(f"Ledger rejected payment: {e}", extra={"deal_id": deal.id, "month": month})
                reason = "ledger_rejected"
            except LedgerUnavailableError as e:
                logger.warning(f"Ledger unavailable, deferring payment: {e}", extra={"deal_id": deal.id, "month": month})
                record_payment("deferred")
                emit(EventType.PAYMENT_MISSED, month=month, amount_due=due, reason="ledger_unavailable")
                return events
            else:
                deal.last_serviced_month = month
                outcome = deals.apply_payment(deal, due)
                partial = outcome == deals.PaymentOutcome.PARTIAL
                self._record_credit(
                    book, CreditReason.PARTIAL_PAYMENT if partial else CreditReason.ON_TIME_PAYMENT, deal.id, timestamp
                )
                record_payment(outcome.value)
                emit(EventType.PAYMENT_APPLIED, month=month, amount=due, balance=deal.current_balance, partial=partial)

                if deal.status == DealStatus.PAID_OFF:
                    self._record_credit(book, CreditReason.PAID_OFF, deal.id, timestamp)
                    emit(EventType.DEAL_PAID_OFF, month=month)
                    log_deal_event(deal.id, account_id, "paid_off", month=month)
                elif deals.lease_matured(deal):
                    events.extend(self._return_leased_asset(deal, month, timestamp))
                return events

        deal.last_serviced_month = month
        defaulted = deals.register_miss(deal, self.settings.missed_payments_to_default)
        self._record_credit(book, CreditReason.MISSED_PAYMENT, deal.id, timestamp)
        record_payment("missed")
        emit(
            EventType.PAYMENT_MISSED,
            month=month,
            amount_due=due,
            reason=reason,
            streak=deal.missed_payment_streak,
        )

        if defaulted:
            emit(EventType.DEFAULTED, month=month, balance=deal.current_balance)
            refs = deal.secured_refs
            if refs:
                seized, pending = self._seize(deal, refs)
                deals.repossess(deal, seized, pending)
                self._record_credit(book, CreditReason.REPOSSESSION, deal.id, timestamp)
                repossession_counter.inc()
                emit(EventType.REPOSSESSED, month=month, seized_refs=seized, pending_refs=pending)
                log_deal_event(deal.id, account_id, "repossessed", seized_refs=seized, pending_refs=pending)
            else:
                self._record_credit(book, CreditReason.DEFAULT, deal.id, timestamp)
                log_deal_event(deal.id, account_id, "defaulted", balance=deal.current_balance)

        return events

    def _seize(self, deal: Deal, refs: List[str]) -> tuple[List[str], List[str]]:
        """Move refs to lender stock; returns (seized, still pending)"""
        seized: List[str] = []
        pending: List[str] = []
        for ref in refs:
            try:
                self.registry.transfer(ref, None)
            except AssetRegistryError as e:
                logger.warning(f"Could not seize asset, retrying next tick: {e}", extra={"deal_id": deal.id, "asset_ref": ref})
                pending.append(ref)
            else:
                seized.append(ref)
        return seized, pending

    def _return_leased_asset(self, deal: Deal, month: int, timestamp: int) -> List[EngineEvent]:
        """Close a matured lease once its asset is back with the lessor"""
        if deal.asset_ref:
            try:
                self.registry.transfer(deal.asset_ref, None)
            except AssetRegistryError as e:
                logger.warning(f"Could not return leased asset, retrying next tick: {e}", extra={"deal_id": deal.id})
                return []
        deals.close(deal)
        log_deal_event(deal.id, deal.account_id, "lease_matured", month=month)
        return [
            EngineEvent(EventType.LEASE_MATURED, deal.account_id, deal.id, timestamp, {"month": month, "asset_ref": deal.asset_ref})
        ]

    # ------------------------------------------------------------------
    # Clock

    def advance_tick(self, timestamp: int) -> List[EngineEvent]:
        """
        Process one clock tick for every account.

        An account ignores timestamps at or before the last one it processed,
        so replays return no events and change nothing.
        """
        start_time = time.time()
        if timestamp > self.clock.now:
            self.clock.now = timestamp

        events: List[EngineEvent] = []
        processed = 0
        for account_id in self.account_ids():
            book = self._book(account_id)
            with book.lock:
                last_tick = book.profile.last_tick
                if last_tick is not None and timestamp <= last_tick:
                    continue
                events.extend(self._process_account(book, timestamp))
                book.profile.last_tick = timestamp
                book.profile.touch()
                processed += 1

        duration = time.time() - start_time
        tick_duration_histogram.observe(duration)
        log_tick(timestamp, processed, len(events), duration * 1000)
        return events

    def _process_account(self, book: AccountBook, timestamp: int) -> List[EngineEvent]:
        month = self.clock.month_index(timestamp)
        account_id = book.profile.account_id
        events: List[EngineEvent] = []

        # Offer expiry runs on hours, everything else on month boundaries
        for listing in book.listings.values():
            if listing.status == ListingStatus.OFFER_PENDING and sales.offer_expired(listing, timestamp):
                amount = listing.pending_offer.amount
                sales.expire_offer(listing, month, self.settings.max_sale_rounds)
                record_offer("expired")
                events.append(EngineEvent(EventType.OFFER_EXPIRED, account_id, listing.id, timestamp, {"amount": amount}))
                if listing.status == ListingStatus.EXPIRED:
                    events.append(EngineEvent(EventType.LISTING_EXPIRED, account_id, listing.id, timestamp))

        for deal in list(book.deals.values()):
            # Registry steps that failed on an earlier tick
            if deal.pending_seizure_refs:
                seized, pending = self._seize(deal, deal.pending_seizure_refs)
                if seized:
                    deals.record_seizure(deal, seized, pending)
                    events.append(
                        EngineEvent(
                            EventType.REPOSSESSED, account_id, deal.id, timestamp, {"seized_refs": seized, "pending_refs": pending}
                        )
                    )
            if deals.lease_matured(deal):
                events.extend(self._return_leased_asset(deal, month, timestamp))

            while deal.status == DealStatus.ACTIVE and not deals.lease_matured(deal) and deal.last_serviced_month < month:
                serviced = deal.last_serviced_month
                events.extend(self._service_deal(book, deal, serviced + 1, timestamp))
                if deal.last_serviced_month == serviced:
                    break  # ledger outage, retry on the next tick

        for request in book.searches.values():
            while request.status == SearchStatus.SEARCHING and request.last_processed_month < month:
                resolved = search.advance_month(request, request.last_processed_month + 1, self.condition_model)
                if resolved is not None:
                    record_search(resolved)
                    data = {"succeeded": resolved}
                    if request.found_item is not None:
                        data["price"] = request.found_item.price
                    events.append(EngineEvent(EventType.SEARCH_RESOLVED, account_id, request.id, timestamp, data))

        for listing in book.listings.values():
            while listing.status == ListingStatus.LISTED and listing.last_processed_month < month:
                result = sales.advance_month(
                    listing,
                    listing.last_processed_month + 1,
                    timestamp,
                    self.settings.offer_expiry_hours,
                    self.settings.max_sale_rounds,
                )
                if result == EventType.OFFER_GENERATED:
                    record_offer("generated")
                    events.append(
                        EngineEvent(result, account_id, listing.id, timestamp, {"amount": listing.pending_offer.amount})
                    )
                elif result is not None:
                    events.append(EngineEvent(result, account_id, listing.id, timestamp))

        if events:
            self._refresh_score(book)
        return events

    # ------------------------------------------------------------------
    # Marketplace: searches

    def start_search(self, account_id: str, tier: SearchTier, desired_spec: DesiredSpec, base_price: float) -> SearchRequest:
        """Charge the retainer and start a search; the fee is never refunded"""
        book = self._book(account_id)
        with book.lock:
            request_id = self.id_factory("search")
            rating = credit.get_rating(self._refresh_score(book))
            fee = search.search_fee(tier, base_price, rating)
            request = search.open_search(
                request_id,
                account_id,
                tier,
                desired_spec,
                base_price,
                fee,
                self.now,
                self.clock.month_index(self.now),
            )
            self.ledger.debit(account_id, fee, f"search retainer {request_id}")
            book.searches[request.id] = request
            self._index(request.id, account_id)

        logger.info("Search started", extra={"search_id": request.id, "account_id": account_id, "ttl": request.ttl})
        return request

    def get_search(self, search_id: str) -> SearchRequest:
        book = self._owner_book(search_id, SearchNotFoundError)
        with book.lock:
            return copy.deepcopy(book.searches[search_id])

    def cancel_search(self, search_id: str) -> SearchRequest:
        book = self._owner_book(search_id, SearchNotFoundError)
        with book.lock:
            request = book.searches[search_id]
            search.cancel(request)
        return request

    def purchase_found_item(self, search_id: str) -> AssetRecord:
        """Buy the item a successful search located and register it to the account"""
        book = self._owner_book(search_id, SearchNotFoundError)
        with book.lock:
            request = book.searches[search_id]
            asset_ref = self.id_factory("asset")
            search.mark_purchased(request, asset_ref)
            item = request.found_item
            try:
                self.ledger.debit(request.account_id, item.price, f"purchase from search {request.id}")
            except DomainException:
                request.purchased_asset_ref = None
                raise
            asset = AssetRecord(
                ref=asset_ref,
                owner=request.account_id,
                base_value=request.base_price,
                brand=item.make,
                damage=item.condition.damage,
                wear=item.condition.wear,
            )
            self.registry.register(asset)
            self._refresh_score(book)
        return asset

    # ------------------------------------------------------------------
    # Marketplace: sales

    def create_sale_listing(
        self, account_id: str, asset_ref: str, agent_tier: AgentTier, price_tier: PriceTier
    ) -> SaleListing:
        """
        List an owned, unencumbered asset through an agent.

        Raises:
            IneligibleError: not owned, financed/leased/pledged, condition too poor, or listing cap hit
            AlreadyListedError: the asset already has an open listing
        """
        book = self._book(account_id)
        with book.lock:
            asset = self.registry.get(asset_ref)
            if asset.owner != account_id:
                raise IneligibleError(f"Asset {asset_ref} is not owned by {account_id}")
            if asset_ref in self._encumbered_refs(book):
                raise IneligibleError(f"Asset {asset_ref} is financed, leased or pledged")

            open_listings = [l for l in book.listings.values() if l.is_open]
            if any(l.asset_ref == asset_ref for l in open_listings):
                raise AlreadyListedError(f"Asset {asset_ref} is already listed")
            if len(open_listings) >= self.settings.max_listings_per_account:
                raise IneligibleError(f"At most {self.settings.max_listings_per_account} open listings per account")

            sales.check_eligibility(agent_tier, price_tier, asset.damage, asset.wear)
            fee = sales.agent_fee(agent_tier, price_tier, asset.base_value)
            listing_id = self.id_factory("listing")
            if fee > 0:
                self.ledger.debit(account_id, fee, f"agent fee {listing_id}")

            listing = sales.open_listing(
                listing_id,
                account_id,
                asset_ref,
                agent_tier,
                price_tier,
                asset.base_value,
                fee,
                self.now,
                self.clock.month_index(self.now),
            )
            book.listings[listing.id] = listing
            self._index(listing.id, account_id)

        logger.info("Sale listing created", extra={"listing_id": listing.id, "account_id": account_id})
        return listing

    def get_listing(self, listing_id: str) -> SaleListing:
        book = self._owner_book(listing_id, ListingNotFoundError)
        with book.lock:
            return copy.deepcopy(book.listings[listing_id])

    def respond_to_offer(self, listing_id: str, accept: bool) -> SaleListing:
        """Accept (asset leaves, funds arrive) or decline (listing goes back on the market)"""
        book = self._owner_book(listing_id, ListingNotFoundError)
        with book.lock:
            listing = book.listings[listing_id]
            offer = sales.pending_offer(listing, self.now)
            if accept:
                self.registry.transfer(listing.asset_ref, None)
                try:
                    self.ledger.credit(listing.account_id, offer.amount, f"sale {listing.id}")
                except DomainException:
                    self._compensate([lambda: self.registry.transfer(listing.asset_ref, listing.account_id)], listing.id)
                    raise
                sales.accept_offer(listing)
                self._refresh_score(book)
                record_offer("accepted")
            else:
                sales.decline_offer(listing, self.clock.month_index(self.now), self.settings.max_sale_rounds)
                record_offer("declined")
        return listing

    def cancel_listing(self, listing_id: str) -> SaleListing:
        book = self._owner_book(listing_id, ListingNotFoundError)
        with book.lock:
            listing = book.listings[listing_id]
            sales.cancel(listing)
        return listing

    def quote_trade_in(self, asset_ref: str, target_brand: str | None = None, request_id: str | None = None) -> float:
        """Trade-in offer for an asset; seeded by request id when one is given"""
        asset = self.registry.get(asset_ref)
        same_brand = asset.brand is not None and asset.brand == target_brand
        rng = seeded_rng(request_id, "trade_in") if request_id else None
        return trade_in_value(asset.base_value, same_brand, asset.damage, asset.wear, rng)

    # ------------------------------------------------------------------
    # Assets and funds

    def register_asset(self, asset: AssetRecord) -> AssetRecord:
        """Add an item to the registry; owner None puts it in dealer stock"""
        try:
            self.registry.get(asset.ref)
        except AssetRegistryError:
            pass
        else:
            raise AssetExistsError(f"Asset {asset.ref} is already registered")

        self.registry.register(asset)
        if asset.owner is not None:
            book = self._book(asset.owner)
            with book.lock:
                self._refresh_score(book)
        logger.info("Asset registered", extra={"asset_ref": asset.ref, "account_id": asset.owner})
        return self.registry.get(asset.ref)

    def get_asset(self, asset_ref: str) -> AssetRecord:
        return self.registry.get(asset_ref)

    def deposit(self, account_id: str, amount: float) -> float:
        """Fund an account from outside the simulation; returns the new balance"""
        book = self._book(account_id)
        with book.lock:
            self.ledger.credit(account_id, amount, "deposit")
            return self.ledger.balance(account_id)

    def balance(self, account_id: str) -> float:
        return self.ledger.balance(account_id)

    # ------------------------------------------------------------------
    # Credit

    def get_credit_report(self, account_id: str) -> CreditReport:
        book = self._book(account_id)
        with book.lock:
            score = self._refresh_score(book)
            rating = credit.get_rating(score)
            window_hours = self.settings.trend_window_months * self.settings.hours_per_month
            tail = self.settings.credit_report_tail
            return CreditReport(
                account_id=account_id,
                score=score,
                rating=rating,
                trend=credit.trend(book.profile, window_hours=window_hours),
                interest_adjustment=credit.interest_adjustment(rating),
                history_tail=copy.deepcopy(book.profile.history[-tail:]) if tail > 0 else [],
            )

    # ------------------------------------------------------------------
    # Persistence

    def export_account(self, account_id: str) -> AccountSnapshot:
        book = self._book(account_id)
        with book.lock:
            return AccountSnapshot(
                profile=copy.deepcopy(book.profile),
                deals=copy.deepcopy(list(book.deals.values())),
                searches=copy.deepcopy(list(book.searches.values())),
                listings=copy.deepcopy(list(book.listings.values())),
            )

    def export_all(self) -> List[AccountSnapshot]:
        return [self.export_account(account_id) for account_id in self.account_ids()]

    def restore(self, snapshots: Iterable[AccountSnapshot]) -> None:
        """Load persisted state; a record older than the one already held is ignored"""
        latest_tick: int | None = None
        for snapshot in snapshots:
            account_id = snapshot.profile.account_id
            book = self._book(account_id)
            with book.lock:
                if snapshot.profile.version >= book.profile.version:
                    book.profile = copy.deepcopy(snapshot.profile)
                for collection, records in (
                    (book.deals, snapshot.deals),
                    (book.searches, snapshot.searches),
                    (book.listings, snapshot.listings),
                ):
                    for record in records:
                        held = collection.get(record.id)
                        if held is not None and held.version > record.version:
                            continue
                        collection[record.id] = copy.deepcopy(record)
                        self._index(record.id, account_id)

                if book.profile.last_tick is not None:
                    latest_tick = max(latest_tick or 0, book.profile.last_tick)

        if latest_tick is not None and latest_tick > self.clock.now:
            self.clock.now = latest_tick
