"""Prometheus metrics for deal servicing, marketplace outcomes and ledger performance"""

from prometheus_client import Counter, Histogram

# Deal metrics
deal_created_counter = Counter(
    "usedplus_deals_created_total",
    "Deals originated",
    ["kind"],  # finance | lease | loan
)

payment_counter = Counter(
    "usedplus_payments_total",
    "Monthly payment outcomes",
    ["outcome"],  # applied | partial | missed | deferred
)

repossession_counter = Counter(
    "usedplus_repossessions_total",
    "Deals that defaulted with collateral seized",
)

# Marketplace metrics
search_resolved_counter = Counter(
    "usedplus_searches_resolved_total",
    "Agent searches resolved",
    ["outcome"],  # succeeded | failed
)

sale_offer_counter = Counter(
    "usedplus_sale_offers_total",
    "Sale offer lifecycle",
    ["outcome"],  # generated | accepted | declined | expired
)

tick_duration_histogram = Histogram(
    "usedplus_tick_duration_seconds",
    "Time spent processing one clock tick",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
)

# Ledger metrics
ledger_latency_histogram = Histogram(
    "ledger_latency_seconds",
    "Ledger service response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ledger_failure_counter = Counter(
    "ledger_failures_total",
    "Failed ledger calls",
)

# Asset registry metrics
asset_registry_latency_histogram = Histogram(
    "asset_registry_latency_seconds",
    "Asset registry response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

asset_registry_failure_counter = Counter(
    "asset_registry_failures_total",
    "Failed asset registry calls",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_deal_created(kind: str) -> None:
    deal_created_counter.labels(kind=kind).inc()


def record_payment(outcome: str) -> None:
    payment_counter.labels(outcome=outcome).inc()


def record_search(succeeded: bool) -> None:
    search_resolved_counter.labels(outcome="succeeded" if succeeded else "failed").inc()


def record_offer(outcome: str) -> None:
    sale_offer_counter.labels(outcome=outcome).inc()
