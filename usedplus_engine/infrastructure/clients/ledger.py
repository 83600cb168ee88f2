"""Ledger clients: in-process balances and an HTTP client with exponential backoff"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

import httpx

from usedplus_engine.config import settings
from usedplus_engine.domain.exceptions import InsufficientFundsError, LedgerRejectedError, LedgerUnavailableError
from usedplus_engine.infrastructure.observability.metrics import ledger_failure_counter, ledger_latency_histogram

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    """Account balance capability consumed by the engine"""

    def balance(self, account_id: str) -> float:
        ...

    def debit(self, account_id: str, amount: float, memo: str) -> None:
        ...

    def credit(self, account_id: str, amount: float, memo: str) -> None:
        ...


@dataclass
class LedgerEntry:
    account_id: str
    amount: float  # negative for debits
    memo: str


class InMemoryLedger:
    """Thread-safe in-process ledger"""

    def __init__(self, balances: Dict[str, float] | None = None):
        self._balances: Dict[str, float] = dict(balances or {})
        self._lock = threading.Lock()
        self.entries: List[LedgerEntry] = []
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise LedgerUnavailableError("Ledger is offline")

    def balance(self, account_id: str) -> float:
        self._check_available()
        with self._lock:
            return self._balances.get(account_id, 0.0)

    def debit(self, account_id: str, amount: float, memo: str) -> None:
        self._check_available()
        with self._lock:
            current = self._balances.get(account_id, 0.0)
            if amount > current:
                raise InsufficientFundsError(f"Account {account_id} has {current:.2f}, needs {amount:.2f}")
            self._balances[account_id] = current - amount
            self.entries.append(LedgerEntry(account_id, -amount, memo))

    def credit(self, account_id: str, amount: float, memo: str) -> None:
        self._check_available()
        with self._lock:
            self._balances[account_id] = self._balances.get(account_id, 0.0) + amount
            self.entries.append(LedgerEntry(account_id, amount, memo))

    def balances(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._balances)


class HttpLedgerClient:
    """Client for a remote ledger service"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url or settings.ledger_base_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.ledger_max_retries
        self.backoff_base = settings.ledger_backoff_base
        self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

    def _request(self, method: str, path: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """
        Call the ledger with retry logic.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base, ...
        - Retries on 5xx errors and network failures
        - 402 means the account cannot cover a debit and is never retried
        - Any other 4xx is a permanent rejection and is never retried
        - Tracks latency histogram and failure counter

        Raises:
            InsufficientFundsError: ledger rejected the debit
            LedgerRejectedError: ledger refused the call (unknown account, bad amount)
            LedgerUnavailableError: all retries exhausted
        """
        attempt = 0
        while True:
            try:
                with ledger_latency_histogram.time():
                    response = self._client.request(method, path, json=payload)
                if response.status_code == 402:
                    raise InsufficientFundsError(response.text or "Insufficient funds")
                if 400 <= response.status_code < 500:
                    ledger_failure_counter.inc()
                    raise LedgerRejectedError(f"Ledger call {method} {path} rejected: {response.status_code} {response.text}")
                response.raise_for_status()
                return response.json() if response.content else {}

            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                attempt += 1
                ledger_failure_counter.inc()

                if attempt >= self.max_retries:
                    raise LedgerUnavailableError(f"Ledger call {method} {path} failed: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning("Ledger call failed, retrying", extra={"path": path, "attempt": attempt, "backoff": backoff})
                time.sleep(backoff)

    def balance(self, account_id: str) -> float:
        data = self._request("GET", f"/accounts/{account_id}/balance")
        return float(data["balance"])

    def debit(self, account_id: str, amount: float, memo: str) -> None:
        self._request("POST", f"/accounts/{account_id}/debit", {"amount": amount, "memo": memo})

    def credit(self, account_id: str, amount: float, memo: str) -> None:
        self._request("POST", f"/accounts/{account_id}/credit", {"amount": amount, "memo": memo})

    def close(self) -> None:
        self._client.close()
