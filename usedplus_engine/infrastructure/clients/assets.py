"""Asset registry: ownership of financeable items"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional, Protocol

import httpx

from usedplus_engine.config import settings
from usedplus_engine.domain.exceptions import AssetRegistryError
from usedplus_engine.infrastructure.observability.metrics import (
    asset_registry_failure_counter,
    asset_registry_latency_histogram,
)

logger = logging.getLogger(__name__)


@dataclass
class AssetRecord:
    """Registry view of one item"""

    ref: str
    owner: Optional[str]
    base_value: float
    brand: Optional[str] = None
    damage: float = 0.0
    wear: float = 0.0


class AssetRegistry(Protocol):
    def get(self, ref: str) -> AssetRecord:
        ...

    def register(self, asset: AssetRecord) -> None:
        ...

    def transfer(self, ref: str, owner: Optional[str]) -> None:
        ...

    def holdings(self, account_id: str) -> List[AssetRecord]:
        ...


class InMemoryAssetRegistry:
    """Thread-safe in-process registry; owner None means dealer or lender stock"""

    def __init__(self, assets: List[AssetRecord] | None = None):
        self._assets: Dict[str, AssetRecord] = {a.ref: a for a in assets or []}
        self._lock = threading.Lock()

    def get(self, ref: str) -> AssetRecord:
        with self._lock:
            asset = self._assets.get(ref)
            if asset is None:
                raise AssetRegistryError(f"Unknown asset {ref}")
            return replace(asset)

    def register(self, asset: AssetRecord) -> None:
        with self._lock:
            self._assets[asset.ref] = replace(asset)

    def transfer(self, ref: str, owner: Optional[str]) -> None:
        with self._lock:
            asset = self._assets.get(ref)
            if asset is None:
                raise AssetRegistryError(f"Unknown asset {ref}")
            asset.owner = owner

    def holdings(self, account_id: str) -> List[AssetRecord]:
        with self._lock:
            return [replace(a) for a in self._assets.values() if a.owner == account_id]

    def all(self) -> List[AssetRecord]:
        """Every registered item, for persistence"""
        with self._lock:
            return [replace(a) for a in self._assets.values()]


class HttpAssetRegistryClient:
    """Client for a remote asset registry service"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url or settings.asset_registry_base_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.asset_registry_max_retries
        self.backoff_base = settings.asset_registry_backoff_base
        self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

    def _request(self, method: str, path: str, payload: Dict[str, Any] | None = None) -> Any:
        """
        Call the registry, retrying 5xx responses and network failures with
        exponential backoff. A 4xx (unknown asset, rejected transfer) fails at once.

        Raises:
            AssetRegistryError: the call was rejected or retries ran out
        """
        attempt = 0
        while True:
            try:
                with asset_registry_latency_histogram.time():
                    response = self._client.request(method, path, json=payload)
                if 400 <= response.status_code < 500:
                    asset_registry_failure_counter.inc()
                    raise AssetRegistryError(f"Registry call {method} {path} rejected: {response.status_code} {response.text}")
                response.raise_for_status()
                return response.json() if response.content else {}

            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                attempt += 1
                asset_registry_failure_counter.inc()

                if attempt >= self.max_retries:
                    raise AssetRegistryError(f"Registry call {method} {path} failed: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning("Registry call failed, retrying", extra={"path": path, "attempt": attempt, "backoff": backoff})
                time.sleep(backoff)

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> AssetRecord:
        return AssetRecord(
            ref=data["ref"],
            owner=data.get("owner"),
            base_value=float(data["base_value"]),
            brand=data.get("brand"),
            damage=float(data.get("damage", 0.0)),
            wear=float(data.get("wear", 0.0)),
        )

    def get(self, ref: str) -> AssetRecord:
        return self._to_record(self._request("GET", f"/assets/{ref}"))

    def register(self, asset: AssetRecord) -> None:
        self._request("POST", "/assets", asdict(asset))

    def transfer(self, ref: str, owner: Optional[str]) -> None:
        self._request("PUT", f"/assets/{ref}/owner", {"owner": owner})

    def holdings(self, account_id: str) -> List[AssetRecord]:
        data = self._request("GET", f"/accounts/{account_id}/assets")
        return [self._to_record(item) for item in data.get("assets", [])]

    def close(self) -> None:
        self._client.close()
