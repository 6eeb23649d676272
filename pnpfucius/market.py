"""Market backend: HTTP gateway in front of the on-chain market protocol."""

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import httpx

from pnpfucius.config import MarketConfig
from pnpfucius.exceptions import MarketBackendError
from pnpfucius.logging import get_logger

log = get_logger(__name__)


def _market_path(address: str, action: str = "") -> str:
    # Addresses come from model input; keep them inside one path segment.
    return f"/markets/{quote(address, safe='')}{action}"


class MarketBackend(ABC):
    """Operations the market and trading tools need from the protocol."""

    network: str = "devnet"

    @abstractmethod
    async def create_market(
        self,
        question: str,
        duration_days: int,
        liquidity_usdc: float,
        market_type: str = "amm",
    ) -> dict[str, Any]:
        """Create a market; returns at least ``market`` and ``signature``."""
        pass

    @abstractmethod
    async def create_market_from_source(
        self,
        question: str,
        source_url: str,
        source_type: str,
        duration_days: int,
        liquidity_usdc: float,
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def list_markets(
        self,
        status: str = "all",
        category: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def get_market_info(self, address: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_prices(self, address: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_balances(self, address: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def buy(self, address: str, side: str, amount_usdc: float) -> dict[str, Any]:
        pass

    @abstractmethod
    async def sell(self, address: str, side: str, amount: float) -> dict[str, Any]:
        pass

    @abstractmethod
    async def redeem(self, address: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def claim_refund(self, address: str) -> dict[str, Any]:
        pass

    async def close(self) -> None:
        return None


class HttpMarketBackend(MarketBackend):
    """JSON-over-HTTP client for the market gateway.

    The gateway owns wallet keys and transaction signing; this client
    only forwards intents and returns the gateway's JSON.
    """

    def __init__(
        self,
        config: MarketConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.network = config.network
        self.base_url = config.gateway_url.rstrip("/")

        headers = {"Content-Type": "application/json"}
        if config.gateway_api_key:
            headers["Authorization"] = f"Bearer {config.gateway_api_key}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.timeout,
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            log.debug("Market gateway request", method=method, path=path)
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise MarketBackendError(f"Market gateway unreachable: {e}")

        if not response.is_success:
            detail = response.text
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("error"):
                    detail = str(body["error"])
            except ValueError:
                pass
            raise MarketBackendError(
                f"Market gateway error {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MarketBackendError(f"Market gateway returned invalid JSON: {e}")

    def _base_payload(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "collateral": self.config.collateral_token,
            "rpc_url": self.config.resolved_rpc_url(),
        }

    async def create_market(
        self,
        question: str,
        duration_days: int,
        liquidity_usdc: float,
        market_type: str = "amm",
    ) -> dict[str, Any]:
        payload = {
            **self._base_payload(),
            "question": question,
            "duration_days": duration_days,
            "liquidity_usdc": liquidity_usdc,
            "type": market_type,
        }
        return await self._request("POST", "/markets", json=payload)

    async def create_market_from_source(
        self,
        question: str,
        source_url: str,
        source_type: str,
        duration_days: int,
        liquidity_usdc: float,
    ) -> dict[str, Any]:
        payload = {
            **self._base_payload(),
            "question": question,
            "source_url": source_url,
            "source_type": source_type,
            "duration_days": duration_days,
            "liquidity_usdc": liquidity_usdc,
        }
        return await self._request("POST", "/markets/source", json=payload)

    async def list_markets(
        self,
        status: str = "all",
        category: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"status": status, "limit": limit, "network": self.network}
        if category:
            params["category"] = category
        data = await self._request("GET", "/markets", params=params)
        if isinstance(data, dict):
            data = data.get("markets", [])
        if not isinstance(data, list):
            raise MarketBackendError("Market gateway returned unexpected market list")
        return [item for item in data if isinstance(item, dict)]

    async def get_market_info(self, address: str) -> dict[str, Any]:
        return await self._request("GET", _market_path(address))

    async def get_prices(self, address: str) -> dict[str, Any]:
        return await self._request("GET", _market_path(address, "/prices"))

    async def get_balances(self, address: str) -> dict[str, Any]:
        return await self._request("GET", _market_path(address, "/balances"))

    async def buy(self, address: str, side: str, amount_usdc: float) -> dict[str, Any]:
        return await self._request(
            "POST",
            _market_path(address, "/buy"),
            json={"side": side, "amount_usdc": amount_usdc},
        )

    async def sell(self, address: str, side: str, amount: float) -> dict[str, Any]:
        return await self._request(
            "POST",
            _market_path(address, "/sell"),
            json={"side": side, "amount": amount},
        )

    async def redeem(self, address: str) -> dict[str, Any]:
        return await self._request("POST", _market_path(address, "/redeem"))

    async def claim_refund(self, address: str) -> dict[str, Any]:
        return await self._request("POST", _market_path(address, "/refund"))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
