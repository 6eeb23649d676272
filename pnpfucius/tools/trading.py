"""Trading, pricing and redemption tools."""

from typing import Any

from pnpfucius.logging import get_logger
from pnpfucius.tools.market import MarketTool

log = get_logger(__name__)


def _address_schema(extra: dict[str, Any] | None = None, required: list[str] | None = None) -> dict[str, Any]:
    properties: dict[str, Any] = {
        "address": {
            "type": "string",
            "description": "Market address on Solana",
        },
    }
    properties.update(extra or {})
    return {
        "type": "object",
        "properties": properties,
        "required": ["address", *(required or [])],
    }


_SIDE = {
    "type": "string",
    "enum": ["yes", "no"],
    "description": "Outcome token side",
}


class TradingTool(MarketTool):
    category = "trading"


class BuyTokensTool(TradingTool):
    name = "buy_tokens"
    description = "Buy YES or NO outcome tokens in a market with USDC."
    parameters = _address_schema(
        {
            "side": _SIDE,
            "amount_usdc": {
                "type": "number",
                "description": "USDC amount to spend",
            },
        },
        required=["side", "amount_usdc"],
    )

    async def execute(self, address: str, side: str, amount_usdc: float, **kwargs: Any) -> dict[str, Any]:
        if amount_usdc <= 0:
            raise ValueError("amount_usdc must be positive")
        result = await self.backend.buy(address, side, amount_usdc)
        log.info("Bought tokens", market=address, side=side, amount_usdc=amount_usdc)
        return {
            "success": True,
            "market": address,
            "side": side,
            "amount_usdc": amount_usdc,
            **result,
        }


class SellTokensTool(TradingTool):
    name = "sell_tokens"
    description = "Sell YES or NO outcome tokens back to the market."
    parameters = _address_schema(
        {
            "side": _SIDE,
            "amount": {
                "type": "number",
                "description": "Number of tokens to sell",
            },
        },
        required=["side", "amount"],
    )

    async def execute(self, address: str, side: str, amount: float, **kwargs: Any) -> dict[str, Any]:
        if amount <= 0:
            raise ValueError("amount must be positive")
        result = await self.backend.sell(address, side, amount)
        log.info("Sold tokens", market=address, side=side, amount=amount)
        return {
            "success": True,
            "market": address,
            "side": side,
            "amount": amount,
            **result,
        }


class GetMarketPricesTool(TradingTool):
    name = "get_market_prices"
    description = "Get current YES/NO prices and implied probabilities for a market."
    parameters = _address_schema()

    async def execute(self, address: str, **kwargs: Any) -> dict[str, Any]:
        return {"market": address, **await self.backend.get_prices(address)}


class GetBalancesTool(TradingTool):
    name = "get_balances"
    description = "Get the wallet's YES/NO token balances in a market."
    parameters = _address_schema()

    async def execute(self, address: str, **kwargs: Any) -> dict[str, Any]:
        return {"market": address, **await self.backend.get_balances(address)}


class RedeemPositionTool(TradingTool):
    name = "redeem_position"
    description = "Redeem winning tokens of a resolved market for collateral."
    parameters = _address_schema()

    async def execute(self, address: str, **kwargs: Any) -> dict[str, Any]:
        result = await self.backend.redeem(address)
        return {"success": True, "market": address, **result}


class ClaimRefundTool(TradingTool):
    name = "claim_refund"
    description = "Claim a refund from a market that was cancelled or could not be resolved."
    parameters = _address_schema()

    async def execute(self, address: str, **kwargs: Any) -> dict[str, Any]:
        result = await self.backend.claim_refund(address)
        return {"success": True, "market": address, **result}
