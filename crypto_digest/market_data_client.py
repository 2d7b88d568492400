"""CoinMarketCap client for pulling the latest listings snapshot."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from .http_client import HttpClientError, body_snippet, request_json, status_of

logger = logging.getLogger(__name__)

LISTINGS_URL = "https://pro-api.coinmarketcap.com/v1/cryptocurrency/listings/latest"
REFERENCE_CURRENCY = "USD"


class MarketDataUpstreamError(RuntimeError):
    """Raised when the listings snapshot cannot be fetched or parsed."""


class ListingQuote(BaseModel):
    percent_change_24h: Optional[float] = None
    percent_change_7d: Optional[float] = None


class ListingAsset(BaseModel):
    name: str
    symbol: str
    quote: dict[str, ListingQuote] = Field(default_factory=dict)


class ListingsResponse(BaseModel):
    data: list[ListingAsset]


@dataclass(frozen=True)
class AssetQuote:
    name: str
    symbol: str
    percent_change_24h: float
    percent_change_7d: float


class CoinMarketCapClient:
    """Minimal HTTP client for the CoinMarketCap listings endpoint."""

    def __init__(self, api_key: str, *, timeout_seconds: float = 30.0, url: str = LISTINGS_URL) -> None:
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.url = url

    @classmethod
    def from_config(cls, config: Any) -> "CoinMarketCapClient":
        return cls(config.coinmarketcap_key, timeout_seconds=config.http_timeout_seconds)

    def get_latest_listings(self) -> list[AssetQuote]:
        try:
            payload = request_json(
                self.url,
                headers={"X-CMC_PRO_API_KEY": self.api_key},
                timeout=self.timeout_seconds,
            )
        except HttpClientError as exc:
            logger.error(
                "market_fetch_failed status=%s body=%s error=%s",
                status_of(exc),
                body_snippet(exc),
                exc,
            )
            raise MarketDataUpstreamError(f"Failed to fetch market listings: {exc}") from exc

        try:
            parsed = ListingsResponse.model_validate(payload)
        except ValidationError as exc:
            logger.error("market_parse_failed errors=%s", exc.error_count())
            raise MarketDataUpstreamError("Market listings response is malformed.") from exc

        return parse_quotes(parsed)


def parse_quotes(response: ListingsResponse) -> list[AssetQuote]:
    """Keep provider order; assets without a complete USD quote are skipped."""
    quotes: list[AssetQuote] = []
    for asset in response.data:
        usd = asset.quote.get(REFERENCE_CURRENCY)
        if usd is None or usd.percent_change_24h is None or usd.percent_change_7d is None:
            logger.warning("market_quote_missing symbol=%s currency=%s", asset.symbol, REFERENCE_CURRENCY)
            continue
        quotes.append(
            AssetQuote(
                name=asset.name,
                symbol=asset.symbol,
                percent_change_24h=usd.percent_change_24h,
                percent_change_7d=usd.percent_change_7d,
            )
        )
    return quotes
