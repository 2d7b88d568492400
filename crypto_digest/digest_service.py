"""Daily crypto digest: ranking, enrichment, summarization, and read-through caching."""
from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urlsplit

from .digest_store import DailyDigestStore, DigestEntry
from .market_data_client import AssetQuote, CoinMarketCapClient
from .news_client import NewsApiClient, NewsLookupError
from .summarizer import DEFAULT_MODEL, ChatSummarizer, SummarizerError

logger = logging.getLogger(__name__)

TOP_N = 3
NO_NEWS = "No news found"
NO_SUMMARY = "No summary available."

REQUIRED_ENV = {
    "COINMARKETCAP_API_KEY": "coinmarketcap_key",
    "GROQ_API_KEY": "llm_api_key",
    "GROQ_API_BASE_URL": "llm_base_url",
    "NEWS_API_KEY": "news_api_key",
}


class DigestConfigError(RuntimeError):
    """Raised when required credentials or settings are missing or invalid."""


class DigestCancelledError(RuntimeError):
    """Raised when a build is interrupted while waiting between assets."""


@dataclass(frozen=True)
class DigestConfig:
    coinmarketcap_key: str
    news_api_key: str
    llm_api_key: str
    llm_base_url: str
    llm_model: str = DEFAULT_MODEL
    llm_max_tokens: int = 320
    news_limit: int = 12
    throttle_seconds: float = 10.0
    http_timeout_seconds: float = 30.0
    data_dir: str = "data"
    memory_cache: bool = True


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def today_key() -> str:
    return _utcnow().date().isoformat()


def _env_is_true(name: str, default: str = "1") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default: str, cast: Callable[[str], float]) -> float:
    raw = os.getenv(name, default).strip() or default
    try:
        return cast(raw)
    except ValueError as exc:
        raise DigestConfigError(f"{name} must be a number, got {raw!r}.") from exc


def load_config() -> DigestConfig:
    values = {field: os.getenv(name, "").strip() for name, field in REQUIRED_ENV.items()}
    missing = [name for name, field in REQUIRED_ENV.items() if not values[field]]
    if missing:
        raise DigestConfigError(f"Missing required environment variables: {', '.join(missing)}.")
    base_url = urlsplit(values["llm_base_url"])
    if base_url.scheme not in {"http", "https"} or not base_url.netloc:
        raise DigestConfigError(
            f"GROQ_API_BASE_URL must be an http(s) URL, got {values['llm_base_url']!r}."
        )

    max_tokens = int(_env_number("CRYPTO_DIGEST_MAX_TOKENS", "320", int))
    news_limit = int(_env_number("CRYPTO_DIGEST_NEWS_LIMIT", "12", int))
    throttle = _env_number("CRYPTO_DIGEST_THROTTLE_SEC", "10", float)
    timeout = _env_number("CRYPTO_DIGEST_HTTP_TIMEOUT_SEC", "30", float)

    return DigestConfig(
        **values,
        llm_model=os.getenv("CRYPTO_DIGEST_LLM_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
        llm_max_tokens=max(16, min(max_tokens, 4096)),
        news_limit=max(1, min(news_limit, 100)),
        throttle_seconds=max(0.0, throttle),
        http_timeout_seconds=max(1.0, timeout),
        data_dir=os.getenv("CRYPTO_DIGEST_DATA_DIR", "data").strip() or "data",
        memory_cache=_env_is_true("CRYPTO_DIGEST_MEMORY_CACHE"),
    )


def rank_gainers(quotes: list[AssetQuote]) -> list[AssetQuote]:
    # sorted() is stable, so equal changes keep provider order
    return sorted(quotes, key=lambda q: q.percent_change_24h, reverse=True)


def rank_losers(quotes: list[AssetQuote]) -> list[AssetQuote]:
    return sorted(quotes, key=lambda q: q.percent_change_24h)


def select_assets(quotes: list[AssetQuote], top_n: int = TOP_N) -> list[AssetQuote]:
    """Top gainers followed by top losers. Short lists yield overlapping picks on purpose."""
    return [*rank_gainers(quotes)[:top_n], *rank_losers(quotes)[:top_n]]


def build_news_query(asset: AssetQuote) -> str:
    return f"{asset.name} cryptocurrency"


def build_summary_prompt(asset: AssetQuote, references: list[str]) -> str:
    news_block = "\n".join(references)
    return (
        "Analyze the following data:\n\n"
        f"Coin: {asset.name}\n"
        f"Symbol: {asset.symbol}\n"
        f"24h Change: {asset.percent_change_24h:.2f}%\n"
        f"7d Change: {asset.percent_change_7d:.2f}%\n"
        f"Recent News:\n{news_block}\n"
    )


class MinIntervalThrottle:
    """Keeps at least `interval_seconds` between consecutive `wait()` returns.

    The pause is an Event wait, so `cancel()` interrupts it from another thread.
    """

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        waiter: Optional[Callable[[float], bool]] = None,
    ) -> None:
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._cancelled = threading.Event()
        self._waiter = waiter or self._cancelled.wait
        self._last: Optional[float] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait(self) -> None:
        if self._cancelled.is_set():
            raise DigestCancelledError("Digest build was cancelled.")
        if self._last is not None:
            remaining = self.interval_seconds - (self._clock() - self._last)
            if remaining > 0:
                logger.debug("throttle_wait seconds=%.2f", remaining)
                if self._waiter(remaining) or self._cancelled.is_set():
                    raise DigestCancelledError("Digest build was cancelled.")
        self._last = self._clock()

    def cancel(self) -> None:
        self._cancelled.set()


def _lookup_news(news: NewsApiClient, asset: AssetQuote) -> list[str]:
    try:
        references = news.search(build_news_query(asset))
    except NewsLookupError:
        return [NO_NEWS]
    return references or [NO_NEWS]


def _summarize(summarizer: ChatSummarizer, asset: AssetQuote, prompt: str) -> str:
    try:
        return summarizer.summarize(prompt)
    except SummarizerError as exc:
        logger.warning("digest_summary_fallback symbol=%s error=%s", asset.symbol, exc)
        return NO_SUMMARY


def build_digest(
    quotes: list[AssetQuote],
    *,
    news: NewsApiClient,
    summarizer: ChatSummarizer,
    throttle: MinIntervalThrottle,
    top_n: int = TOP_N,
) -> list[DigestEntry]:
    selected = select_assets(quotes, top_n)
    logger.info("digest_selection symbols=%s", ",".join(asset.symbol for asset in selected))

    digest: list[DigestEntry] = []
    for asset in selected:
        throttle.wait()
        references = _lookup_news(news, asset)
        summary = _summarize(summarizer, asset, build_summary_prompt(asset, references))
        digest.append(
            DigestEntry(
                token=asset.name,
                symbol=asset.symbol,
                summary=summary,
                references=references,
            )
        )
    return digest


def run_digest_pipeline(
    market: CoinMarketCapClient,
    news: NewsApiClient,
    summarizer: ChatSummarizer,
    throttle: MinIntervalThrottle,
    top_n: int = TOP_N,
) -> list[DigestEntry]:
    quotes = market.get_latest_listings()
    logger.info("market_snapshot_fetched assets=%s", len(quotes))
    return build_digest(quotes, news=news, summarizer=summarizer, throttle=throttle, top_n=top_n)


class DigestService:
    """Read-through access to today's digest.

    Concurrent misses for one date key share a single build; every waiter gets
    the same digest or the same exception.
    """

    def __init__(
        self,
        *,
        market: CoinMarketCapClient,
        news: NewsApiClient,
        summarizer: ChatSummarizer,
        store: DailyDigestStore,
        throttle: MinIntervalThrottle,
        top_n: int = TOP_N,
        today: Callable[[], str] = today_key,
    ) -> None:
        self.market = market
        self.news = news
        self.summarizer = summarizer
        self.store = store
        self.throttle = throttle
        self.top_n = top_n
        self._today = today
        self._inflight: dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: DigestConfig) -> "DigestService":
        return cls(
            market=CoinMarketCapClient.from_config(config),
            news=NewsApiClient.from_config(config),
            summarizer=ChatSummarizer.from_config(config),
            store=DailyDigestStore.from_config(config),
            throttle=MinIntervalThrottle(config.throttle_seconds),
        )

    def get_daily_digest(self, *, force_refresh: bool = False) -> list[DigestEntry]:
        date_key = self._today()
        if not force_refresh:
            cached = self.store.get(date_key)
            if cached is not None:
                logger.info("digest_cache_hit date=%s", date_key)
                return cached

        with self._inflight_lock:
            future = self._inflight.get(date_key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[date_key] = future

        if not owner:
            logger.info("digest_build_joined date=%s", date_key)
            return list(future.result())

        try:
            digest = self._build_and_store(date_key, force_refresh=force_refresh)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(digest)
            return digest
        finally:
            with self._inflight_lock:
                self._inflight.pop(date_key, None)

    def close(self) -> None:
        self.throttle.cancel()

    def _build_and_store(self, date_key: str, *, force_refresh: bool) -> list[DigestEntry]:
        if not force_refresh:
            # a build that finished while this caller waited for the gate
            cached = self.store.get(date_key)
            if cached is not None:
                return cached

        started = time.monotonic()
        logger.info("digest_build_started date=%s", date_key)
        digest = run_digest_pipeline(self.market, self.news, self.summarizer, self.throttle, self.top_n)
        self.store.put(date_key, digest)
        logger.info(
            "digest_build_finished date=%s entries=%s elapsed_s=%.1f",
            date_key,
            len(digest),
            time.monotonic() - started,
        )
        return digest


__all__ = [
    "DigestCancelledError",
    "DigestConfig",
    "DigestConfigError",
    "DigestService",
    "MinIntervalThrottle",
    "build_digest",
    "build_summary_prompt",
    "load_config",
    "rank_gainers",
    "rank_losers",
    "run_digest_pipeline",
    "select_assets",
]
