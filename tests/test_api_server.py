from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from crypto_digest.digest_service import DigestCancelledError, DigestService, MinIntervalThrottle
from crypto_digest.digest_store import DailyDigestStore, DigestEntry, DigestStoreError
from crypto_digest.market_data_client import AssetQuote, MarketDataUpstreamError

try:
    from fastapi.testclient import TestClient
    from crypto_digest.api_server import create_app
    HAS_FASTAPI = True
except ModuleNotFoundError:
    HAS_FASTAPI = False


class FakeDigestService:
    def __init__(self, digest: list[DigestEntry] | None = None, error: Exception | None = None) -> None:
        self.digest = digest or []
        self.error = error
        self.calls = 0
        self.closed = False

    def get_daily_digest(self, *, force_refresh: bool = False) -> list[DigestEntry]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.digest

    def close(self) -> None:
        self.closed = True


_ENV = {
    "COINMARKETCAP_API_KEY": "cmc",
    "GROQ_API_KEY": "groq",
    "GROQ_API_BASE_URL": "https://api.groq.com",
    "NEWS_API_KEY": "news",
}


class ApiServerTests(unittest.TestCase):
    def setUp(self) -> None:
        if not HAS_FASTAPI:
            self.skipTest("fastapi is not installed")

    def test_crypto_summary_returns_digest_json(self) -> None:
        fake = FakeDigestService(
            digest=[
                DigestEntry(token="Dogecoin", symbol="DOGE", summary="DOGE jumped.", references=["a - https://a"]),
                DigestEntry(token="Ethereum", symbol="ETH", summary="No summary available.", references=["No news found"]),
            ]
        )
        client = TestClient(create_app(fake))

        response = client.get("/crypto-summary")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("application/json"))
        self.assertEqual(
            response.json(),
            [
                {"token": "Dogecoin", "symbol": "DOGE", "summary": "DOGE jumped.", "references": ["a - https://a"]},
                {
                    "token": "Ethereum",
                    "symbol": "ETH",
                    "summary": "No summary available.",
                    "references": ["No news found"],
                },
            ],
        )
        self.assertEqual(fake.calls, 1)

    def test_build_failures_return_500_plain_text(self) -> None:
        for error in (
            MarketDataUpstreamError("HTTP 401: bad key"),
            DigestStoreError("disk full"),
            DigestCancelledError("cancelled"),
        ):
            with self.subTest(error=type(error).__name__):
                client = TestClient(create_app(FakeDigestService(error=error)))
                response = client.get("/crypto-summary")
                self.assertEqual(response.status_code, 500)
                self.assertTrue(response.headers["content-type"].startswith("text/plain"))
                self.assertTrue(response.text)

    def test_market_failure_message_mentions_cause(self) -> None:
        client = TestClient(create_app(FakeDigestService(error=MarketDataUpstreamError("HTTP 401: bad key"))))

        response = client.get("/crypto-summary")

        self.assertIn("Failed to fetch and store summaries", response.text)
        self.assertIn("HTTP 401", response.text)

    def test_cors_allows_any_origin(self) -> None:
        client = TestClient(create_app(FakeDigestService()))

        response = client.get("/crypto-summary", headers={"Origin": "https://dashboard.example"})

        self.assertEqual(response.headers.get("access-control-allow-origin"), "*")

    def test_shutdown_closes_service(self) -> None:
        fake = FakeDigestService()
        with TestClient(create_app(fake)) as client:
            client.get("/crypto-summary")
        self.assertTrue(fake.closed)

    def test_startup_builds_service_from_env(self) -> None:
        with patch.dict(os.environ, _ENV, clear=True):
            with TestClient(create_app()) as client:
                self.assertIsInstance(client.app.state.digest_service, DigestService)

    def test_startup_without_credentials_fails(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(RuntimeError):
                with TestClient(create_app()):
                    pass


class _CountingMarket:
    def __init__(self) -> None:
        self.calls = 0

    def get_latest_listings(self) -> list[AssetQuote]:
        self.calls += 1
        return [
            AssetQuote(name=f"Coin{i}", symbol=f"C{i}", percent_change_24h=float(i), percent_change_7d=0.5)
            for i in range(8)
        ]


class _CountingNews:
    def __init__(self) -> None:
        self.queries: list[str] = []

    def search(self, query: str) -> list[str]:
        self.queries.append(query)
        return [f"{query} rallies - https://news.example/{len(self.queries)}"]


class _CountingSummarizer:
    def __init__(self) -> None:
        self.prompts: list[str] = []

    def summarize(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return f"paragraph {len(self.prompts)}"


class CryptoSummaryEndToEndTests(unittest.TestCase):
    def setUp(self) -> None:
        if not HAS_FASTAPI:
            self.skipTest("fastapi is not installed")
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name) / "data"
        self.market = _CountingMarket()
        self.news = _CountingNews()
        self.summarizer = _CountingSummarizer()
        self.service = DigestService(
            market=self.market,
            news=self.news,
            summarizer=self.summarizer,
            store=DailyDigestStore(self.data_dir, memory_cache=False),
            throttle=MinIntervalThrottle(0),
            today=lambda: "2026-02-17",
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_cache_miss_builds_writes_one_file_and_serves_it(self) -> None:
        client = TestClient(create_app(self.service))

        response = client.get("/crypto-summary")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([row["symbol"] for row in payload], ["C7", "C6", "C5", "C0", "C1", "C2"])
        self.assertEqual(self.market.calls, 1)
        self.assertEqual(len(self.news.queries), 6)
        self.assertEqual(len(self.summarizer.prompts), 6)
        self.assertEqual([p.name for p in self.data_dir.iterdir()], ["2026-02-17.json"])
        on_disk = json.loads((self.data_dir / "2026-02-17.json").read_text(encoding="utf-8"))
        self.assertEqual(on_disk, payload)

    def test_cached_day_is_served_without_provider_calls(self) -> None:
        client = TestClient(create_app(self.service))
        first = client.get("/crypto-summary").json()

        second = client.get("/crypto-summary")

        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json(), first)
        self.assertEqual(self.market.calls, 1)
        self.assertEqual(len(self.news.queries), 6)
        self.assertEqual(len(self.summarizer.prompts), 6)


if __name__ == "__main__":
    unittest.main()
