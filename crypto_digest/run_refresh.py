"""
CLI warm-up runner for the crypto digest.
Builds (or loads) today's digest so the first HTTP request of the day is a cache hit.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Optional

from .digest_service import DigestCancelledError, DigestConfigError, DigestService, load_config
from .digest_store import DigestStoreError, dump_digest
from .market_data_client import MarketDataUpstreamError


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Build today's crypto gainers/losers digest.")
    parser.add_argument("--force", action="store_true", help="rebuild even if today's digest is cached")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        service = DigestService.from_config(load_config())
    except DigestConfigError as exc:
        print(f"Configuration error: {exc}")
        return 1

    try:
        digest = service.get_daily_digest(force_refresh=args.force)
    except (MarketDataUpstreamError, DigestStoreError, DigestCancelledError) as exc:
        print(f"Digest build failed: {exc}")
        return 1

    print(json.dumps(dump_digest(digest), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
