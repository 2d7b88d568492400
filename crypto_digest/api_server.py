"""HTTP API serving the daily crypto gainers/losers digest."""
from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

try:
    from .digest_service import (
        DigestCancelledError,
        DigestConfigError,
        DigestService,
        load_config,
    )
    from .digest_store import DigestStoreError, dump_digest
    from .market_data_client import MarketDataUpstreamError
except ImportError:  # pragma: no cover - support direct script-style imports
    from crypto_digest.digest_service import (
        DigestCancelledError,
        DigestConfigError,
        DigestService,
        load_config,
    )
    from crypto_digest.digest_store import DigestStoreError, dump_digest
    from crypto_digest.market_data_client import MarketDataUpstreamError


class ApiError(RuntimeError):
    def __init__(self, *, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


logger = logging.getLogger(__name__)


def create_app(service: Optional[DigestService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "digest_service", None) is None:
            # DigestConfigError propagates and aborts startup
            app.state.digest_service = DigestService.from_config(load_config())
        try:
            yield
        finally:
            app.state.digest_service.close()

    app = FastAPI(title="Crypto Digest API", version="1.0.0", lifespan=lifespan)
    app.state.digest_service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(_, exc: ApiError) -> PlainTextResponse:
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.get("/crypto-summary")
    def get_crypto_summary(request: Request) -> list[dict]:
        digest_service: Optional[DigestService] = request.app.state.digest_service
        if digest_service is None:
            raise ApiError(status_code=500, message="Digest service is not configured.")

        try:
            digest = digest_service.get_daily_digest()
        except MarketDataUpstreamError as exc:
            raise ApiError(
                status_code=500,
                message=f"Failed to fetch and store summaries: {exc}",
            ) from exc
        except DigestStoreError as exc:
            logger.exception("crypto_summary_store_failed")
            raise ApiError(
                status_code=500,
                message=f"Failed to fetch and store summaries: {exc}",
            ) from exc
        except DigestCancelledError as exc:
            raise ApiError(status_code=500, message="Digest build was cancelled.") from exc

        return dump_digest(digest)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        config = load_config()
    except DigestConfigError as exc:
        logger.error("startup_config_error %s", exc)
        sys.exit(1)

    server_app = create_app(DigestService.from_config(config))
    host = os.getenv("CRYPTO_DIGEST_HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8066"))
    uvicorn.run(server_app, host=host, port=port)


if __name__ == "__main__":
    main()
