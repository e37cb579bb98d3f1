"""
x402 Solana - Pay-per-request API server

FastAPI application that gates routes behind x402 payments on Solana and
exposes the verifier/settler as facilitator endpoints.
"""

from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import structlog

from .config import Settings, configure_logging, get_settings
from .errors import ConfigurationError, NetworkError, ValidationError
from .facilitator import (
    configuration_error_handler,
    internal_error_handler,
    network_error_handler,
    router as facilitator_router,
    validation_error_handler,
)
from .middleware import PaymentRoute, X402Middleware
from .runtime import PaymentRuntime, build_runtime

logger = structlog.get_logger()

DEFAULT_ROUTES = (
    PaymentRoute(
        path="/api/premium",
        amount="1000",
        description="Access to premium content",
    ),
    PaymentRoute(
        path="/api/premium/report",
        amount="5000",
        description="Premium report",
        max_timeout_seconds=120,
    ),
)


def create_app(
    runtime: Optional[PaymentRuntime] = None,
    routes: Iterable[PaymentRoute] = DEFAULT_ROUTES,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the application around a single process-wide payment runtime."""
    if runtime is None:
        runtime = build_runtime(settings or get_settings())
    settings = runtime.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        configure_logging(settings.log_level)
        logger.info(
            "Starting x402 Solana server",
            port=settings.port,
            network=settings.solana_network,
            fee_payer=runtime.fee_payer,
        )
        yield
        logger.info("Shutting down x402 Solana server")
        await runtime.close()

    app = FastAPI(
        title="x402 Solana",
        description="Pay-per-request API on Solana via HTTP 402",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.runtime = runtime

    app.add_middleware(X402Middleware, runtime=runtime, routes=list(routes))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-PAYMENT-RESPONSE", "X402-Payment-Required"],
    )

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(NetworkError, network_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.include_router(facilitator_router)

    # ==============================================
    # Health & Info
    # ==============================================

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "x402-solana",
            "version": "1.0.0",
            "network": settings.solana_network,
        }

    @app.get("/")
    async def root():
        """API information."""
        return {
            "name": "x402 Solana",
            "version": "1.0.0",
            "network": settings.solana_network,
            "asset": settings.asset_mint,
            "docs": "/docs",
            "endpoints": {
                "supported": "GET /facilitator/supported",
                "verify": "POST /facilitator/verify",
                "settle": "POST /facilitator/settle",
                "premium": "GET /api/premium",
            },
        }

    # ==============================================
    # Protected Endpoints
    # ==============================================

    @app.get("/api/premium")
    async def premium(request: Request):
        """Protected content; reached only after payment verification."""
        return _paid_content(request, {"message": "Payment accepted", "content": "premium data"})

    @app.get("/api/premium/report")
    async def premium_report(request: Request):
        return _paid_content(request, {"message": "Payment accepted", "report": {"rows": []}})

    return app


def _paid_content(request: Request, body: dict) -> dict:
    """Attach the payment outcome the middleware left on request.state."""
    settled = getattr(request.state, "payment_settled", None)
    settlement_error = getattr(request.state, "payment_settlement_error", None)
    payment = {
        "amount": getattr(request.state, "payment_amount", None),
        "settled": settled is not None,
    }
    if settled is not None:
        payment["transactionReference"] = settled.transaction_reference
    if settlement_error is not None:
        payment["settlementError"] = settlement_error.message
    return {**body, "payment": payment}


# ==============================================
# Run with: uvicorn x402_solana.main:create_app --factory --reload
# ==============================================

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "x402_solana.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
