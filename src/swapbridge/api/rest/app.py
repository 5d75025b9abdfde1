"""
REST API for the swap bridge.

Exposes the two inbound swap requests, ledger and receipt lookups, and the
operator controls. Every swap response states whether the caller may retry.
"""

import asyncio
import hmac
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from ... import __version__
from ...bridge import DepositClaim, RedeemClaim, SwapCoordinator, SwapResult, SwapState
from ...config import OPERATOR_TOKEN, ApiConfig, SecretHandle
from ...errors import BridgePausedError, SwapBridgeError
from ...logging import LogContext, get_logger

logger = get_logger(__name__)

# Security
security = HTTPBearer(auto_error=False)


# Pydantic models for request/response validation
class DepositRequest(BaseModel):
    """Deposit claim: mint wrapped tokens for a base-chain payment."""

    base_tx_id: str = Field(..., min_length=1, description="Base-chain transaction id")
    proof_key: str = Field(..., min_length=1, description="Transaction secret key")
    destination_wrapped_address: str = Field(..., min_length=1, description="Mint recipient")
    claimed_amount: Optional[int] = Field(None, gt=0, description="Amount the caller expects")


class RedeemRequest(BaseModel):
    """Redeem request: pay out base asset for a burn on the wrapped chain."""

    wrapped_sender_address: str = Field(..., min_length=1, description="Burning account")
    burn_reference: str = Field(
        ..., pattern=r"^[0-9]+$", description="Burn nonce from the bridge contract"
    )
    viewing_key: str = Field(..., min_length=1, description="Viewing key of the burning account")
    amount: Optional[int] = Field(None, gt=0, description="Burned amount the caller expects")
    destination_base_address: Optional[str] = Field(
        None, min_length=1, description="Payout address the caller expects"
    )


class PauseRequest(BaseModel):
    """Operator pause request."""

    reason: Optional[str] = Field(None, description="Shown to callers while paused")


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    message: str
    retryable: bool = False
    timestamp: datetime


def result_status_code(result: SwapResult) -> int:
    """HTTP status for a coordinator result."""
    if result.state == SwapState.COMPLETED:
        return 200
    if result.in_progress:
        return 202
    if isinstance(result.error, BridgePausedError):
        return 503
    if result.state == SwapState.REJECTED:
        return 409 if result.retryable else 422
    # Failed: the chain side did not go through
    return 503 if result.retryable else 422


def _error_response(status_code: int, error: str, message: str, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error, message=message, retryable=retryable, timestamp=datetime.now()
        ).model_dump(mode="json"),
    )


async def _maintenance_loop(coordinator: SwapCoordinator, interval: float) -> None:
    """Periodically settle stale ledger entries and purge expired receipts."""
    while True:
        await asyncio.sleep(interval)
        try:
            await coordinator.reconcile_stale()
            coordinator.purge_receipts()
        except SwapBridgeError as e:
            logger.error(
                f"Maintenance sweep failed: {e}",
                context=LogContext(component="api", operation="maintenance"),
            )


def create_app(
    coordinator: SwapCoordinator,
    config: Optional[ApiConfig] = None,
    secret_handle: Optional[SecretHandle] = None,
    maintenance_interval: Optional[float] = None,
    on_shutdown: Optional[Callable[[], Awaitable[None]]] = None,
) -> FastAPI:
    """Build the FastAPI application around a coordinator.

    ``maintenance_interval`` starts a background sweep (stale leases and
    receipt retention) for the lifetime of the app; None disables it.
    ``on_shutdown`` runs after in-flight swaps have drained.
    """
    config = config or ApiConfig()
    secret_handle = secret_handle or SecretHandle()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task = None
        if maintenance_interval:
            task = asyncio.create_task(_maintenance_loop(coordinator, maintenance_interval))
        logger.info("Bridge API started", context=LogContext(component="api"))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            await coordinator.drain()
            if on_shutdown is not None:
                await on_shutdown()
            logger.info("Bridge API stopped", context=LogContext(component="api"))

    app = FastAPI(
        title="swapbridge",
        description="Idempotent swap bridge between the base chain and the wrapped-token chain",
        version=__version__,
        docs_url="/docs" if config.enable_docs else None,
        redoc_url="/redoc" if config.enable_docs else None,
        openapi_url="/openapi.json" if config.enable_docs else None,
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator
    app.state.started_at = time.time()

    def is_operator(credentials: Optional[HTTPAuthorizationCredentials]) -> bool:
        if credentials is None or not secret_handle.has(OPERATOR_TOKEN):
            return False
        with secret_handle.acquire(OPERATOR_TOKEN) as token:
            return hmac.compare_digest(credentials.credentials.encode(), token.encode())

    # Authentication dependency
    async def require_operator(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ) -> None:
        """Admit only callers presenting the operator token."""
        if not secret_handle.has(OPERATOR_TOKEN):
            raise HTTPException(status_code=503, detail="Operator access is not configured")
        if not is_operator(credentials):
            raise HTTPException(status_code=401, detail="Invalid operator credentials")

    def swap_response(result: SwapResult) -> JSONResponse:
        return JSONResponse(status_code=result_status_code(result), content=result.to_dict())

    # Swap endpoints
    @app.post("/deposits")
    async def create_deposit(request: DepositRequest) -> JSONResponse:
        """Mint wrapped tokens against a proven base-chain deposit."""
        result = await coordinator.submit_deposit(
            DepositClaim(
                base_tx_id=request.base_tx_id,
                base_tx_proof_key=request.proof_key,
                destination_wrapped_address=request.destination_wrapped_address,
                claimed_amount=request.claimed_amount,
            )
        )
        return swap_response(result)

    @app.post("/redeems")
    async def create_redeem(request: RedeemRequest) -> JSONResponse:
        """Pay out base asset for burned wrapped tokens."""
        result = await coordinator.submit_redeem(
            RedeemClaim(
                wrapped_burn_amount=request.amount,
                destination_base_address=request.destination_base_address,
                wrapped_sender_address=request.wrapped_sender_address,
                burn_reference=request.burn_reference,
                viewing_key=request.viewing_key,
            )
        )
        return swap_response(result)

    # Lookups
    @app.get("/swaps/{key}")
    async def get_swap(
        key: str,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ) -> Dict[str, Any]:
        """Swap progress; amounts, addresses and chain references need the operator token."""
        swap = coordinator.get_swap(key, include_linkage=is_operator(credentials))
        if swap is None:
            raise HTTPException(status_code=404, detail="Swap not found")
        return swap

    @app.get("/receipts/{swap_id}")
    async def get_receipt(
        swap_id: str,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ) -> Dict[str, Any]:
        """Receipt metadata; the operator also gets the decrypted payload."""
        receipt = coordinator.get_receipt(swap_id)
        if receipt is None:
            raise HTTPException(status_code=404, detail="Receipt not found")
        body = receipt.to_dict()
        if is_operator(credentials):
            body["payload"] = coordinator.open_receipt(swap_id)
        return body

    # Operator controls
    @app.post("/admin/pause", dependencies=[Depends(require_operator)])
    async def pause(request: Optional[PauseRequest] = None) -> Dict[str, Any]:
        """Stop accepting new swaps."""
        coordinator.pause(request.reason if request else None)
        return {"paused": True}

    @app.post("/admin/resume", dependencies=[Depends(require_operator)])
    async def resume() -> Dict[str, Any]:
        """Accept new swaps again."""
        coordinator.resume()
        return {"paused": False}

    @app.post("/admin/reconcile", dependencies=[Depends(require_operator)])
    async def reconcile() -> Dict[str, Any]:
        """Settle entries whose worker lease ran out."""
        return await coordinator.reconcile_stale()

    @app.get("/admin/receipts", dependencies=[Depends(require_operator)])
    async def list_receipts(
        start: float = Query(..., description="Earliest receipt timestamp"),
        end: float = Query(..., description="Receipt timestamps before this"),
        limit: int = Query(1000, ge=1, le=10000),
    ) -> Dict[str, Any]:
        """Receipts recorded in a time window, oldest first."""
        return {"receipts": coordinator.list_receipts(start, end, limit)}

    @app.post("/admin/purge", dependencies=[Depends(require_operator)])
    async def purge() -> Dict[str, Any]:
        """Drop receipts past the retention window."""
        return {"purged": coordinator.purge_receipts()}

    # Health check endpoint
    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "paused" if coordinator.paused else "healthy",
            "timestamp": time.time(),
            "uptime": time.time() - app.state.started_at,
            "version": __version__,
        }

    @app.get("/stats")
    async def stats() -> Dict[str, Any]:
        """Ledger counts, coordinator counters and circuit breaker state."""
        return coordinator.statistics()

    # Error handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions."""
        return _error_response(exc.status_code, str(exc.detail), str(exc.detail))

    @app.exception_handler(SwapBridgeError)
    async def bridge_exception_handler(request: Request, exc: SwapBridgeError) -> JSONResponse:
        """Handle bridge errors raised outside the swap flow."""
        logger.error(
            f"Request {request.url.path} failed: {exc}",
            context=LogContext(component="api", operation=request.url.path),
        )
        return _error_response(
            503 if exc.retryable else 500, exc.kind, exc.message, retryable=exc.retryable
        )

    return app


def run_server(app: FastAPI, config: ApiConfig, log_level: str = "info") -> None:
    """Serve the app with uvicorn until interrupted."""
    uvicorn.run(app, host=config.host, port=config.port, log_level=log_level)
