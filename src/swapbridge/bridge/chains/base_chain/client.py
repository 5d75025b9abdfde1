"""
Base-chain wallet daemon client.

JSON-RPC 2.0 over HTTP to the wallet daemon that holds the bridge's
custodial account. Only the calls the bridge needs are exposed: payment
proof checks, payouts and transfer lookups.
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from ....config import BASE_RPC_PASSWORD, BaseChainConfig, SecretHandle
from ....errors import ChainUnavailableError, CircuitBreaker, RpcError
from ....logging import get_logger

logger = get_logger(__name__)

# Wallet daemon error code for an unknown transaction id
TX_NOT_FOUND_CODES = (-8,)


class BaseChainClient:
    """Async client for the base-chain wallet daemon."""

    def __init__(
        self,
        config: BaseChainConfig,
        secret_handle: Optional[SecretHandle] = None,
        session: Optional[aiohttp.ClientSession] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config
        self.secret_handle = secret_handle
        self.session = session
        self._owns_session = session is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="base_chain")
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self.session

    def _auth(self) -> Optional[aiohttp.BasicAuth]:
        if not self.config.rpc_user or self.secret_handle is None:
            return None
        if not self.secret_handle.has(BASE_RPC_PASSWORD):
            return None
        with self.secret_handle.acquire(BASE_RPC_PASSWORD) as password:
            return aiohttp.BasicAuth(self.config.rpc_user, password)

    async def _make_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make a JSON-RPC request to the wallet daemon."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": str(self._request_id),
            "method": method,
            "params": params or {},
        }

        async def send() -> Dict[str, Any]:
            session = await self._get_session()
            try:
                async with session.post(
                    self.config.rpc_url,
                    json=payload,
                    auth=self._auth(),
                    timeout=aiohttp.ClientTimeout(total=self.config.rpc_timeout),
                ) as response:
                    if response.status >= 500 or response.status in (401, 403, 429):
                        raise ChainUnavailableError(
                            f"HTTP error: {response.status}",
                            endpoint=self.config.rpc_url,
                            status_code=response.status,
                        )
                    if response.status != 200:
                        raise RpcError(f"HTTP error: {response.status}", method=method)
                    return await response.json(content_type=None)
            except asyncio.TimeoutError:
                raise ChainUnavailableError(
                    f"RPC request {method} timed out", endpoint=self.config.rpc_url, timed_out=True
                )
            except aiohttp.ClientError as e:
                raise ChainUnavailableError(
                    f"RPC request {method} failed: {e}", endpoint=self.config.rpc_url, cause=e
                )

        result = await self.circuit_breaker.call(send)

        error = result.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.debug(f"RPC {method} returned error {code}: {message}")
            raise RpcError(f"RPC error: {message}", method=method, rpc_code=code)
        return result.get("result", {})

    async def check_tx_key(self, txid: str, tx_key: str, address: str) -> Dict[str, Any]:
        """Check that ``tx_key`` proves payment of ``txid`` to ``address``.

        Returns ``{"confirmations", "received", "in_pool"}``.
        """
        result = await self._make_request(
            "check_tx_key", {"txid": txid, "tx_key": tx_key, "address": address}
        )
        return {
            "confirmations": int(result.get("confirmations", 0)),
            "received": int(result.get("received", 0)),
            "in_pool": bool(result.get("in_pool", False)),
        }

    async def transfer(self, address: str, amount: int) -> Dict[str, Any]:
        """Send ``amount`` atomic units from the custodial account to ``address``."""
        result = await self._make_request(
            "transfer",
            {
                "destinations": [{"amount": amount, "address": address}],
                "account_index": self.config.account_index,
                "subaddr_indices": [0],
                "priority": self.config.priority,
                "ring_size": self.config.ring_size,
                "get_tx_key": True,
            },
        )
        return {
            "tx_hash": result.get("tx_hash"),
            "tx_key": result.get("tx_key"),
            "amount": int(result.get("amount", amount)),
            "fee": int(result.get("fee", 0)),
        }

    async def get_transfer_by_txid(self, txid: str) -> Optional[Dict[str, Any]]:
        """Look up a wallet transfer, None when the wallet does not know it."""
        try:
            result = await self._make_request(
                "get_transfer_by_txid", {"txid": txid, "account_index": self.config.account_index}
            )
        except RpcError as e:
            if e.rpc_code in TX_NOT_FOUND_CODES:
                return None
            raise
        return result.get("transfer")

    async def get_transfers(
        self,
        out: bool = True,
        pending: bool = True,
        pool: bool = False,
        failed: bool = False,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """List wallet transfers grouped by type."""
        result = await self._make_request(
            "get_transfers",
            {
                "out": out,
                "pending": pending,
                "pool": pool,
                "failed": failed,
                "account_index": self.config.account_index,
            },
        )
        return {kind: result.get(kind, []) for kind in ("out", "pending", "pool", "failed")}

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self.session is not None and self._owns_session and not self.session.closed:
            await self.session.close()
        self.session = None
